"""
storage/blob.py -- Minimal client for the hosted blob store used for images.

Only the single operation the upload route needs is implemented: PUT a file
under a pathname and get back its public URL. The store answers with JSON
containing at least {"url": ...}.

Module-level requests.Session for connection pooling, the same way the old
feed fetcher shared one. max_redirects is kept low -- this is a known API
endpoint and there is no reason to follow long redirect chains.
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger("schoolpaper.blob")

_TIMEOUT = 15

_session = requests.Session()
_session.max_redirects = 3


class BlobUploadError(Exception):
    """The blob store rejected the upload or could not be reached."""


class BlobClient:
    def __init__(self, token: str, base_url: str = "https://blob.vercel-storage.com") -> None:
        if not token:
            raise ValueError("BlobClient requires a read/write token")
        self._token = token
        self._base_url = base_url.rstrip("/")

    def put(self, pathname: str, data: bytes, content_type: str) -> str:
        """Upload data publicly under pathname and return its URL.

        Raises BlobUploadError on any transport or protocol failure. The token
        is never included in log output.
        """
        headers = {
            "Authorization": f"Bearer {self._token}",
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
            "x-access": "public",
        }
        try:
            resp = _session.put(f"{self._base_url}/{pathname}", data=data, headers=headers, timeout=_TIMEOUT)
            resp.raise_for_status()
            url: Optional[str] = resp.json().get("url")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Blob upload failed for %s: %s", pathname, e)
            raise BlobUploadError(str(e)) from e
        if not url:
            raise BlobUploadError("Blob store response did not include a URL")
        return url
