"""
api/routes/upload.py -- Cover and inline image uploads.

Routes:
  POST /api/upload   -- multipart "file" field; returns {url, filename}

Checks, in order: a file is present, the declared content type is image/*,
the first bytes match a known image signature (so a renamed script cannot
pass as an image), and the size is at most 5 MB.

With BLOB_READ_WRITE_TOKEN set the image goes to the blob store under
posts/<ms-timestamp>-<random>.<ext>. Without it (local development) the
image comes back inline as a base64 data URL and nothing is stored.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, UploadFile
from fastapi.concurrency import run_in_threadpool

from api.models import api_error
from auth.dependencies import require_author
from auth.models import Identity
from core.config import get_settings
from storage.blob import BlobClient, BlobUploadError

logger = logging.getLogger("schoolpaper.upload")

# Auth policy:
# - POST /api/upload: require_author (user session or admin cookie)
router = APIRouter()

MAX_UPLOAD_BYTES = 5 * 1024 * 1024

# content type -> accepted leading byte sequences
IMAGE_SIGNATURES: dict[str, tuple[bytes, ...]] = {
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
}

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/gif": "gif", "image/webp": "webp"}


def detect_image_type(head: bytes) -> Optional[str]:
    """Content type whose signature head starts with, or None."""
    for content_type, signatures in IMAGE_SIGNATURES.items():
        if head.startswith(signatures):
            return content_type
    return None


def _blob_pathname(filename: str, detected: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not ext.isalnum() or len(ext) > 5:
        ext = _EXTENSIONS[detected]
    return f"posts/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


@router.post("/upload")
async def upload_image(file: Optional[UploadFile] = None, identity: Identity = Depends(require_author)) -> dict:
    if file is None or not file.filename:
        raise api_error(400, "validation_error", "No file provided")

    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise api_error(400, "validation_error", "File must be an image")

    # Read one byte past the limit so oversize files are caught without
    # pulling the whole body into memory.
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    detected = detect_image_type(data[:12])
    if detected is None:
        raise api_error(400, "validation_error", "Invalid image file format")
    if len(data) > MAX_UPLOAD_BYTES:
        raise api_error(400, "validation_error", "File size must be less than 5MB")

    settings = get_settings()
    if not settings.blob_read_write_token:
        encoded = base64.b64encode(data).decode("ascii")
        return {"url": f"data:{content_type};base64,{encoded}", "filename": file.filename}

    pathname = _blob_pathname(file.filename, detected)
    client = BlobClient(settings.blob_read_write_token, settings.blob_api_url)
    try:
        url = await run_in_threadpool(client.put, pathname, data, content_type)
    except BlobUploadError:
        raise api_error(502, "upload_failed", "Failed to upload image") from None
    logger.info("Image uploaded", extra={"blob_path": pathname, "bytes": len(data), "user_id": identity.user_id})
    return {"url": url, "filename": pathname}
