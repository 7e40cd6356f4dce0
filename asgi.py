"""
asgi.py -- ASGI entry point for the newspaper backend.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 1

Rate-limit counters live in process memory, so run a single worker per
deployment unless you accept per-worker throttling.
"""

from api.main import app

__all__ = ["app"]
