"""
ASGI entrypoint for deployments.

The FastAPI app lives in `backend/app/main.py` and imports itself as `app.*`,
so `backend/` has to be importable. With this file at the repo root the
service starts with:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_BACKEND_DIR = Path(__file__).resolve().parent / "backend"

# Not needed after `pip install -e .`, which maps `app` to backend/app.
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from app.main import app  # noqa: E402,F401
