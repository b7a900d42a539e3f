from __future__ import annotations

import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)


def _store_path() -> str:
    """
    Return a writable path for small client state (session token, cached user, API base URL).

    Override with APP_SESSION_PATH; defaults to `.session.json` in the CWD.
    """
    override = (os.environ.get("APP_SESSION_PATH") or "").strip()
    if override:
        return override
    return os.path.join(os.getcwd(), ".session.json")


def _read() -> dict[str, Any]:
    path = _store_path()
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return dict(json.load(f) or {})
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable session store %s: %s", path, e)
        return {}


def _write(data: dict[str, Any]) -> None:
    path = _store_path()
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    except OSError as e:
        # The in-memory identity stays authoritative; only persistence is lost.
        logger.warning("Could not persist session store %s: %s", path, e)


def set_session(*, token: str, user: dict[str, Any] | None) -> None:
    d = _read()
    d["token"] = token or ""
    d["user"] = dict(user or {})
    _write(d)


def clear_session() -> None:
    d = _read()
    d.pop("token", None)
    d.pop("user", None)
    _write(d)


def get_session() -> dict[str, Any]:
    d = _read()
    return {"token": d.get("token") or "", "user": d.get("user") or {}}


def get_token() -> str:
    return str(get_session().get("token") or "")


def get_user() -> dict[str, Any]:
    return dict(get_session().get("user") or {})


def get_api_base_url() -> str:
    return str(_read().get("api_base_url") or "").strip().rstrip("/")


def set_api_base_url(url: str) -> None:
    d = _read()
    d["api_base_url"] = str(url or "").strip().rstrip("/")
    _write(d)
