"""
Client-side identity store.

`AuthContext` fetches the current user once, caches it, and drops it on
logout or on any 401 seen by the shared `ApiClient`. Views read `user` and
`is_loading`; the route guard in `frontend_app.gate` builds on those two.
"""

from __future__ import annotations

import logging
from typing import Any

from frontend_app.utils import storage
from frontend_app.utils.api import ApiClient, AuthenticationRequired

logger = logging.getLogger(__name__)


class AuthContext:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self._user: dict[str, Any] | None = None
        self._loaded = False
        api.on_unauthorized(self._on_unauthorized)

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def is_loading(self) -> bool:
        return not self._loaded

    def load(self, *, force: bool = False) -> dict[str, Any] | None:
        if self._loaded and not force:
            return self._user
        try:
            user = self.api.current_user()
        except AuthenticationRequired:
            # `_on_unauthorized` already cleared the state.
            return None
        self._set_user(user)
        return user

    def refresh(self) -> dict[str, Any] | None:
        return self.load(force=True)

    def invalidate(self) -> None:
        """Mark the cached identity stale; the next `load` refetches it."""
        self._loaded = False

    def login(self, username: str, password: str) -> dict[str, Any]:
        user = self.api.login(username=username, password=password)
        self._set_user(user)
        return user

    def register(self, **fields: Any) -> dict[str, Any]:
        user = self.api.register(**fields)
        self._set_user(user)
        return user

    def logout(self) -> None:
        try:
            self.api.logout()
        finally:
            self._clear()

    def set_user(self, user: dict[str, Any] | None) -> None:
        if user is None:
            self._clear()
        else:
            self._set_user(user)

    def _set_user(self, user: dict[str, Any]) -> None:
        self._user = dict(user)
        self._loaded = True
        storage.set_session(token=self.api.session_token(), user=self._user)

    def _clear(self) -> None:
        self._user = None
        self._loaded = True
        storage.clear_session()

    def _on_unauthorized(self) -> None:
        if self._user is not None:
            logger.info("Session rejected by server; signing out locally")
        self._clear()
