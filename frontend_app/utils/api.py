from __future__ import annotations

import logging
import os
from typing import Any, Callable

import requests

from frontend_app.utils.storage import get_api_base_url, get_token

logger = logging.getLogger(__name__)


def _cookie_name() -> str:
    # Must match the server's SESSION_COOKIE_NAME.
    return (os.environ.get("SESSION_COOKIE_NAME") or "session").strip()


class ApiError(Exception):
    def __init__(self, message: str, *, status_code: int = 0, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail

    @property
    def reason(self) -> str:
        if isinstance(self.detail, dict):
            return str(self.detail.get("reason") or "")
        return ""


class AuthenticationRequired(ApiError):
    """The server answered 401: there is no valid session."""


def _base_url() -> str:
    return (os.environ.get("API_BASE_URL") or get_api_base_url() or "http://127.0.0.1:8000").rstrip("/")


def _error_message(detail: Any, status_code: int) -> str:
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("detail") or f"HTTP {status_code}")
    if isinstance(detail, list):
        # FastAPI validation errors
        msgs = [str(d.get("msg") or "") for d in detail if isinstance(d, dict)]
        return "; ".join(m for m in msgs if m) or f"HTTP {status_code}"
    return str(detail or f"HTTP {status_code}")


def _handle(resp: requests.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        data = {"detail": resp.text}
    if not isinstance(data, dict):
        data = {"items": data}
    if resp.status_code >= 400:
        detail = data.get("detail", data.get("message"))
        cls = AuthenticationRequired if resp.status_code == 401 else ApiError
        raise cls(_error_message(detail, resp.status_code), status_code=resp.status_code, detail=detail)
    return data


class ApiClient:
    """
    Thin wrapper over a `requests.Session`.

    The server keeps the session in an HTTP-only cookie, so the cookie jar is
    the credential. Callbacks registered with `on_unauthorized` run whenever
    a call comes back 401.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: int = 15,
        cookie_name: str | None = None,
    ) -> None:
        self.base_url = (base_url or _base_url()).rstrip("/")
        self.cookie_name = cookie_name or _cookie_name()
        self.timeout = timeout
        self._session = session or requests.Session()
        self._unauthorized: list[Callable[[], None]] = []
        token = get_token()
        if token:
            self._session.cookies.set(self.cookie_name, token)

    def on_unauthorized(self, callback: Callable[[], None]) -> None:
        self._unauthorized.append(callback)

    def session_token(self) -> str:
        return str(self._session.cookies.get(self.cookie_name) or "")

    def request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self._session.request(method, url, json=json, headers={"Accept": "application/json"}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise ApiError(f"Network error: {e}") from e
        try:
            return _handle(resp)
        except AuthenticationRequired:
            for cb in list(self._unauthorized):
                cb()
            raise

    def get(self, path: str) -> dict[str, Any]:
        return self.request("GET", path)

    def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("POST", path, json=json or {})

    # -----------------------
    # Auth
    # -----------------------
    def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        name: str = "",
        phone: str = "",
        role: str = "buyer",
        verification_method: str = "email",
    ) -> dict[str, Any]:
        return self.post(
            "/api/register",
            {
                "username": username,
                "email": email,
                "password": password,
                "name": name,
                "phone": phone,
                "role": role,
                "verificationMethod": verification_method,
            },
        )

    def login(self, *, username: str, password: str) -> dict[str, Any]:
        return self.post("/api/login", {"username": username, "password": password})

    def logout(self) -> dict[str, Any]:
        try:
            return self.post("/api/logout")
        finally:
            self._session.cookies.clear()

    def current_user(self) -> dict[str, Any]:
        return self.get("/api/user")

    def verify_otp(self, *, otp: str, channel: str = "email") -> dict[str, Any]:
        return self.post("/api/verify-otp", {"otp": otp, "type": channel})

    def resend_otp(self, *, channel: str = "email", user_id: int | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"type": channel}
        if user_id is not None:
            body["userId"] = int(user_id)
        return self.post("/api/resend-otp", body)

    def forgot_password(self, *, email: str) -> dict[str, Any]:
        return self.post("/api/forgot-password", {"email": email})

    def reset_password(self, *, token: str, new_password: str) -> dict[str, Any]:
        return self.post("/api/reset-password", {"token": token, "newPassword": new_password})

    # -----------------------
    # Subscription / payment
    # -----------------------
    def subscription_tiers(self) -> list[dict[str, Any]]:
        return list(self.get("/api/subscription-tiers").get("tiers") or [])

    def create_checkout_session(
        self, *, level: str, success_url: str, cancel_url: str, property_id: int | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"level": level, "successUrl": success_url, "cancelUrl": cancel_url}
        if property_id is not None:
            body["propertyId"] = int(property_id)
        return self.post("/api/create-checkout-session", body)

    def confirm_checkout(self, session_id: str) -> dict[str, Any]:
        return self.post(f"/api/checkout-sessions/{session_id}/confirm")

    def set_property_subscription(self, property_id: int, level: str) -> dict[str, Any]:
        return self.post(f"/api/properties/{int(property_id)}/subscription", {"level": level})

    # -----------------------
    # Notifications
    # -----------------------
    def notifications(self) -> dict[str, Any]:
        return self.get("/api/notifications")

    def mark_notification_read(self, notification_id: int) -> dict[str, Any]:
        return self.post(f"/api/notifications/{int(notification_id)}/read")

    def mark_all_notifications_read(self) -> dict[str, Any]:
        return self.post("/api/notifications/read-all")
