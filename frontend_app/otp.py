from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from frontend_app.auth import AuthContext
from frontend_app.utils.api import ApiError

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
INVALID_LENGTH_MESSAGE = f"Please enter a valid {OTP_LENGTH}-digit OTP"


@dataclass
class OtpOutcome:
    success: bool
    message: str
    user: dict[str, Any] | None = field(default=None)


class OtpVerification:
    """
    Drives the verification screen for one channel.

    Input length is checked before any network call. After a successful
    verify the identity store gets the returned user immediately and then a
    best-effort refresh from the server.
    """

    def __init__(self, auth: AuthContext, *, channel: str = "email") -> None:
        self.auth = auth
        self.channel = channel

    def submit(self, code: str) -> OtpOutcome:
        code = (code or "").strip()
        if len(code) != OTP_LENGTH:
            return OtpOutcome(success=False, message=INVALID_LENGTH_MESSAGE)
        try:
            resp = self.auth.api.verify_otp(otp=code, channel=self.channel)
        except ApiError as e:
            return OtpOutcome(success=False, message=e.message or "Verification failed")

        user = resp.get("user")
        if user:
            self.auth.set_user(user)
        try:
            user = self.auth.refresh() or user
        except ApiError as e:
            logger.warning("User refresh after verification failed: %s", e)
        return OtpOutcome(success=True, message=str(resp.get("message") or "Verified"), user=user)

    def resend(self) -> OtpOutcome:
        user = self.auth.user or {}
        try:
            resp = self.auth.api.resend_otp(channel=self.channel, user_id=user.get("id"))
        except ApiError as e:
            return OtpOutcome(success=False, message=e.message or "Failed to send OTP")
        return OtpOutcome(success=True, message=str(resp.get("message") or "OTP sent"))
