from __future__ import annotations

import datetime as dt

import bcrypt
import jwt

from app.config import bcrypt_rounds, jwt_secret, session_max_age_seconds

# bcrypt only looks at the first 72 bytes of the input.
MAX_PASSWORD_BYTES = 72
_TOKEN_TYPE = "session"


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    if password_too_long(password):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=bcrypt_rounds())).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash or password_too_long(password):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


def create_access_token(*, user_id: int, role: str) -> str:
    issued = int(dt.datetime.now(dt.timezone.utc).timestamp())
    claims = {
        "sub": str(user_id),
        "role": role,
        "typ": _TOKEN_TYPE,
        "iat": issued,
        "exp": issued + session_max_age_seconds(),
    }
    return jwt.encode(claims, jwt_secret(), algorithm="HS256")


def decode_access_token(token: str) -> dict:
    """Raises `jwt.PyJWTError` for bad signatures, expired tokens and non-session tokens."""
    claims = jwt.decode(token, jwt_secret(), algorithms=["HS256"], options={"require": ["exp", "sub"]})
    if claims.get("typ") != _TOKEN_TYPE:
        raise jwt.InvalidTokenError("Not a session token")
    return claims
