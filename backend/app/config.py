from __future__ import annotations

import os


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    from dotenv import load_dotenv

    # Do not override existing environment variables.
    load_dotenv(override=False)


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def database_url() -> str:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def bcrypt_rounds() -> int:
    # Tests lower this; production keeps the default cost.
    raw = (os.environ.get("BCRYPT_ROUNDS") or "").strip()
    try:
        v = int(raw or "12")
    except ValueError:
        v = 12
    return min(max(v, 4), 15)


def is_local_dev() -> bool:
    """
    Heuristic for local/dev runs.

    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - test
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    """
    The web UI is usually served from a different origin (e.g. Vite dev server).
    Configure with env `CORS_ORIGINS` as a comma-separated list.
    """
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:5000",
        "http://127.0.0.1:5000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


def site_url() -> str:
    return (os.environ.get("SITE_URL") or "http://localhost:5000").strip().rstrip("/")


# -----------------------
# Session cookie
# -----------------------
def session_cookie_name() -> str:
    return (os.environ.get("SESSION_COOKIE_NAME") or "session").strip()


def session_max_age_seconds() -> int:
    raw = (os.environ.get("SESSION_MAX_AGE_SECONDS") or "").strip()
    try:
        return int(raw or str(24 * 60 * 60))
    except ValueError:
        return 24 * 60 * 60


def session_cookie_secure() -> bool:
    raw = (os.environ.get("SESSION_COOKIE_SECURE") or "").strip().lower()
    if raw:
        return raw in {"1", "true", "yes", "on"}
    return app_env() in {"prod", "production", "staging"}


# -----------------------
# OTP
# -----------------------
def otp_exp_minutes() -> int:
    """
    OTP expiry duration in minutes.
    Set via env `OTP_EXP_MINUTES`.
    """
    raw = (os.environ.get("OTP_EXP_MINUTES") or "").strip()
    try:
        v = int(raw or "10")
    except ValueError:
        v = 10
    # Reasonable bounds to avoid foot-guns.
    if v < 1:
        v = 1
    if v > 60:
        v = 60
    return v


def reset_token_exp_minutes() -> int:
    raw = (os.environ.get("RESET_TOKEN_EXP_MINUTES") or "").strip()
    try:
        return max(5, int(raw or "60"))
    except ValueError:
        return 60


# -----------------------
# Email delivery
# -----------------------
def email_backend() -> str:
    """
    Email backend selector:
    - "auto" (default): prefer Brevo if configured, else SMTP
    - "brevo": force Brevo (requires BREVO_API_KEY + sender)
    - "smtp": force SMTP (requires SMTP_HOST + sender)
    - "console": log email contents instead of sending (dev-only)
    """
    return (os.environ.get("EMAIL_BACKEND") or "auto").strip().lower()


def brevo_api_key() -> str:
    return (os.environ.get("BREVO_API_KEY") or "").strip()


def brevo_from_email() -> str:
    return (os.environ.get("BREVO_FROM") or "").strip()


def brevo_sender_name() -> str:
    return (os.environ.get("BREVO_SENDER_NAME") or "Urgent Sales").strip()


def smtp_host() -> str:
    return (os.environ.get("SMTP_HOST") or "").strip()


def smtp_port() -> int:
    raw = (os.environ.get("SMTP_PORT") or "").strip()
    try:
        return int(raw or "587")
    except ValueError:
        return 587


def smtp_user() -> str:
    return (os.environ.get("SMTP_USER") or "").strip()


def smtp_pass() -> str:
    return (os.environ.get("SMTP_PASS") or "").strip()


def smtp_from_email() -> str:
    # Allow either SMTP_FROM or BREVO_FROM as the sender address.
    return ((os.environ.get("SMTP_FROM") or "").strip() or brevo_from_email() or smtp_user()).strip()


# -----------------------
# Payments (Stripe Checkout)
# -----------------------
def stripe_secret_key() -> str:
    return (os.environ.get("STRIPE_SECRET_KEY") or "").strip()


def stripe_webhook_secret() -> str:
    return (os.environ.get("STRIPE_WEBHOOK_SECRET") or "").strip()


def stripe_api_base() -> str:
    return (os.environ.get("STRIPE_API_BASE") or "https://api.stripe.com").strip().rstrip("/")


def payment_currency() -> str:
    return (os.environ.get("PAYMENT_CURRENCY") or "inr").strip().lower()


# -----------------------
# Admin seed
# -----------------------
def seed_admin_username() -> str:
    return (os.environ.get("SEED_ADMIN_USERNAME") or "admin").strip()


def seed_admin_email() -> str:
    return (os.environ.get("SEED_ADMIN_EMAIL") or "admin@local").strip().lower()


def seed_admin_password() -> str:
    return (os.environ.get("SEED_ADMIN_PASSWORD") or "").strip()
