import os


def current_env() -> str:
    return (os.getenv("THULUBAZAAR_ENV") or os.getenv("FLASK_ENV") or "dev").strip().lower()


def is_production() -> bool:
    return current_env() in ("prod", "production")


def env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def normalize_database_url(url: str) -> str:
    # Render/Heroku hand out postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def api_base_url() -> str:
    return (os.getenv("API_BASE_URL") or "http://localhost:5000").strip().rstrip("/")


def frontend_url() -> str:
    return (os.getenv("FRONTEND_URL") or "http://localhost:3333").strip().rstrip("/")


def payments_http_timeout() -> int:
    return env_int("PAYMENTS_HTTP_TIMEOUT_SECONDS", 25, minimum=1, maximum=120)


def mock_payments_enabled() -> bool:
    return env_flag("PAYMENTS_MOCK_ENABLED", default=not is_production())


def promotion_sweep_interval_seconds() -> int:
    return env_int("PROMOTION_SWEEP_INTERVAL_SECONDS", 300, minimum=30, maximum=86400)
