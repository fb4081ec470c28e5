import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Config:
    # Base directory of the backend (one level above this package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")

    CAMPAIGN_ENGINE_ENV = (os.getenv("CAMPAIGN_ENGINE_ENV", "dev") or "dev").strip().lower()
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")

    _default_sqlite_path = os.path.join(INSTANCE_DIR, "campaign_engine.db").replace("\\", "/")
    _db_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or ""
    DATABASE_URL_SET = bool(_db_url)
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url or f"sqlite:///{_default_sqlite_path}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for the dashboard build
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    # Optional bearer token for /api/admin/*; unset leaves the admin API open (dev)
    ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "")

    # Ad network
    ADNETWORK_API_KEY = os.getenv("ADNETWORK_API_KEY", "")
    ADNETWORK_BASE_URL = os.getenv("ADNETWORK_BASE_URL", "https://api.trafficstars.com/v1")
    ADNETWORK_TOKEN_URL = os.getenv("ADNETWORK_TOKEN_URL", "https://api.trafficstars.com/v1/auth/token")
    ADNETWORK_TIMEOUT_SECONDS = float(os.getenv("ADNETWORK_TIMEOUT_SECONDS", "10"))
    ADNETWORK_MAX_RETRIES = int(os.getenv("ADNETWORK_MAX_RETRIES", "3"))
    ADNETWORK_BACKOFF_SECONDS = float(os.getenv("ADNETWORK_BACKOFF_SECONDS", "1.0"))

    # Click serving
    CLICK_CACHE_TTL_SECONDS = float(os.getenv("CLICK_CACHE_TTL_SECONDS", "30"))

    # Scheduler
    AUTOMATION_TICK_SECONDS = int(os.getenv("AUTOMATION_TICK_SECONDS", "300"))
    AUTOMATION_WORKERS = int(os.getenv("AUTOMATION_WORKERS", "4"))
    AUTOMATION_SCHEDULER_ENABLED = _env_bool("AUTOMATION_SCHEDULER_ENABLED", CAMPAIGN_ENGINE_ENV in ("prod", "production"))
    AUTOMATION_RUN_NOW_WAIT_SECONDS = float(os.getenv("AUTOMATION_RUN_NOW_WAIT_SECONDS", "30"))

    # Budget aggregator window; unset uses automation_settings.debounce_seconds
    BUDGET_DEBOUNCE_SECONDS = float(os.environ["BUDGET_DEBOUNCE_SECONDS"]) if os.getenv("BUDGET_DEBOUNCE_SECONDS") else None
