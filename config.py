import os
from urllib.parse import urlsplit, urlunsplit

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis / jobs ---
    REDIS_URL = os.environ.get("REDIS_URL")
    JOBS_ENABLED = _env_bool("JOBS_ENABLED", False)
    REMINDER_QUEUE = os.environ.get("REMINDER_QUEUE", "wim-alerts")
    JOB_KEY_RETENTION_SECONDS = int(os.environ.get("JOB_KEY_RETENTION_SECONDS", str(7 * 24 * 3600)))

    # --- Reminder worker ---
    REMINDER_MAX_RETRIES = int(os.environ.get("REMINDER_MAX_RETRIES", "3"))
    REMINDER_RETRY_DELAY = int(os.environ.get("REMINDER_RETRY_DELAY", "30"))
    RUN_WORKER_IN_PROCESS = _env_bool("RUN_WORKER_IN_PROCESS", False)
    # longest broker countdown; later reminders hop forward in steps of this size
    REMINDER_MAX_COUNTDOWN = int(os.environ.get("REMINDER_MAX_COUNTDOWN", str(24 * 3600)))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # --- Add more as needed ---

settings = Settings()


def sanitize_redis_url(url: str | None) -> str:
    """Return *url* with its password masked, for log lines."""
    if not url:
        return "<unset>"
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"
    if parts.password:
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        user = parts.username or ""
        netloc = f"{user}:***@{host}"
        parts = parts._replace(netloc=netloc)
    return urlunsplit(parts)
