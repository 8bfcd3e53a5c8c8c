import os
from dataclasses import dataclass
from typing import Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # If python-dotenv isn't installed or .env isn't present, that's fine.
    pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    Anything else (or unset) returns default.
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Mail credentials come from environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set SIGNALS_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: SIGNALS_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("SIGNALS_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("SIGNALS_DB_PATH", "./insider_signals.sqlite")
    )

    # -----------------
    # Cluster buys
    # -----------------
    CLUSTER_LOOKBACK_DAYS: int = int(os.environ.get("CLUSTER_LOOKBACK_DAYS", "7"))
    # +/- days around the cluster date used to collect trade line items
    CLUSTER_WINDOW_DAYS: int = int(os.environ.get("CLUSTER_WINDOW_DAYS", "3"))
    CLUSTER_RETENTION_DAYS: int = int(os.environ.get("CLUSTER_RETENTION_DAYS", "30"))
    # Updated (not new) clusters re-trigger notifications at or above this strength
    CLUSTER_NOTIFY_MIN_STRENGTH: int = int(os.environ.get("CLUSTER_NOTIFY_MIN_STRENGTH", "70"))
    MAX_CLUSTER_CANDIDATES: int = int(os.environ.get("MAX_CLUSTER_CANDIDATES", "500"))

    # -----------------
    # Important trades
    # -----------------
    IMPORTANT_LOOKBACK_DAYS: int = int(os.environ.get("IMPORTANT_LOOKBACK_DAYS", "7"))
    IMPORTANT_MIN_SCORE: int = int(os.environ.get("IMPORTANT_MIN_SCORE", "70"))
    IMPORTANT_RETENTION_DAYS: int = int(os.environ.get("IMPORTANT_RETENTION_DAYS", "30"))
    IMPORTANT_CLUSTER_WINDOW_DAYS: int = int(os.environ.get("IMPORTANT_CLUSTER_WINDOW_DAYS", "3"))
    MAX_TRADE_CANDIDATES: int = int(os.environ.get("MAX_TRADE_CANDIDATES", "5000"))

    # -----------------
    # First buys
    # -----------------
    FIRST_BUY_RECENT_DAYS: int = int(os.environ.get("FIRST_BUY_RECENT_DAYS", "30"))
    FIRST_BUY_LOOKBACK_DAYS: int = int(os.environ.get("FIRST_BUY_LOOKBACK_DAYS", "365"))
    FIRST_BUY_RETENTION_DAYS: int = int(os.environ.get("FIRST_BUY_RETENTION_DAYS", "90"))

    # -----------------
    # Historical metrics
    # -----------------
    METRICS_LOOKBACK_DAYS: int = int(os.environ.get("METRICS_LOOKBACK_DAYS", "90"))

    # -----------------
    # Notification dispatch
    # -----------------
    MAX_BATCH_SIZE: int = int(os.environ.get("MAX_BATCH_SIZE", "50"))
    MAX_SEND_ATTEMPTS: int = int(os.environ.get("MAX_SEND_ATTEMPTS", "3"))
    DEFAULT_MAX_ALERTS_PER_DAY: int = int(os.environ.get("DEFAULT_MAX_ALERTS_PER_DAY", "20"))
    DIGEST_WINDOW_MINUTES: int = int(os.environ.get("DIGEST_WINDOW_MINUTES", "5"))

    # -----------------
    # Mail transport (Mailgun HTTP API)
    # -----------------
    MAILGUN_API_KEY: str | None = os.environ.get("MAILGUN_API_KEY")
    MAILGUN_DOMAIN: str | None = os.environ.get("MAILGUN_DOMAIN")
    MAILGUN_BASE_URL: str = os.environ.get("MAILGUN_BASE_URL", "https://api.mailgun.net/v3")
    MAIL_FROM_EMAIL: str = os.environ.get("MAIL_FROM_EMAIL", "alerts@example.com")
    MAIL_FROM_NAME: str = os.environ.get("MAIL_FROM_NAME", "Insider Signals")
    MAIL_TIMEOUT_SECONDS: float = float(os.environ.get("MAIL_TIMEOUT_SECONDS", "20"))
    MAIL_TRACKING: bool = _env_bool("MAIL_TRACKING", False) is True

    # Used to build links inside rendered alerts.
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:5173")

    # -----------------
    # Scheduler
    # -----------------
    DETECTION_INTERVAL_SECONDS: int = int(os.environ.get("DETECTION_INTERVAL_SECONDS", "1800"))
    DISPATCH_INTERVAL_SECONDS: int = int(os.environ.get("DISPATCH_INTERVAL_SECONDS", "300"))
    SCHEDULER_POLL_SECONDS: float = float(os.environ.get("SCHEDULER_POLL_SECONDS", "5"))

    # -----------------
    # Operational API
    # -----------------
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8000"))


def load_config() -> Config:
    return Config()
