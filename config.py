import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent
# Exported variables win over .env so the scheduler can inject per-run values.
load_dotenv(BASE_DIR / ".env", override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _path_env(name: str, default: str) -> Path:
    path = Path(os.getenv(name) or default)
    if not path.is_absolute():
        path = BASE_DIR / path
    return path.resolve()

# ── Paths ─────────────────────────────────────────────────
DB_PATH = _path_env("DB_PATH", "database/class.db")
SCHEMA_PATH = BASE_DIR / "database" / "schema.sql"

# ── Trigger ───────────────────────────────────────────────
CRON_SECRET = (os.getenv("CRON_SECRET") or "").strip()

# ── Google Classroom ──────────────────────────────────────
GOOGLE_CLIENT_ID = (os.getenv("GOOGLE_CLIENT_ID") or "").strip()
GOOGLE_CLIENT_SECRET = (os.getenv("GOOGLE_CLIENT_SECRET") or "").strip()
GOOGLE_TOKEN_URI = os.getenv("GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token")
CLASSROOM_TIMEOUT_SEC = _float_env("CLASSROOM_TIMEOUT_SEC", 30.0)
CLASSROOM_PAGE_SIZE = _int_env("CLASSROOM_PAGE_SIZE", 100)
CREDENTIAL_REFRESH_SKEW_SEC = _int_env("CREDENTIAL_REFRESH_SKEW_SEC", 60)
SYNC_MAX_WORKERS = max(1, _int_env("SYNC_MAX_WORKERS", 4))

# ── Reports ───────────────────────────────────────────────
REPORT_WINDOW_DAYS = max(1, _int_env("REPORT_WINDOW_DAYS", 7))
REPORT_DEDUP_HOURS = max(1, _int_env("REPORT_DEDUP_HOURS", 24))

# ── Telegram ──────────────────────────────────────────────
BOT_TOKEN = (os.getenv("BOT_TOKEN") or "").strip()
NOTIFY_TIMEOUT_SEC = _float_env("NOTIFY_TIMEOUT_SEC", 20.0)

# ── App ───────────────────────────────────────────────────
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
SYNC_SOURCE = "google_classroom_cron"
