import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DB_PATH = os.getenv("FOCUSMINDER_DB_PATH", str(BASE_DIR / "data" / "focusminder.db"))
# Seconds a writer waits for the SQLite lock
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("FOCUSMINDER_DB_BUSY_TIMEOUT", "15"))
HOST = os.getenv("FOCUSMINDER_HOST", "0.0.0.0")
PORT = int(os.getenv("FOCUSMINDER_PORT", "8000"))
LOG_LEVEL = os.getenv("FOCUSMINDER_LOG_LEVEL", "INFO").upper()

# Seconds between scheduler ticks, kept within 1..30
POLL_INTERVAL_SECONDS = min(max(float(os.getenv("FOCUSMINDER_POLL_INTERVAL", "1")), 1.0), 30.0)

# Default work session settings (minutes)
DEFAULT_TOTAL_DURATION = float(os.getenv("FOCUSMINDER_TOTAL_DURATION", "60"))
DEFAULT_BREAK_INTERVAL = float(os.getenv("FOCUSMINDER_BREAK_INTERVAL", "25"))
DEFAULT_BREAK_DURATION = float(os.getenv("FOCUSMINDER_BREAK_DURATION", "1.5"))
DEFAULT_AUTO_START = _env_bool("FOCUSMINDER_AUTO_START", "true")
DEFAULT_SOUND_ENABLED = _env_bool("FOCUSMINDER_SOUND_ENABLED", "true")
