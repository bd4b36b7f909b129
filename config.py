# config.py
# Simple centralized configuration values, overridable from the environment / .env.
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


DATABASE_FILE = os.getenv("DATABASE_FILE", "friendmatch.db")

AUTH_TOKEN = os.getenv("AUTH_TOKEN", "changeme")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Matchmaking parameters
MATCH_DURATION_HOURS = int(os.getenv("MATCH_DURATION_HOURS", "48"))
ALLOW_ZERO_SCORE_FALLBACK = _flag("ALLOW_ZERO_SCORE_FALLBACK", "true")  # pair even when nothing is shared

# Caller-side retry policy for a matching session
MATCH_MAX_ATTEMPTS = int(os.getenv("MATCH_MAX_ATTEMPTS", "5"))
MATCH_RETRY_BASE_DELAY = float(os.getenv("MATCH_RETRY_BASE_DELAY", "2.0"))  # seconds
MATCH_RETRY_MAX_DELAY = float(os.getenv("MATCH_RETRY_MAX_DELAY", "30.0"))

SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))  # 0 disables the background sweep
