import os
from dotenv import load_dotenv

from .exceptions import ConfigError

load_dotenv()

SUPABASE_DB_URL = os.getenv("SUPABASE_DB_URL")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY")

BROADCASTIFY_API_KEY_ID = os.getenv("BROADCASTIFY_API_KEY_ID")
BROADCASTIFY_API_KEY_SECRET = os.getenv("BROADCASTIFY_API_KEY_SECRET")
BROADCASTIFY_APP_ID = os.getenv("BROADCASTIFY_APP_ID")
BROADCASTIFY_USERNAME = os.getenv("BROADCASTIFY_USERNAME")
BROADCASTIFY_PASSWORD = os.getenv("BROADCASTIFY_PASSWORD")
BROADCASTIFY_GROUP_ID = os.getenv("BROADCASTIFY_GROUP_ID", "2-1147")

# geocode.maps.co fallback keys; either may be left unset
GEOCODING_API_KEY = os.getenv("GEOCODING_API_KEY")
GEOCODING_API_KEY_2 = os.getenv("GEOCODING_API_KEY_2")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "Austin-Fire-Map/1.0")
GEOCODER_TIMEOUT_SECONDS = float(os.getenv("GEOCODER_TIMEOUT_SECONDS", "5"))
GEOCODER_MIN_INTERVAL_MS = int(os.getenv("GEOCODER_MIN_INTERVAL_MS", "1000"))

WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "20"))
# "before_processing" (default) or "after_persist"
CURSOR_COMMIT_MODE = os.getenv("CURSOR_COMMIT_MODE", "before_processing")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

REQUIRED_WORKER_SETTINGS = (
    "SUPABASE_DB_URL",
    "DEEPGRAM_API_KEY",
    "BROADCASTIFY_API_KEY_ID",
    "BROADCASTIFY_API_KEY_SECRET",
    "BROADCASTIFY_APP_ID",
    "BROADCASTIFY_USERNAME",
    "BROADCASTIFY_PASSWORD",
)


def require_worker_config() -> None:
    """
    Fail fast when the worker is started without its credentials.

    OPENAI_API_KEY and the geocoding keys are optional: without them the
    extractor uses the regex parser and the resolver only queries Nominatim.
    """
    missing = [name for name in REQUIRED_WORKER_SETTINGS if not globals().get(name)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
    if CURSOR_COMMIT_MODE not in ("before_processing", "after_persist"):
        raise ConfigError(
            "CURSOR_COMMIT_MODE must be 'before_processing' or 'after_persist'"
        )
    if WORKER_BATCH_SIZE <= 0:
        raise ConfigError("WORKER_BATCH_SIZE must be greater than 0")
