import os
from typing import Iterable, List

from dotenv import load_dotenv

from leafscan.errors import ConfigurationError

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ============================================================================#
# ENVIRONMENT / SERVICES
# ============================================================================#
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT.lower() == "production"

# Plant.id (identification provider)
PLANT_ID_API_KEY = os.getenv("PLANT_ID_API_KEY")
PLANT_ID_URL = os.getenv("PLANT_ID_URL", "https://api.plant.id/v2/identify")

# OpenRouter (Gemini text generation for disease analysis)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
ANALYSIS_MODEL = os.getenv("ANALYSIS_MODEL", "google/gemini-2.5-flash")
ANALYSIS_TEMPERATURE = float(os.getenv("ANALYSIS_TEMPERATURE", "0.2"))
ANALYSIS_MAX_TOKENS = int(os.getenv("ANALYSIS_MAX_TOKENS", "2000"))
ENRICH_ANALYSIS = _env_bool("ENRICH_ANALYSIS", "1")

# Supabase Storage (uploaded leaf photos)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "uploads")
STORE_UPLOADS = _env_bool("STORE_UPLOADS", "0")

# Redis (rate limit counters)
REDIS_URL = os.getenv("REDIS_URL")
UPSTASH_REDIS_REST_URL = os.getenv("UPSTASH_REDIS_REST_URL")
UPSTASH_REDIS_REST_TOKEN = os.getenv("UPSTASH_REDIS_REST_TOKEN")

# CORS (dashboard origins, comma separated)
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

# ============================================================================#
# TIMEOUTS / LIMITS
# ============================================================================#
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "60"))  # seconds
API_CONNECT_TIMEOUT = float(os.getenv("API_CONNECT_TIMEOUT", "15"))  # seconds

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB

# Disease analysis cache
DISEASE_ANALYSIS_TTL = int(os.getenv("DISEASE_ANALYSIS_TTL", "3600"))  # 1 hour

# Signed storage URLs
SIGNED_URL_TTL = 3600  # 1 hour

# Rate limiting per client IP
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))  # requests per window
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))  # seconds

REQUIRED_SETTINGS = ("PLANT_ID_API_KEY",)


def validate_config(required: Iterable[str] = REQUIRED_SETTINGS) -> None:
    """
    Check that the settings the service cannot run without are present.

    Called from the application lifespan so a missing key is reported as a
    ConfigurationError at startup instead of failing on import.

    Raises:
        ConfigurationError: listing every missing setting
    """
    missing = [name for name in required if not globals().get(name)]
    if missing:
        raise ConfigurationError(missing)
