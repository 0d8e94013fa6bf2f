import os
from dotenv import load_dotenv
import logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Configure logging
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


SERVICE_NAME = "DevTeam Content Integration Pipeline"
SERVICE_VERSION = "1.0.0"

# Public host that serves deployed packages
DEPLOYMENT_BASE_URL = os.getenv("DEPLOYMENT_BASE_URL", "https://games.diginativa.se").rstrip("/")
DEFAULT_LOGO_BASE_URL = os.getenv("DEFAULT_LOGO_BASE_URL", "https://cdn.diginativa.se/logos").rstrip("/")

# Content budgets
MAX_CONTENT_BYTES = int(os.getenv("MAX_CONTENT_BYTES", str(500 * 1024)))
SESSION_BUDGET_S = int(os.getenv("SESSION_BUDGET_S", "450"))
MAX_LOAD_TIME_MS = int(os.getenv("MAX_LOAD_TIME_MS", "2000"))
VALIDATION_BUDGET_S = float(os.getenv("VALIDATION_BUDGET_S", "5"))

# Job processing
JOB_TIMEOUT_S = float(os.getenv("JOB_TIMEOUT_S", str(30 * 60)))
WORKER_COUNT = int(os.getenv("WORKER_COUNT", "4"))
QUEUE_MAXSIZE = int(os.getenv("QUEUE_MAXSIZE", "100"))
WEBHOOK_TIMEOUT_S = float(os.getenv("WEBHOOK_TIMEOUT_S", "10"))
ALLOW_PARTIAL_PACKAGING = _flag("ALLOW_PARTIAL_PACKAGING")

# SCORM defaults
SCORM_MASTERY_SCORE = int(os.getenv("SCORM_MASTERY_SCORE", "80"))
SCORM_MAX_TIME_MINUTES = int(os.getenv("SCORM_MAX_TIME_MINUTES", "30"))

# Optional: JSON file with extra municipality branding profiles
BRANDING_PROFILES_PATH = os.getenv("BRANDING_PROFILES_PATH", "").strip()

# Optional: Vercel KV (Upstash REST) for job state shared across instances
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").strip()
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "").strip()

# Optional: object storage endpoint that receives built packages
ARTIFACT_UPLOAD_URL = os.getenv("ARTIFACT_UPLOAD_URL", "").strip()
ARTIFACT_UPLOAD_TOKEN = os.getenv("ARTIFACT_UPLOAD_TOKEN", "").strip()

# Comma-separated list of allowed origins for CORS (e.g., "https://devteam.diginativa.se,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


def has_kv_storage() -> bool:
    configured = bool(KV_REST_API_URL and KV_REST_API_TOKEN)
    if not configured and (KV_REST_API_URL or KV_REST_API_TOKEN):
        missing = []
        if not KV_REST_API_URL: missing.append("KV_REST_API_URL")
        if not KV_REST_API_TOKEN: missing.append("KV_REST_API_TOKEN")
        logger.warning(f"Incomplete KV configuration, missing: {', '.join(missing)}")
    return configured
