import os
import logging
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


APP_NAME = os.getenv("APP_NAME", "Secure Vault")

# Identity provider (Firebase)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
FIREBASE_SERVICE_ACCOUNT_JSON = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON", "")
FIREBASE_SERVICE_ACCOUNT_JSON_PATH = (os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH", "") or "").strip().strip('"').strip("'")
# Web API key used for the Identity Toolkit REST endpoints (password sign-in, sign-up, oob codes)
FIREBASE_WEB_API_KEY = os.getenv("FIREBASE_WEB_API_KEY", "").strip()
IDENTITY_TOOLKIT_BASE = os.getenv("IDENTITY_TOOLKIT_BASE", "https://identitytoolkit.googleapis.com/v1").rstrip("/")
IDENTITY_HTTP_TIMEOUT_SEC = float(os.getenv("IDENTITY_HTTP_TIMEOUT_SEC", "15"))

# Twilio Verify (phone verification relay)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
TWILIO_VERIFY_SERVICE_SID = os.getenv("TWILIO_VERIFY_SERVICE_SID", "").strip()
TWILIO_VERIFY_FRIENDLY_NAME = os.getenv("TWILIO_VERIFY_FRIENDLY_NAME", "Secure Vault Verification")

# Email
MAIL_FROM = os.getenv("MAIL_FROM", "Secure Vault <no-reply@your-domain.com>")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")

FRONTEND_ORIGIN = (os.getenv("FRONTEND_ORIGIN", "").split(",")[0].strip() or "http://localhost:8000").rstrip("/")

# Auth flow
# One of: email | totp | phone | none
SECOND_FACTOR = (os.getenv("SECOND_FACTOR", "email") or "email").strip().lower()
OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "15"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
MFA_CHALLENGE_TTL_SECONDS = int(os.getenv("MFA_CHALLENGE_TTL_SECONDS", "300"))
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sv_session")
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

# Credential encryption at rest (per-user Fernet keys are derived from this secret)
CREDENTIALS_ENCRYPTION_SECRET = os.getenv("CREDENTIALS_ENCRYPTION_SECRET", "")

# Rate limiting
RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)

# Logging
LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("securevault")

if not CREDENTIALS_ENCRYPTION_SECRET:
    logger.warning("CREDENTIALS_ENCRYPTION_SECRET not set - using an insecure development secret")
    CREDENTIALS_ENCRYPTION_SECRET = "securevault-dev-secret"

if SECOND_FACTOR not in ("email", "totp", "phone", "none"):
    logger.warning(f"Unknown SECOND_FACTOR '{SECOND_FACTOR}', falling back to 'email'")
    SECOND_FACTOR = "email"

# Static/templates dir helpers
TEMPLATES_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "templates"))
