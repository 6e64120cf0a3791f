"""Settings shared by every environment, read from the process environment."""
import os

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "biometric_attendance"),
}

DEBUG = bool(int(os.getenv("DEBUG", "0")))

# Apply schema.sql on startup (idempotent: CREATE TABLE IF NOT EXISTS)
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))

MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.6"))
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "128"))

# IANA name, e.g. "Asia/Kolkata". Empty: server-local time.
TIMEZONE = os.getenv("TIMEZONE", "")

PHOTO_DIR = os.getenv("PHOTO_DIR", "photos")
PHOTO_BASE_URL = os.getenv("PHOTO_BASE_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")

# Accept raw images on the face endpoints (needs the "vision" extra)
FACE_IMAGE_EXTRACTION = bool(int(os.getenv("FACE_IMAGE_EXTRACTION", "0")))
MIN_FACE_SIZE = int(os.getenv("MIN_FACE_SIZE", "100"))

ORGANIZATION_NAME = os.getenv("ORGANIZATION_NAME", "MCA Department")
DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "+91")
IDENTITY_ID_PREFIX = os.getenv("IDENTITY_ID_PREFIX", "MCA")
