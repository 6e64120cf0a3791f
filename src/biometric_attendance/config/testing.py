import os

from .base import *  # noqa: F401,F403

SECRET_KEY = "test-secret"

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "biometric_attendance_test"),
}

DEBUG = False
AUTO_INIT_DB = False
TIMEZONE = "UTC"
PHOTO_DIR = os.getenv("PHOTO_DIR", "/tmp/biometric_attendance_photos")
