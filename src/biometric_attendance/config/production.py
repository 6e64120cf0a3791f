import os

from .base import *  # noqa: F401,F403

SECRET_KEY = os.getenv("SECRET_KEY", "please-set-SECRET_KEY")

DEBUG = False

LOG_FILE = os.getenv("LOG_FILE", "logs/attendance.log")
