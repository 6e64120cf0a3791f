"""Logging setup for the attendance service.

Modules log through ``logging.getLogger(__name__)``; this installs the
handlers once at app start.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    root = logging.getLogger("biometric_attendance")
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    # Clear existing handlers to avoid duplicates on app reload
    root.handlers.clear()
    root.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root
