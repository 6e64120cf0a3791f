"""Attendance photo storage.

Layout: ``identities/<sanitized-name>/<identity-id>/images/<kind>_<YYYY-MM-DD>_<HH-MM-SS>.jpg``
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from ..core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)


def decode_image_payload(data: str) -> bytes:
    """Decode a base64 image, with or without a ``data:...;base64,`` prefix."""
    if not data:
        raise ValidationError("Image is required")
    payload = data.split(",", 1)[1] if "," in data else data
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Image is not valid base64") from e


def sanitize_folder_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9\s-]", "", name.lower())
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name)
    return name.strip("-")


def identity_folder(name: str, identity_id: str) -> str:
    return f"identities/{sanitize_folder_name(name)}/{identity_id}/images"


class PhotoStore(Protocol):
    def store(self, photo: bytes, *, identity_id: str, name: str, kind: str, at: datetime) -> str:
        """Persist ``photo`` and return its reference (URL or path).

        Raises StorageError on failure.
        """

        raise NotImplementedError


class LocalPhotoStore(PhotoStore):
    def __init__(self, root_dir: str | Path, *, base_url: Optional[str] = None):
        self._root = Path(root_dir)
        self._base_url = base_url.rstrip("/") if base_url else None

    def store(self, photo: bytes, *, identity_id: str, name: str, kind: str, at: datetime) -> str:
        key = f"{identity_folder(name, identity_id)}/{kind}_{at:%Y-%m-%d}_{at:%H-%M-%S}.jpg"
        path = self._root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(photo)
        except OSError as e:
            raise StorageError(f"Failed to store photo {key}: {e}") from e

        logger.info("Photo stored: %s", key)
        if self._base_url:
            return f"{self._base_url}/{key}"
        return str(path)
