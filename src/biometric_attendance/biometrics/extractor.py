"""Face embedding extraction (needs the ``vision`` extra).

Decodes a camera frame, requires exactly one sufficiently large face and
returns its 128-d encoding.
"""
from __future__ import annotations

import logging

import cv2
import face_recognition
import numpy as np

from ..core.constants import DEFAULT_MIN_FACE_SIZE
from ..core.exceptions import LowQuality, MultipleFacesDetected, NoFaceDetected, ValidationError

logger = logging.getLogger(__name__)


class FaceEmbeddingExtractor:
    def __init__(self, *, min_face_size: int = DEFAULT_MIN_FACE_SIZE):
        self._min_face_size = int(min_face_size)

    def _to_rgb(self, image_bytes: bytes) -> np.ndarray:
        nparr = np.frombuffer(image_bytes, np.uint8)
        img = cv2.imdecode(nparr, cv2.IMREAD_UNCHANGED)
        if img is None:
            raise ValidationError("Image could not be decoded")

        if len(img.shape) == 3 and img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
        elif len(img.shape) == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)

        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        return np.ascontiguousarray(rgb, dtype=np.uint8)

    def extract(self, image_bytes: bytes) -> list[float]:
        rgb = self._to_rgb(image_bytes)

        boxes = face_recognition.face_locations(rgb)
        logger.debug("Detected %d faces", len(boxes))
        if not boxes:
            raise NoFaceDetected()
        if len(boxes) > 1:
            raise MultipleFacesDetected()

        top, right, bottom, left = boxes[0]
        if (right - left) < self._min_face_size or (bottom - top) < self._min_face_size:
            raise LowQuality("Face too small. Please move closer to the camera.")

        encodings = face_recognition.face_encodings(rgb, boxes)
        if not encodings:
            raise LowQuality()
        return [float(v) for v in encodings[0]]
