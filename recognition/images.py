"""Decoding of uploaded face images."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Union

from django.conf import settings

import cv2
import numpy as np

from .errors import SampleValidationError

logger = logging.getLogger(__name__)


def decode_base64_image(
    payload: Union[str, bytes, None],
    *,
    max_bytes: Optional[int] = None,
) -> np.ndarray:
    """Decode a base64 string or data URL into a BGR image array.

    Raises :class:`SampleValidationError` for missing, oversized or
    undecodable payloads.
    """

    if not payload:
        raise SampleValidationError("No image provided.")

    limit = settings.FACE_IMAGE_MAX_BYTES if max_bytes is None else max_bytes

    if isinstance(payload, str):
        # Remove data URL prefix if present
        if payload.startswith("data:"):
            _, _, payload = payload.partition(",")
        try:
            image_bytes = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise SampleValidationError("Invalid image format.") from exc
    else:
        image_bytes = bytes(payload)

    if not image_bytes:
        raise SampleValidationError("Invalid image format.")
    if len(image_bytes) > limit:
        raise SampleValidationError("Image is too large.", max_bytes=limit)

    frame = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        logger.info("Unable to decode %d byte image upload", len(image_bytes))
        raise SampleValidationError("Unable to decode image.")
    return frame
