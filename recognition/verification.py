"""Face verification against a user's enrolled embeddings.

:class:`FaceVerifier` is pure: it compares one probe embedding with the
enrolled set by Euclidean distance and turns the nearest distance into an
uncalibrated confidence score. :func:`verify_user_face` adds the I/O around
it (enrollment lookup and bounded extraction).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from django.conf import settings

import numpy as np

from users.models import FaceEmbedding, UserProfile

from .errors import ExtractorTimeout, FaceNotEnrolled, SampleValidationError
from .extractor import EmbeddingExtractor, extract_single_face

logger = logging.getLogger(__name__)

NO_DESCRIPTORS_MESSAGE = "No stored face descriptors found"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    confidence: float
    distance: float
    message: str = ""

    def as_dict(self) -> dict:
        return {
            "verified": self.verified,
            "confidence": round(self.confidence, 4),
            "distance": None if math.isinf(self.distance) else round(self.distance, 4),
            "message": self.message,
        }


def euclidean_distance(left: np.ndarray, right: np.ndarray) -> Optional[float]:
    """Return the L2 distance, or ``None`` when the vectors cannot be compared."""

    left = np.asarray(left, dtype=np.float64).ravel()
    right = np.asarray(right, dtype=np.float64).ravel()
    if left.shape != right.shape:
        return None
    return float(np.linalg.norm(left - right))


def not_verified(message: str) -> VerificationResult:
    return VerificationResult(verified=False, confidence=0.0, distance=math.inf, message=message)


class FaceVerifier:
    """Decide whether a probe embedding belongs to an enrolled identity."""

    def __init__(self, threshold: Optional[float] = None) -> None:
        self.threshold = settings.FACE_VERIFICATION_THRESHOLD if threshold is None else threshold

    def verify(self, sample: np.ndarray, enrolled: Sequence[np.ndarray]) -> VerificationResult:
        distances = [
            distance
            for distance in (euclidean_distance(sample, candidate) for candidate in enrolled)
            if distance is not None
        ]
        if not distances:
            if enrolled:
                logger.warning("No enrolled embedding matches the probe dimension %d", np.size(sample))
            return not_verified(NO_DESCRIPTORS_MESSAGE)

        distance = min(distances)
        confidence = max(0.0, 1.0 - distance)
        verified = confidence >= self.threshold
        return VerificationResult(
            verified=verified,
            confidence=confidence,
            distance=distance,
            message="Face verified successfully" if verified else "Face verification failed",
        )


def enrolled_embeddings(user) -> list:
    """Return the decrypted embeddings of an enrolled user.

    Raises :class:`FaceNotEnrolled` when the profile flag is unset or no
    embedding is stored.
    """

    profile = UserProfile.for_user(user)
    if not profile.face_enrolled:
        raise FaceNotEnrolled()
    vectors = FaceEmbedding.objects.for_user(user).vectors()
    if not vectors:
        raise FaceNotEnrolled()
    return vectors


def verify_user_face(
    user,
    image: np.ndarray,
    *,
    extractor: Optional[EmbeddingExtractor] = None,
    verifier: Optional[FaceVerifier] = None,
    enrolled: Optional[Sequence[np.ndarray]] = None,
) -> VerificationResult:
    """Verify that ``image`` shows ``user``.

    Zero or several faces raise a :class:`SampleValidationError`. Extractor
    timeouts and failures are logged and reported as a failed verification.
    Callers that already loaded the enrolled embeddings may pass them in.
    """

    if enrolled is None:
        enrolled = enrolled_embeddings(user)
    verifier = verifier or FaceVerifier()

    try:
        face = extract_single_face(image, extractor)
    except SampleValidationError:
        raise
    except ExtractorTimeout:
        logger.warning("Face extraction timed out while verifying user %s", user.pk)
        return not_verified("Face analysis timed out")
    except Exception:
        logger.exception("Face extraction failed while verifying user %s", user.pk)
        return not_verified("Face analysis failed")

    result = verifier.verify(face.embedding, enrolled)
    if not result.verified:
        logger.info(
            "Face verification failed for user %s (confidence %.3f)", user.pk, result.confidence
        )
    return result
