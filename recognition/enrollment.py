"""Face enrollment: turn a batch of sample images into stored embeddings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from django.conf import settings
from django.db import transaction

import numpy as np

from users.models import FaceEmbedding, UserProfile

from .errors import EnrollmentFailed, ExtractorTimeout, SampleValidationError
from .extractor import DetectedFace, EmbeddingExtractor, extract_single_face

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleRejection:
    index: int
    reason: str


@dataclass
class EnrollmentResult:
    embeddings: List[np.ndarray] = field(default_factory=list)
    rejected: List[SampleRejection] = field(default_factory=list)

    @property
    def enrolled_count(self) -> int:
        return len(self.embeddings)


@dataclass(frozen=True)
class SampleQualityPolicy:
    min_face_area: float = 10000.0
    min_eye_distance: float = 50.0

    @classmethod
    def from_settings(cls) -> "SampleQualityPolicy":
        return cls(
            min_face_area=settings.FACE_ENROLLMENT_MIN_FACE_AREA,
            min_eye_distance=settings.FACE_ENROLLMENT_MIN_EYE_DISTANCE,
        )

    def rejection_reason(self, face: DetectedFace) -> Optional[str]:
        """Return why ``face`` is unusable for enrollment, or ``None`` if it passes."""

        if face.area < self.min_face_area:
            return "face too small"
        eye_distance = face.eye_distance
        if eye_distance is None or eye_distance < self.min_eye_distance:
            return "face not frontal"
        return None


def _validate_sample(
    index: int,
    image: np.ndarray,
    extractor: Optional[EmbeddingExtractor],
    policy: SampleQualityPolicy,
) -> tuple[Optional[np.ndarray], Optional[SampleRejection]]:
    try:
        face = extract_single_face(image, extractor)
    except SampleValidationError as exc:
        return None, SampleRejection(index, exc.message)
    except ExtractorTimeout:
        return None, SampleRejection(index, "face analysis timed out")
    except Exception:
        logger.exception("Face extraction failed for enrollment sample %d", index)
        return None, SampleRejection(index, "face analysis failed")

    reason = policy.rejection_reason(face)
    if reason is not None:
        return None, SampleRejection(index, reason)
    return face.embedding, None


def enroll_user(
    user,
    images: Sequence[np.ndarray],
    *,
    extractor: Optional[EmbeddingExtractor] = None,
    min_samples: Optional[int] = None,
    policy: Optional[SampleQualityPolicy] = None,
) -> EnrollmentResult:
    """Validate every sample and replace the user's enrolled embeddings.

    Each image must contain exactly one sufficiently large, frontal face.
    Unusable samples are dropped and reported. If fewer than ``min_samples``
    survive, :class:`EnrollmentFailed` is raised and the previous enrollment
    is left untouched.
    """

    required = settings.FACE_ENROLLMENT_MIN_SAMPLES if min_samples is None else min_samples
    if len(images) < required:
        raise SampleValidationError(
            f"At least {required} face images are required for registration.",
            submitted=len(images),
        )

    policy = policy or SampleQualityPolicy.from_settings()
    result = EnrollmentResult()
    for index, image in enumerate(images):
        embedding, rejection = _validate_sample(index, image, extractor, policy)
        if rejection is not None:
            logger.info("Enrollment sample %d for user %s rejected: %s", index, user.pk, rejection.reason)
            result.rejected.append(rejection)
        else:
            result.embeddings.append(embedding)

    if result.enrolled_count < required:
        raise EnrollmentFailed(rejected=result.rejected)

    with transaction.atomic():
        profile = UserProfile.objects.select_for_update().get(pk=UserProfile.for_user(user).pk)
        FaceEmbedding.objects.filter(user=user).delete()
        FaceEmbedding.objects.bulk_create(
            [
                FaceEmbedding.build(user, position, embedding)
                for position, embedding in enumerate(result.embeddings)
            ]
        )
        profile.face_enrolled = True
        profile.save(update_fields=["face_enrolled", "updated_at"])

    logger.info(
        "Enrolled %d face embeddings for user %s (%d samples rejected)",
        result.enrolled_count,
        user.pk,
        len(result.rejected),
    )
    return result


def clear_enrollment(user) -> int:
    """Remove every enrolled embedding of ``user``; returns how many were deleted."""

    with transaction.atomic():
        deleted, _ = FaceEmbedding.objects.filter(user=user).delete()
        UserProfile.objects.filter(user=user).update(face_enrolled=False)
    logger.info("Cleared %d face embeddings for user %s", deleted, user.pk)
    return deleted
