"""Test doubles and builders shared by the test modules."""

from __future__ import annotations

import base64
import datetime

from django.utils import timezone

import cv2
import numpy as np

from recognition.extractor import DetectedFace, FaceBox
from users.models import FaceEmbedding, UserProfile

DIMENSION = 128


def reference_vector(seed: int = 0) -> np.ndarray:
    vector = np.zeros(DIMENSION)
    vector[seed % DIMENSION] = 1.0
    return vector


def probe_at(distance: float, seed: int = 0) -> np.ndarray:
    """Return a probe exactly ``distance`` away from ``reference_vector(seed)``."""

    probe = reference_vector(seed)
    probe[(seed + 1) % DIMENSION] = distance
    return probe


def make_face(
    embedding,
    *,
    width: float = 120.0,
    height: float = 120.0,
    eye_distance: float | None = 60.0,
) -> DetectedFace:
    left_eye = (30.0, 40.0) if eye_distance is not None else None
    right_eye = (30.0 + eye_distance, 40.0) if eye_distance is not None else None
    return DetectedFace(
        embedding=np.asarray(embedding, dtype=np.float64),
        box=FaceBox(0.0, 0.0, width, height),
        left_eye=left_eye,
        right_eye=right_eye,
    )


def make_image(marker: int) -> np.ndarray:
    """A tiny BGR image whose pixels all carry ``marker``; the fake extractor keys on it."""

    return np.full((8, 8, 3), marker, dtype=np.uint8)


def encode_image(marker: int) -> str:
    ok, buffer = cv2.imencode(".png", make_image(marker))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


class FakeExtractor:
    """Deterministic extractor returning faces registered per image marker."""

    def __init__(self) -> None:
        self.faces: dict[int, list[DetectedFace]] = {}
        self.expressions: dict[int, list[float]] = {}
        self.failures: dict[int, Exception] = {}
        self.detect_calls = 0

    @staticmethod
    def marker(image) -> int:
        return int(np.asarray(image)[0, 0, 0])

    def register(self, marker: int, *faces: DetectedFace) -> None:
        self.faces[marker] = list(faces)

    def register_expressions(self, marker: int, scores) -> None:
        self.expressions[marker] = list(scores)

    def fail_on(self, marker: int, exc: Exception) -> None:
        self.failures[marker] = exc

    def detect(self, image):
        self.detect_calls += 1
        marker = self.marker(image)
        if marker in self.failures:
            raise self.failures[marker]
        return list(self.faces.get(marker, []))

    def expression_scores(self, image):
        marker = self.marker(image)
        if marker in self.failures:
            raise self.failures[marker]
        return list(self.expressions.get(marker, []))


class FrozenClock:
    def __init__(self, moment: datetime.datetime) -> None:
        self.moment = moment

    def now(self) -> datetime.datetime:
        return self.moment

    def set(self, moment: datetime.datetime) -> None:
        self.moment = moment

    def advance(self, **kwargs) -> None:
        self.moment += datetime.timedelta(**kwargs)


def local_datetime(year, month, day, hour=0, minute=0) -> datetime.datetime:
    return timezone.make_aware(datetime.datetime(year, month, day, hour, minute))


def enroll(user, *vectors) -> None:
    """Store ``vectors`` as the user's enrolled embeddings without extraction."""

    FaceEmbedding.objects.bulk_create(
        [FaceEmbedding.build(user, position, vector) for position, vector in enumerate(vectors)]
    )
    profile = UserProfile.for_user(user)
    profile.face_enrolled = True
    profile.save()
