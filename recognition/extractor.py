"""Face detection and embedding extraction boundary.

Everything that touches the heavy DeepFace stack goes through an
:class:`EmbeddingExtractor`. The services only see :class:`DetectedFace`
values, so tests can inject a deterministic extractor that returns synthetic
vectors instead of loading a model.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar

from django.conf import settings
from django.utils.module_loading import import_string

import numpy as np

from .errors import ExtractorTimeout, MultipleFacesDetected, NoFaceDetected

logger = logging.getLogger(__name__)

T = TypeVar("T")

Point = Tuple[float, float]


@dataclass(frozen=True)
class FaceBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class DetectedFace:
    """One face found in an image together with its embedding."""

    embedding: np.ndarray
    box: FaceBox
    left_eye: Optional[Point] = None
    right_eye: Optional[Point] = None

    @property
    def area(self) -> float:
        return self.box.area

    @property
    def eye_distance(self) -> Optional[float]:
        """Horizontal pixel distance between the eye centres, ``None`` when a landmark is missing."""

        if self.left_eye is None or self.right_eye is None:
            return None
        return abs(self.right_eye[0] - self.left_eye[0])


class EmbeddingExtractor(Protocol):
    def detect(self, image: np.ndarray) -> List[DetectedFace]:  # pragma: no cover - protocol
        ...

    def expression_scores(self, image: np.ndarray) -> List[float]:  # pragma: no cover - protocol
        ...


def _as_point(value: Any) -> Optional[Point]:
    if value is None:
        return None
    try:
        x, y = value
        return float(x), float(y)
    except (TypeError, ValueError):
        return None


def faces_from_representations(representations: Any) -> List[DetectedFace]:
    """Convert the payload of ``DeepFace.represent`` into :class:`DetectedFace` values.

    With ``enforce_detection`` disabled DeepFace returns the whole frame as a
    single pseudo-face with ``face_confidence`` 0 when nothing was detected;
    such entries are dropped.
    """

    if isinstance(representations, dict):
        representations = [representations]
    if not isinstance(representations, list):
        logger.debug("Unexpected representation payload: %r", type(representations))
        return []

    faces: List[DetectedFace] = []
    for entry in representations:
        if not isinstance(entry, Mapping):
            continue
        if float(entry.get("face_confidence", 1.0) or 0.0) <= 0.0:
            continue
        raw_embedding = entry.get("embedding")
        if raw_embedding is None:
            continue
        try:
            embedding = np.array([float(value) for value in raw_embedding], dtype=np.float64)
        except (TypeError, ValueError):
            logger.debug("Unable to coerce embedding values to floats")
            continue
        if embedding.size == 0:
            continue

        area: Mapping[str, Any] = entry.get("facial_area") or {}
        box = FaceBox(
            x=float(area.get("x", 0)),
            y=float(area.get("y", 0)),
            width=float(area.get("w", 0)),
            height=float(area.get("h", 0)),
        )
        faces.append(
            DetectedFace(
                embedding=embedding,
                box=box,
                left_eye=_as_point(area.get("left_eye")),
                right_eye=_as_point(area.get("right_eye")),
            )
        )
    return faces


def expression_scores_from_analysis(analysis: Any) -> List[float]:
    """Return the emotion percentages of the first analysed face scaled to ``[0, 1]``."""

    if isinstance(analysis, list):
        analysis = analysis[0] if analysis else {}
    if not isinstance(analysis, Mapping):
        return []
    emotions = analysis.get("emotion") or {}
    return [float(value) / 100.0 for value in emotions.values()]


class DeepFaceExtractor:
    """Extractor backed by DeepFace, configured through ``DEEPFACE_OPTIMIZATIONS``."""

    def __init__(self, options: Optional[Dict[str, Any]] = None) -> None:
        self.options = dict(options if options is not None else settings.DEEPFACE_OPTIMIZATIONS)

    @property
    def model_name(self) -> str:
        return str(self.options.get("model", "Facenet"))

    @property
    def detector_backend(self) -> str:
        return str(self.options.get("detector_backend", "ssd"))

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        from deepface import DeepFace

        try:
            representations = DeepFace.represent(
                img_path=image,
                model_name=self.model_name,
                detector_backend=self.detector_backend,
                enforce_detection=False,
                align=bool(self.options.get("align", True)),
            )
        except ValueError as exc:
            logger.warning("Face detection error: %s", exc)
            return []
        return faces_from_representations(representations)

    def expression_scores(self, image: np.ndarray) -> List[float]:
        from deepface import DeepFace

        try:
            analysis = DeepFace.analyze(
                img_path=image,
                actions=["emotion"],
                detector_backend=self.detector_backend,
                enforce_detection=False,
                silent=True,
            )
        except ValueError as exc:
            logger.warning("Expression analysis error: %s", exc)
            return []
        return expression_scores_from_analysis(analysis)


_extractor: Optional[EmbeddingExtractor] = None
_executor: Optional[ThreadPoolExecutor] = None
_lock = threading.Lock()


def get_extractor() -> EmbeddingExtractor:
    """Return the process-wide extractor named by ``FACE_EXTRACTOR_CLASS``."""

    global _extractor
    with _lock:
        if _extractor is None:
            _extractor = import_string(settings.FACE_EXTRACTOR_CLASS)()
        return _extractor


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=settings.FACE_EXTRACTOR_WORKERS,
                thread_name_prefix="face-extractor",
            )
        return _executor


def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
) -> T:
    """Run ``func`` on the extractor pool and wait at most ``timeout`` seconds.

    The worker thread keeps running after a timeout; only the caller gives up.
    """

    budget = settings.FACE_EXTRACTOR_TIMEOUT_SECONDS if timeout is None else timeout
    future = _get_executor().submit(func, *args)
    try:
        return future.result(timeout=budget)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning("%s exceeded the %.1fs extractor budget", getattr(func, "__qualname__", func), budget)
        raise ExtractorTimeout() from exc


def detect_faces(
    image: np.ndarray,
    extractor: Optional[EmbeddingExtractor] = None,
    *,
    timeout: Optional[float] = None,
) -> List[DetectedFace]:
    extractor = extractor or get_extractor()
    return call_with_timeout(extractor.detect, image, timeout=timeout)


def extract_single_face(
    image: np.ndarray,
    extractor: Optional[EmbeddingExtractor] = None,
    *,
    timeout: Optional[float] = None,
) -> DetectedFace:
    """Return the only face in ``image``.

    Raises :class:`NoFaceDetected` or :class:`MultipleFacesDetected` otherwise.
    """

    faces: Sequence[DetectedFace] = detect_faces(image, extractor, timeout=timeout)
    if not faces:
        raise NoFaceDetected()
    if len(faces) > 1:
        raise MultipleFacesDetected(faces=len(faces))
    return faces[0]
