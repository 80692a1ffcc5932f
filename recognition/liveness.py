"""Expression-intensity liveness heuristic.

This is a best-effort signal, not anti-spoofing. A photograph tends to show a
single flat expression while a live face activates several expression
channels at once; the score rewards both a strong dominant expression and
the number of active channels. It is only ever combined with identity
verification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from django.conf import settings

import numpy as np

from .errors import ExtractorTimeout
from .extractor import EmbeddingExtractor, call_with_timeout, get_extractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivenessResult:
    """Result of a liveness check."""

    is_live: bool
    confidence: float
    scores: tuple[float, ...] = field(default_factory=tuple)
    message: str = ""

    def as_dict(self) -> dict:
        return {"is_live": self.is_live, "confidence": round(self.confidence, 4)}


def score_liveness(scores: Sequence[float], *, noise_floor: float = 0.1) -> float:
    """Combine expression intensities into a score in ``[0, 1]``.

    ``0.5 * max(scores) + 0.1 * count(score > noise_floor)``, clamped.
    """

    if not scores:
        return 0.0
    values = np.asarray(scores, dtype=np.float64)
    active = int(np.count_nonzero(values > noise_floor))
    raw = 0.5 * float(values.max()) + 0.1 * active
    return float(min(1.0, max(0.0, raw)))


class LivenessGate:
    def __init__(
        self,
        extractor: Optional[EmbeddingExtractor] = None,
        *,
        threshold: Optional[float] = None,
        noise_floor: Optional[float] = None,
    ) -> None:
        self.extractor = extractor
        self.threshold = settings.LIVENESS_THRESHOLD if threshold is None else threshold
        self.noise_floor = settings.LIVENESS_NOISE_FLOOR if noise_floor is None else noise_floor

    def evaluate(self, scores: Sequence[float]) -> LivenessResult:
        if not scores:
            return LivenessResult(False, 0.0, message="No face detected")
        confidence = score_liveness(scores, noise_floor=self.noise_floor)
        is_live = confidence > self.threshold
        return LivenessResult(
            is_live=is_live,
            confidence=confidence,
            scores=tuple(float(score) for score in scores),
            message="Live face detected" if is_live else "Possible spoofing detected",
        )

    def check(self, image: np.ndarray) -> LivenessResult:
        """Score ``image``; extractor timeouts and failures yield a not-live result."""

        extractor = self.extractor or get_extractor()
        try:
            scores = call_with_timeout(extractor.expression_scores, image)
        except ExtractorTimeout:
            return LivenessResult(False, 0.0, message="Face analysis timed out")
        except Exception:
            logger.exception("Expression analysis failed during liveness check")
            return LivenessResult(False, 0.0, message="Face analysis failed")

        result = self.evaluate(scores or [])
        if not result.is_live:
            logger.info("Liveness check failed (score %.3f)", result.confidence)
        return result
