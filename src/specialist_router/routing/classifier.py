"""Request classifier: score a task against every registered profile.

File: src/specialist_router/routing/classifier.py

Purpose
- Extract domain signals from a task request and score each profile by tag overlap.
- Surface near-equal top scores as co-primary profiles instead of picking one.
- Pure-function core: deterministic, same input and registry state = same output.

Scoring
- Tokens are lowercase ``[a-z0-9]+`` runs with light plural folding.
- A tag matches when its token sequence occurs contiguously in one signal segment,
  so multi-word tags ("schema migration") match as phrases.
- ``confidence = min(1, matched / min(len(tags), saturation))`` rounded to 6 places.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from specialist_router.constants import (
    CONFIDENCE_PRECISION,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_TAG_SATURATION,
    DEFAULT_TIE_TOLERANCE,
)
from specialist_router.domain.errors import AmbiguousRequestError
from specialist_router.domain.models import ClassificationResult, Profile, ProfileScore

if TYPE_CHECKING:
    from specialist_router.domain.models import TaskRequest
    from specialist_router.registry.profile_registry import ProfileRegistry

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_FLOAT_SLACK = 1e-9


@dataclass(frozen=True, slots=True)
class ClassifierSettings:
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    tie_tolerance: float = DEFAULT_TIE_TOLERANCE
    saturation: int = DEFAULT_TAG_SATURATION

    def __post_init__(self) -> None:
        for name in ("min_confidence", "tie_tolerance"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite")
            object.__setattr__(self, name, float(value))
        if not 0.0 < self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within (0, 1]")
        if not 0.0 <= self.tie_tolerance < 1.0:
            raise ValueError("tie_tolerance must be within [0, 1)")
        if isinstance(self.saturation, bool) or not isinstance(self.saturation, int):
            raise ValueError("saturation must be an integer")
        if self.saturation < 1:
            raise ValueError("saturation must be >= 1")

    @classmethod
    def from_config(cls, section: Mapping[str, object]) -> ClassifierSettings:
        """Build settings from the ``classifier`` config section."""
        min_confidence = section.get("min_confidence", DEFAULT_MIN_CONFIDENCE)
        tie_tolerance = section.get("tie_tolerance", DEFAULT_TIE_TOLERANCE)
        saturation = section.get("saturation", DEFAULT_TAG_SATURATION)
        return cls(
            min_confidence=min_confidence,  # type: ignore[arg-type]
            tie_tolerance=tie_tolerance,  # type: ignore[arg-type]
            saturation=saturation,  # type: ignore[arg-type]
        )


def tokenize(text: str) -> tuple[str, ...]:
    """Lowercase word tokens with trailing-``s`` plural folding."""
    return tuple(_fold_plural(token) for token in _TOKEN_RE.findall(text.lower()))


def extract_signals(request: TaskRequest) -> tuple[tuple[str, ...], ...]:
    """Token segments used for matching.

    Non-empty hints override the description: each hint is its own segment and
    the free text is ignored for scoring.
    """
    if request.hints:
        segments = (tokenize(hint) for hint in request.hints)
    else:
        segments = (tokenize(request.description),)
    return tuple(segment for segment in segments if segment)


def score_profile(
    profile: Profile,
    segments: Iterable[tuple[str, ...]],
    *,
    saturation: int = DEFAULT_TAG_SATURATION,
) -> ProfileScore:
    segment_list = tuple(segments)
    matched = tuple(
        tag
        for tag in profile.domain_tags
        if any(_contains_phrase(segment, tokenize(tag)) for segment in segment_list)
    )
    denominator = min(len(profile.domain_tags), saturation)
    confidence = min(1.0, len(matched) / denominator)
    return ProfileScore(
        profile_id=profile.id,
        confidence=round(confidence, CONFIDENCE_PRECISION),
        matched_tags=matched,
    )


def rank_profiles(
    request: TaskRequest,
    profiles: Iterable[Profile],
    settings: ClassifierSettings | None = None,
) -> ClassificationResult:
    """Score ``profiles`` without applying the minimum-confidence gate."""
    resolved = settings if settings is not None else ClassifierSettings()
    segments = extract_signals(request)

    indexed = [
        (index, score_profile(profile, segments, saturation=resolved.saturation))
        for index, profile in enumerate(profiles)
    ]
    indexed.sort(key=lambda item: (-item[1].confidence, item[0]))
    scores = tuple(score for _, score in indexed)

    co_primary: tuple[str, ...] = ()
    if scores and scores[0].confidence > 0.0:
        floor = scores[0].confidence - resolved.tie_tolerance - _FLOAT_SLACK
        co_primary = tuple(
            score.profile_id
            for score in scores
            if score.confidence > 0.0 and score.confidence >= floor
        )

    return ClassificationResult(
        scores=scores,
        co_primary=co_primary,
        min_confidence=resolved.min_confidence,
        tie_tolerance=resolved.tie_tolerance,
        signals=tuple(" ".join(segment) for segment in segments),
    )


def classify(
    request: TaskRequest,
    registry: ProfileRegistry,
    settings: ClassifierSettings | None = None,
) -> ClassificationResult:
    """Classify ``request`` against one consistent registry snapshot.

    Raises ``AmbiguousRequestError`` (carrying the full result) when the top
    score is below ``min_confidence``.
    """
    return classify_profiles(request, registry.snapshot(), settings)


def classify_profiles(
    request: TaskRequest,
    profiles: Iterable[Profile],
    settings: ClassifierSettings | None = None,
) -> ClassificationResult:
    """``classify`` over an explicit profile snapshot."""
    result = rank_profiles(request, profiles, settings)
    if not result.is_confident:
        raise AmbiguousRequestError(result)
    return result


class RequestClassifier:
    """Classifier bound to settings, with structured decision logging."""

    def __init__(
        self,
        settings: ClassifierSettings | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else ClassifierSettings()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> ClassifierSettings:
        return self._settings

    def classify(self, request: TaskRequest, registry: ProfileRegistry) -> ClassificationResult:
        return self.classify_profiles(request, registry.snapshot())

    def classify_profiles(
        self, request: TaskRequest, profiles: Iterable[Profile]
    ) -> ClassificationResult:
        try:
            result = classify_profiles(request, profiles, self._settings)
        except AmbiguousRequestError as exc:
            top = exc.result.top
            self._logger.info(
                "classifier_request_ambiguous",
                top_profile_id=top.profile_id if top is not None else None,
                top_confidence=top.confidence if top is not None else 0.0,
                min_confidence=self._settings.min_confidence,
                signals=list(exc.result.signals),
            )
            raise
        self._logger.info(
            "classifier_request_classified",
            co_primary=list(result.co_primary),
            scores={score.profile_id: score.confidence for score in result.scores},
            hinted=bool(request.hints),
        )
        return result


def _fold_plural(token: str) -> str:
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def _contains_phrase(tokens: tuple[str, ...], phrase: tuple[str, ...]) -> bool:
    if not phrase or len(phrase) > len(tokens):
        return False
    width = len(phrase)
    return any(tokens[start : start + width] == phrase for start in range(len(tokens) - width + 1))


__all__ = [
    "ClassifierSettings",
    "RequestClassifier",
    "classify",
    "classify_profiles",
    "extract_signals",
    "rank_profiles",
    "score_profile",
    "tokenize",
]
