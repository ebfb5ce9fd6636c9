"""
specialist-router: unit tests for the request classifier

File: tests/unit/routing/test_classifier.py

Purpose
- Validate tag-overlap scoring, co-primary detection, and the ambiguity gate.

What this test file should cover
- Exact confidences for the built-in backend/frontend catalog.
- Hints overriding free text; phrase and plural matching.
- Tie tolerance and registration-order tie-breaks.
- Determinism and disjoint-tag dominance (property-based).
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from specialist_router.domain.errors import AmbiguousRequestError
from specialist_router.domain.models import Profile, TaskRequest
from specialist_router.registry.profile_registry import ProfileRegistry
from specialist_router.routing.classifier import (
    ClassifierSettings,
    RequestClassifier,
    classify,
    extract_signals,
    rank_profiles,
    tokenize,
)

_ALPHA_TAGS = ("alpha", "beta", "gamma")
_OMEGA_TAGS = ("omega", "sigma", "theta")
_FILLER_WORDS = ("please", "the", "quickly", "refactor", "with", "care", "some", "team")


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))


def _profile(profile_id: str, tags: tuple[str, ...]) -> Profile:
    return Profile(id=profile_id, display_name=profile_id.title(), domain_tags=tags)


def test_builtin_catalog_scores_backend_request() -> None:
    registry = ProfileRegistry.builtin()
    result = classify(TaskRequest("add a REST endpoint with database migration"), registry)

    assert result.co_primary == ("backend",)
    assert result.top is not None
    assert result.top.profile_id == "backend"
    assert result.top.confidence == pytest.approx(0.666667)
    assert result.top.matched_tags == ("database", "endpoint")
    assert result.confidence_of("frontend") == 0.0
    assert result.explain() == {"backend": ("database", "endpoint"), "frontend": ()}


def test_hints_override_description_and_tie_both_profiles() -> None:
    registry = ProfileRegistry.builtin()
    request = TaskRequest("build a settings page component", hints=("api", "ui"))

    result = classify(request, registry)

    assert result.co_primary == ("backend", "frontend")
    assert result.confidence_of("backend") == pytest.approx(0.333333)
    assert result.confidence_of("frontend") == pytest.approx(0.333333)
    assert result.signals == ("api", "ui")


def test_hint_only_request_ignores_description_text() -> None:
    registry = ProfileRegistry.builtin()
    request = TaskRequest("a login page component with a form", hints=("database",))

    result = classify(request, registry)

    assert result.co_primary == ("backend",)
    assert result.confidence_of("frontend") == 0.0


def test_ambiguous_request_carries_sub_threshold_scores() -> None:
    registry = ProfileRegistry.builtin()

    with pytest.raises(AmbiguousRequestError) as excinfo:
        classify(TaskRequest("write a haiku about autumn"), registry)

    result = excinfo.value.result
    assert [score.profile_id for score in result.scores] == ["backend", "frontend"]
    assert all(score.confidence == 0.0 for score in result.scores)
    assert result.co_primary == ()
    assert not result.is_confident


def test_multi_word_tags_match_as_contiguous_phrases() -> None:
    registry = ProfileRegistry.builtin()

    matched = rank_profiles(TaskRequest("plan the schema migration"), registry.snapshot())
    split = rank_profiles(TaskRequest("schema review before migration"), registry.snapshot())

    assert matched.scores[0].matched_tags == ("schema migration",)
    assert split.scores[0].matched_tags == ()


def test_tokenize_folds_simple_plurals() -> None:
    assert tokenize("New Endpoints, Queues & APIs") == ("new", "endpoint", "queue", "api")
    assert tokenize("class access bus") == ("class", "access", "bus")


def test_extract_signals_keeps_each_hint_as_its_own_segment() -> None:
    request = TaskRequest("ignored text", hints=("Schema Migration", "ui"))
    assert extract_signals(request) == (("schema", "migration"), ("ui",))


def test_tie_tolerance_controls_co_primary_membership() -> None:
    profiles = (_profile("alpha", _ALPHA_TAGS), _profile("mixed", ("alpha", "delta", "zeta")))
    request = TaskRequest("alpha and beta")

    narrow = rank_profiles(request, profiles, ClassifierSettings(tie_tolerance=0.05))
    wide = rank_profiles(request, profiles, ClassifierSettings(tie_tolerance=0.4))

    assert narrow.co_primary == ("alpha",)
    assert wide.co_primary == ("alpha", "mixed")


def test_equal_scores_keep_registration_order() -> None:
    profiles = (_profile("zeta", ("shared",)), _profile("able", ("shared",)))

    result = rank_profiles(TaskRequest("shared work"), profiles)

    assert [score.profile_id for score in result.scores] == ["zeta", "able"]
    assert result.co_primary == ("zeta", "able")


def test_saturation_caps_the_denominator() -> None:
    profile = _profile("wide", ("one", "two", "three", "four", "five", "six"))

    saturated = rank_profiles(TaskRequest("one two three"), (profile,))
    unsaturated = rank_profiles(
        TaskRequest("one two three"), (profile,), ClassifierSettings(saturation=6)
    )

    assert saturated.scores[0].confidence == 1.0
    assert unsaturated.scores[0].confidence == 0.5


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"min_confidence": 0.0}, "min_confidence"),
        ({"min_confidence": 1.5}, "min_confidence"),
        ({"tie_tolerance": 1.0}, "tie_tolerance"),
        ({"tie_tolerance": float("nan")}, "tie_tolerance"),
        ({"saturation": 0}, "saturation"),
        ({"saturation": True}, "saturation"),
    ],
)
def test_classifier_settings_reject_out_of_range_values(
    kwargs: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        ClassifierSettings(**kwargs)  # type: ignore[arg-type]


def test_classifier_settings_from_config_section() -> None:
    parsed = ClassifierSettings.from_config({"min_confidence": 0.5, "tie_tolerance": 0.0})
    assert parsed == ClassifierSettings(min_confidence=0.5, tie_tolerance=0.0, saturation=3)


def test_request_classifier_logs_decisions() -> None:
    logger = _RecordingLogger()
    classifier = RequestClassifier(logger=logger)
    registry = ProfileRegistry.builtin()

    classifier.classify(TaskRequest("new api endpoint"), registry)
    with pytest.raises(AmbiguousRequestError):
        classifier.classify(TaskRequest("nothing relevant here"), registry)

    names = [name for name, _ in logger.events]
    assert names == ["classifier_request_classified", "classifier_request_ambiguous"]
    assert logger.events[0][1]["co_primary"] == ["backend"]
    assert logger.events[1][1]["top_confidence"] == 0.0


_words = st.lists(
    st.sampled_from(_ALPHA_TAGS + _OMEGA_TAGS + _FILLER_WORDS), min_size=1, max_size=12
)


@settings(max_examples=25, derandomize=True, deadline=None)
@given(words=_words)
def test_classification_is_deterministic(words: list[str]) -> None:
    registry = ProfileRegistry([_profile("alpha", _ALPHA_TAGS), _profile("omega", _OMEGA_TAGS)])
    request = TaskRequest(" ".join(words))

    first = rank_profiles(request, registry.snapshot())
    second = rank_profiles(request, registry.snapshot())

    assert first == second
    assert first.to_json() == second.to_json()


@settings(max_examples=25, derandomize=True, deadline=None)
@given(
    tags=st.lists(st.sampled_from(_ALPHA_TAGS), min_size=1, max_size=3, unique=True),
    filler=st.lists(st.sampled_from(_FILLER_WORDS), max_size=5),
)
def test_disjoint_tags_never_score_the_other_profile(tags: list[str], filler: list[str]) -> None:
    profiles = (_profile("alpha", _ALPHA_TAGS), _profile("omega", _OMEGA_TAGS))

    result = rank_profiles(TaskRequest(" ".join(filler + tags)), profiles)

    assert result.co_primary == ("alpha",)
    assert result.confidence_of("omega") == 0.0
    assert result.confidence_of("alpha") == pytest.approx(round(len(tags) / 3, 6))
