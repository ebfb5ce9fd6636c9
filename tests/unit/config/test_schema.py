"""
specialist-router: unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate schema defaults, structured issue reporting, and overlay application.

What this test file should cover
- Defaults validate cleanly and are returned as independent copies.
- Unknown and missing fields are reported with dotted paths.
- Range checks on classifier thresholds and enum checks on resolver policy.
- Built-in ``strict``/``lenient`` overlays and custom overlay validation.
"""

from __future__ import annotations

import pytest

from specialist_router.config.schema import (
    BUILTIN_OVERLAY_NAMES,
    ConfigValidationError,
    ConfigValidationIssue,
    apply_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def _issue_map(payload: object, *, active_overlay: str | None = None) -> dict[str, str]:
    result = validate_config(payload, active_overlay=active_overlay)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def test_default_config_is_valid_and_independent() -> None:
    first = default_config()
    first["classifier"]["min_confidence"] = 0.9

    second = default_config()
    result = validate_config(second)

    assert result.is_valid
    assert second["classifier"]["min_confidence"] == 0.25
    assert second["classifier"]["tie_tolerance"] == 0.05
    assert second["resolver"]["policy"] == "rank_sum"
    assert sorted(second["overlays"]) == sorted(BUILTIN_OVERLAY_NAMES)


def test_unknown_and_missing_fields_use_dotted_paths() -> None:
    payload = default_config()
    payload["classifier"]["boost"] = 2  # type: ignore[typeddict-unknown-key]
    del payload["engine"]["max_workers"]  # type: ignore[misc]
    payload["plugins"] = {}  # type: ignore[typeddict-unknown-key]

    issues = _issue_map(payload)

    assert issues["classifier.boost"] == "unknown field"
    assert issues["engine.max_workers"] == "missing required field"
    assert issues["plugins"] == "unknown field"


@pytest.mark.parametrize(
    ("section", "key", "value", "fragment"),
    [
        ("classifier", "min_confidence", 0.0, "must be > 0"),
        ("classifier", "min_confidence", 1.5, "must be <= 1.0"),
        ("classifier", "tie_tolerance", 1.0, "must be < 1"),
        ("classifier", "tie_tolerance", "wide", "expected number"),
        ("classifier", "saturation", 0, "must be >= 1"),
        ("resolver", "policy", "vote", "invalid value 'vote'"),
        ("engine", "max_workers", True, "expected integer"),
        ("engine", "closed_retention", -1, "must be >= 0"),
        ("registry", "include_builtin", "yes", "expected boolean"),
        ("observability", "log_level", "TRACE", "expected one of"),
    ],
)
def test_field_level_validation(section: str, key: str, value: object, fragment: str) -> None:
    payload = default_config()
    payload[section][key] = value  # type: ignore[literal-required]

    issues = _issue_map(payload)

    assert fragment in issues[f"{section}.{key}"]


def test_schema_version_mismatch_reports_migration_guidance() -> None:
    payload = default_config()
    payload["meta"]["schema_version"] = 2

    issues = _issue_map(payload)

    assert "newer than supported" in issues["meta.schema_version"]
    assert "older than supported" in migration_guidance(0)
    assert migration_guidance(1) == "schema version is current"


def test_builtin_overlays_adjust_classifier_thresholds() -> None:
    strict = apply_overlay(default_config(), "strict")
    lenient = apply_overlay(default_config(), "lenient")

    assert strict["classifier"]["min_confidence"] == 0.5
    assert strict["classifier"]["tie_tolerance"] == 0.0
    assert lenient["classifier"]["min_confidence"] == 0.1
    assert lenient["classifier"]["tie_tolerance"] == 0.15
    assert apply_overlay(default_config(), None) == default_config()


def test_unknown_overlay_is_rejected() -> None:
    with pytest.raises(ConfigValidationError, match="overlay 'nightly' is not defined") as exc:
        apply_overlay(default_config(), "nightly")

    assert str(exc.value).startswith("invalid config:")
    assert exc.value.issues[0].path == "overlays"


def test_custom_overlays_are_validated_as_partial_sections() -> None:
    payload = default_config()
    payload["overlays"]["wide"] = {"classifier": {"tie_tolerance": 0.3}}
    payload["overlays"]["Bad Name"] = {}
    payload["overlays"]["broken"] = {"classifier": {"min_confidence": 2}, "cache": {}}

    issues = _issue_map(payload)

    assert "overlay name must match" in issues["overlays.Bad Name"]
    assert issues["overlays.broken.classifier.min_confidence"] == "must be <= 1.0"
    assert issues["overlays.broken.cache"] == "unknown field"
    assert "overlays.wide" not in issues


def test_active_overlay_must_produce_a_valid_config() -> None:
    payload = default_config()
    payload["overlays"]["wide"] = {"classifier": {"tie_tolerance": 0.3}}

    assert validate_config(payload, active_overlay="wide").is_valid
    assert "overlay 'ghost' is not defined" in _issue_map(payload, active_overlay="ghost")[
        "overlays"
    ]


def test_merge_config_does_not_mutate_inputs() -> None:
    base = {"classifier": {"min_confidence": 0.25, "tie_tolerance": 0.05}}
    overlay = {"classifier": {"min_confidence": 0.6}}

    merged = merge_config(base, overlay)

    assert merged == {"classifier": {"min_confidence": 0.6, "tie_tolerance": 0.05}}
    assert base["classifier"]["min_confidence"] == 0.25


def test_assert_valid_config_raises_with_all_issues() -> None:
    payload = default_config()
    payload["classifier"]["min_confidence"] = 0.0
    payload["resolver"]["policy"] = "vote"  # type: ignore[typeddict-item]

    with pytest.raises(ConfigValidationError) as exc:
        assert_valid_config(payload)

    paths = [issue.path for issue in exc.value.issues]
    assert "classifier.min_confidence" in paths
    assert "resolver.policy" in paths
    assert ConfigValidationIssue("classifier.min_confidence", "must be > 0") in exc.value.issues
