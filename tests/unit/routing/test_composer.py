"""
specialist-router: unit tests for context composition

File: tests/unit/routing/test_composer.py

Purpose
- Validate the merged working context built for co-primary profiles.

What this test file should cover
- Required-section union in confidence order with same-name collapsing.
- Preference-backed versus profile-attributed sections.
- Optional sections listed separately and dropped when also required.
- Idempotence: identical inputs produce identical digests.
"""

from __future__ import annotations

import pytest

from specialist_router.domain.errors import NotFoundError
from specialist_router.domain.models import CompositionResult, Profile, TaskRequest
from specialist_router.registry.profile_registry import ProfileRegistry
from specialist_router.routing.classifier import classify, rank_profiles
from specialist_router.routing.composer import ContextComposer, compose_context
from specialist_router.routing.resolver import active_profiles_for, resolve_all


def _compose_builtin(request: TaskRequest) -> CompositionResult:
    registry = ProfileRegistry.builtin()
    classification = classify(request, registry)
    preferences = resolve_all(active_profiles_for(classification, registry.snapshot()))
    return compose_context(classification, preferences, registry.snapshot())


def test_backend_and_frontend_sections_merge_in_profile_order() -> None:
    composition = _compose_builtin(TaskRequest("checkout", hints=("api", "ui")))

    assert composition.active_profile_ids == ("backend", "frontend")
    assert composition.section_names() == (
        "Summary",
        "API Design",
        "Data Model",
        "Language",
        "Testing Strategy",
        "Quality Gates",
        "Component Plan",
        "Accessibility",
    )
    assert [section.name for section in composition.optional_sections] == [
        "Operational Notes",
        "Visual Design",
    ]
    assert composition.collaboration_required is True


def test_shared_sections_collapse_into_one_slot() -> None:
    composition = _compose_builtin(TaskRequest("checkout", hints=("api", "ui")))
    sections = {section.name: section for section in composition.sections}

    summary = sections["Summary"]
    assert summary.contributors == ("backend", "frontend")
    assert summary.attributed is True
    assert summary.preference is None
    assert [fragment.profile_id for fragment in summary.fragments] == ["backend", "frontend"]

    language = sections["Language"]
    assert language.attributed is False
    assert language.preference is not None
    assert language.preference.require_choice().option == "TypeScript"

    testing = sections["Testing Strategy"]
    assert testing.preference is not None
    assert testing.preference.is_conflict
    assert [option.option for option in testing.preference.candidates] == [
        "pytest",
        "Playwright",
    ]


def test_builtin_preferences_cover_every_category() -> None:
    composition = _compose_builtin(TaskRequest("checkout", hints=("api", "ui")))

    assert [item.category for item in composition.preferences] == [
        "language",
        "datastore",
        "api_style",
        "testing",
        "quality_gates",
        "framework",
    ]
    assert [item.category for item in composition.conflicts] == ["testing"]
    gates = composition.preference("quality_gates")
    assert gates is not None
    assert [option.option for option in gates.selection] == ["lint", "unit tests"]
    datastore = composition.preference("DATASTORE")
    assert datastore is not None
    assert datastore.require_choice().option == "PostgreSQL"


def test_single_profile_composition_skips_collaboration() -> None:
    composition = _compose_builtin(TaskRequest("add a REST endpoint with database migration"))

    assert composition.active_profile_ids == ("backend",)
    assert composition.collaboration_required is False
    assert [binding.profile_id for binding in composition.contracts] == ["backend"]
    assert composition.conflicts == ()


def test_composition_is_idempotent() -> None:
    request = TaskRequest("checkout", hints=("api", "ui"))

    first = _compose_builtin(request)
    second = _compose_builtin(request)

    assert first == second
    assert first.digest == second.digest
    assert len(first.digest) == 64


def test_optional_section_required_elsewhere_is_dropped() -> None:
    docs = Profile(
        id="docs",
        display_name="Docs",
        domain_tags=("readme",),
        template=[  # type: ignore[arg-type]
            {"name": "Overview", "required": True},
            {"name": "Changelog", "required": False},
        ],
    )
    release = Profile(
        id="release",
        display_name="Release",
        domain_tags=("readme",),
        template=[  # type: ignore[arg-type]
            {"name": "changelog", "required": True, "guidance": "List user-visible changes."},
        ],
    )
    registry = ProfileRegistry([docs, release])
    classification = rank_profiles(TaskRequest("update the readme"), registry.snapshot())
    composition = compose_context(classification, (), registry.snapshot())

    assert composition.section_names() == ("Overview", "changelog")
    assert composition.optional_sections == ()


def test_missing_profile_in_snapshot_raises_not_found() -> None:
    registry = ProfileRegistry.builtin()
    classification = classify(TaskRequest("new api endpoint"), registry)

    with pytest.raises(NotFoundError):
        compose_context(classification, (), ())


def test_context_composer_reads_registry_snapshot() -> None:
    registry = ProfileRegistry.builtin()
    classification = classify(TaskRequest("new api endpoint"), registry)
    composer = ContextComposer(registry)

    composition = composer.compose(classification, ())

    assert composition.active_profile_ids == ("backend",)
    assert all(section.preference is None for section in composition.sections)
