"""
specialist-router: unit tests for domain models

File: tests/unit/domain/test_models.py

Purpose
- Validate strict construction-time validation and canonical JSON round-trips.

What this test file should cover
- Profile normalization and rejection of malformed rankings/templates/contracts.
- TaskRequest hint normalization and the description-or-hint rule.
- ResolvedPreference invariants and strict accessors.
- HandoffState phase/path consistency.
- Property-based Profile JSON round-trip.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import ConflictError, ValidationError
from specialist_router.domain.models import (
    MULTI_PROFILE_PATH,
    SINGLE_PROFILE_PATH,
    CategoryRanking,
    CollaborationContract,
    HandoffPhase,
    HandoffState,
    PreferenceStatus,
    Profile,
    RankedOption,
    ResolvedPreference,
    TaskRequest,
    normalize_contract_item,
    phase_path,
)


def _profile(**overrides: object) -> Profile:
    payload: dict[str, object] = {
        "id": "backend",
        "display_name": "Backend",
        "domain_tags": ("api", "database"),
    }
    payload.update(overrides)
    return Profile(**payload)  # type: ignore[arg-type]


def test_profile_normalizes_identifier_and_tags() -> None:
    profile = _profile(id="  Frontend_Web ", domain_tags=("  UI ", "Schema   Migration"))

    assert profile.id == "frontend_web"
    assert profile.domain_tags == ("ui", "schema migration")


def test_profile_accepts_plain_mappings_for_nested_parts() -> None:
    profile = _profile(
        categories=[{"name": "language", "options": [{"option": "Python"}]}],
        template=[{"name": "Summary"}],
        contract={"provides": ["API contract"]},
    )

    assert profile.categories[0] == CategoryRanking(
        name="language", options=(RankedOption("Python"),)
    )
    assert profile.template[0].required is True
    assert profile.contract == CollaborationContract(provides=("API contract",))
    assert profile.category("LANGUAGE") is profile.categories[0]
    assert profile.category("framework") is None


@pytest.mark.parametrize(
    ("overrides", "fragment"),
    [
        ({"id": "9lives"}, "Profile.id"),
        ({"id": "has space"}, "Profile.id"),
        ({"domain_tags": ()}, "must not be empty"),
        ({"domain_tags": ("api", "API")}, "duplicate tag"),
        ({"domain_tags": ("---",)}, "letter or digit"),
        ({"display_name": "  "}, "Profile.display_name"),
        (
            {"categories": [{"name": "language", "options": []}]},
            "category ranking must not be empty",
        ),
        (
            {
                "categories": [
                    {"name": "language", "options": [{"option": "Go"}, {"option": "go"}]}
                ]
            },
            "duplicate option",
        ),
        (
            {
                "categories": [
                    {"name": "language", "options": [{"option": "Go"}]},
                    {"name": "Language", "options": [{"option": "Go"}]},
                ]
            },
            "duplicate category",
        ),
        ({"template": [{"name": "Summary"}, {"name": "summary"}]}, "duplicate section"),
        ({"contract": {"requires": ["API contract", "api-contract"]}}, "duplicate values"),
        ({"schema_version": 2}, "unsupported schema version"),
    ],
)
def test_profile_rejects_malformed_documents(overrides: dict[str, object], fragment: str) -> None:
    with pytest.raises(ValidationError, match=fragment):
        _profile(**overrides)


def test_category_ranking_rank_of_is_one_based_and_case_insensitive() -> None:
    ranking = CategoryRanking(
        name="datastore", options=(RankedOption("PostgreSQL"), RankedOption("SQLite"))
    )

    assert ranking.top.option == "PostgreSQL"
    assert ranking.rank_of("sqlite") == 2
    assert ranking.rank_of("Redis") is None


def test_task_request_requires_description_or_hint() -> None:
    with pytest.raises(ValidationError, match="description or at least one hint"):
        TaskRequest("   ")

    hinted = TaskRequest("", hints=(" API ", "api", "UI"))
    assert hinted.hints == ("api", "ui")


def test_task_request_description_has_no_length_cap() -> None:
    long_description = "migrate the orders table " * 2000

    request = TaskRequest(long_description)

    assert len(request.description) > 8192
    assert request.description == long_description.strip()


def test_task_request_validates_prior_task_reference() -> None:
    prior = domain_ids.generate_task_id()

    assert TaskRequest("rework", prior_task_id=prior).prior_task_id == prior
    with pytest.raises(ValidationError, match="prior_task_id"):
        TaskRequest("rework", prior_task_id="task-123")


def test_task_request_round_trips_through_json() -> None:
    request = TaskRequest("add a form", hints=("ui",), prior_task_id=domain_ids.generate_task_id())

    assert TaskRequest.from_json(request.to_json()) == request


def test_resolved_preference_invariants() -> None:
    option = RankedOption("pytest")

    with pytest.raises(ValidationError, match="candidates"):
        ResolvedPreference(category="testing", status=PreferenceStatus.CONFLICT)
    with pytest.raises(ValidationError, match="not a choice"):
        ResolvedPreference(
            category="testing",
            status=PreferenceStatus.CONFLICT,
            choice=option,
            candidates=(option,),
        )
    with pytest.raises(ValidationError, match="must select"):
        ResolvedPreference(category="testing", status="resolved")


def test_require_choice_raises_conflict_with_candidates() -> None:
    conflict = ResolvedPreference(
        category="testing",
        status="conflict",
        candidates=(RankedOption("pytest"), RankedOption("Playwright")),
    )

    assert conflict.status is PreferenceStatus.CONFLICT
    with pytest.raises(ConflictError) as excinfo:
        conflict.require_choice()
    assert [item.option for item in excinfo.value.candidates] == ["pytest", "Playwright"]
    assert "pytest, Playwright" in str(excinfo.value)


def test_unordered_multi_selection_has_no_single_choice() -> None:
    selection = (RankedOption("lint"), RankedOption("unit tests"))
    preference = ResolvedPreference(
        category="quality_gates",
        status=PreferenceStatus.RESOLVED,
        ordered=False,
        selection=selection,
    )

    assert preference.require_selection() == selection
    with pytest.raises(ConflictError):
        preference.require_choice()


def test_phase_paths() -> None:
    assert phase_path(False) == SINGLE_PROFILE_PATH
    assert phase_path(True) == MULTI_PROFILE_PATH
    assert HandoffPhase.COLLABORATION not in SINGLE_PROFILE_PATH
    assert MULTI_PROFILE_PATH.index(HandoffPhase.COLLABORATION) < MULTI_PROFILE_PATH.index(
        HandoffPhase.IMPLEMENTATION
    )


def test_handoff_state_rejects_phase_off_its_path() -> None:
    now = datetime(2026, 1, 1, tzinfo=UTC)
    common = {
        "task_id": domain_ids.generate_task_id(),
        "version": 0,
        "participants": (),
        "created_at": now,
    }

    with pytest.raises(ValidationError, match="not on this task's path"):
        HandoffState(
            phase=HandoffPhase.COLLABORATION,
            path=SINGLE_PROFILE_PATH,
            updated_at=now,
            **common,  # type: ignore[arg-type]
        )
    with pytest.raises(ValidationError, match="updated_at"):
        HandoffState(
            phase=HandoffPhase.INTAKE,
            path=SINGLE_PROFILE_PATH,
            updated_at=now - timedelta(seconds=1),
            **common,  # type: ignore[arg-type]
        )

    state = HandoffState(
        phase="delivery",  # type: ignore[arg-type]
        path=SINGLE_PROFILE_PATH,
        updated_at=now,
        **common,  # type: ignore[arg-type]
    )
    assert state.next_phase is HandoffPhase.CLOSED
    assert state.collaboration_required is False


def test_normalize_contract_item() -> None:
    assert normalize_contract_item("  API-Contract ") == "api contract"
    assert normalize_contract_item("ui_contract") == normalize_contract_item("UI contract")


_ALNUM = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_names = st.text(alphabet=_ALNUM, min_size=1, max_size=12)
_ranking = st.builds(
    lambda name, options, ordered: CategoryRanking(
        name=name, options=tuple(RankedOption(option) for option in options), ordered=ordered
    ),
    _names,
    st.lists(_names, min_size=1, max_size=4, unique_by=str.casefold),
    st.booleans(),
)
_profiles = st.builds(
    lambda tags, categories, provides: Profile(
        id="generated",
        display_name="Generated",
        domain_tags=tuple(tags),
        categories=tuple(categories),
        contract=CollaborationContract(provides=tuple(provides)),
    ),
    st.lists(_names, min_size=1, max_size=5, unique_by=str.lower),
    st.lists(_ranking, max_size=3, unique_by=lambda item: item.name.casefold()),
    st.lists(_names, max_size=3, unique_by=str.casefold),
)


@settings(max_examples=25, derandomize=True, deadline=None)
@given(profile=_profiles)
def test_profile_json_round_trip(profile: Profile) -> None:
    assert Profile.from_json(profile.to_json()) == profile
