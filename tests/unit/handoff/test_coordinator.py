"""
specialist-router: unit tests for the handoff coordinator

File: tests/unit/handoff/test_coordinator.py

Purpose
- Validate the one-directional phase machine, contract parking, and optimistic
  versioning of per-task handoff state.

What this test file should cover
- Single-profile and multi-profile phase paths.
- Parking on unmet contracts and unparking via external provisions.
- Stale and concurrent transitions are rejected without state changes.
- Cancel and close discard task-local state.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import NotFoundError, StaleTransitionError, ValidationError
from specialist_router.domain.models import CompositionResult, ContractBinding, HandoffPhase
from specialist_router.handoff.coordinator import HandoffCoordinator, evaluate_contracts


class _TickingClock:
    def __init__(self) -> None:
        self._now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self._now = self._now + timedelta(seconds=1)
        return self._now


def _composition(*bindings: ContractBinding) -> CompositionResult:
    ids = tuple(binding.profile_id for binding in bindings)
    return CompositionResult(
        active_profile_ids=ids,
        co_primary=ids,
        confidences=tuple((profile_id, 0.5) for profile_id in ids),
        preferences=(),
        sections=(),
        optional_sections=(),
        contracts=bindings,
        collaboration_required=len(bindings) >= 2,
    )


_BACKEND = ContractBinding(
    profile_id="backend", provides=("API contract", "data model"), requires=("UI contract",)
)
_FRONTEND = ContractBinding(
    profile_id="frontend", provides=("UI contract",), requires=("API contract",)
)
_DESIGN = ContractBinding(profile_id="design", provides=(), requires=("design-doc",))


def _drive(coordinator: HandoffCoordinator, task_id: str) -> list[HandoffPhase]:
    phases = [coordinator.get(task_id).phase]
    while True:
        state = coordinator.get(task_id)
        outcome = coordinator.advance(task_id, expected_version=state.version)
        phases.append(outcome.state.phase)
        if outcome.closed or outcome.parked:
            return phases


def test_single_profile_path_skips_collaboration() -> None:
    coordinator = HandoffCoordinator(clock=_TickingClock())
    task_id = domain_ids.generate_task_id()
    state = coordinator.start(task_id, _composition(_BACKEND))

    assert state.phase is HandoffPhase.INTAKE
    assert state.version == 0
    assert state.collaboration_required is False
    assert state.participants[0].satisfied is True

    assert _drive(coordinator, task_id) == [
        HandoffPhase.INTAKE,
        HandoffPhase.ANALYSIS,
        HandoffPhase.DESIGN,
        HandoffPhase.IMPLEMENTATION,
        HandoffPhase.DELIVERY,
        HandoffPhase.CLOSED,
    ]


def test_multi_profile_path_passes_collaboration_when_contracts_match() -> None:
    coordinator = HandoffCoordinator(clock=_TickingClock())
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND, _FRONTEND))

    phases = _drive(coordinator, task_id)

    assert phases == [
        HandoffPhase.INTAKE,
        HandoffPhase.ANALYSIS,
        HandoffPhase.DESIGN,
        HandoffPhase.COLLABORATION,
        HandoffPhase.IMPLEMENTATION,
        HandoffPhase.DELIVERY,
        HandoffPhase.CLOSED,
    ]
    with pytest.raises(NotFoundError):
        coordinator.get(task_id)


def test_closing_outcome_carries_full_history() -> None:
    coordinator = HandoffCoordinator(clock=_TickingClock())
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND))

    outcome = None
    for version in range(5):
        outcome = coordinator.advance(task_id, expected_version=version)

    assert outcome is not None and outcome.closed
    assert outcome.state.version == 5
    assert [item.to_phase for item in outcome.state.history][-1] is HandoffPhase.CLOSED
    assert [item.version for item in outcome.state.history] == [1, 2, 3, 4, 5]
    assert outcome.state.updated_at > outcome.state.created_at


def test_unmet_requirement_parks_task_in_collaboration() -> None:
    coordinator = HandoffCoordinator(clock=_TickingClock())
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND, _DESIGN))

    phases = _drive(coordinator, task_id)
    assert phases[-1] is HandoffPhase.COLLABORATION

    parked_state = coordinator.get(task_id)
    outcome = coordinator.advance(task_id, expected_version=parked_state.version)

    assert outcome.parked
    assert outcome.advanced is False
    assert outcome.state.version == parked_state.version
    assert outcome.condition is not None
    assert outcome.condition.task_id == task_id
    assert outcome.condition.items_for("design") == ("design-doc",)
    assert outcome.condition.items_for("backend") == ("UI contract",)
    assert coordinator.check_contracts(task_id) == outcome.condition


def test_external_provision_unparks_task() -> None:
    coordinator = HandoffCoordinator(clock=_TickingClock())
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND, _DESIGN))
    _drive(coordinator, task_id)

    state = coordinator.get(task_id)
    state = coordinator.provide(task_id, "Design Doc", expected_version=state.version)
    state = coordinator.provide(task_id, "ui_contract", expected_version=state.version)

    assert state.external_provisions == ("Design Doc", "ui_contract")
    assert all(participant.satisfied for participant in state.participants)
    outcome = coordinator.advance(task_id, expected_version=state.version)
    assert outcome.advanced
    assert outcome.state.phase is HandoffPhase.IMPLEMENTATION


def test_duplicate_provision_is_idempotent() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND, _DESIGN))

    first = coordinator.provide(task_id, "design-doc", expected_version=0)
    second = coordinator.provide(task_id, "DESIGN DOC", expected_version=first.version)

    assert first.version == 1
    assert second == first


def test_provide_rejects_blank_items() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND))

    with pytest.raises(ValidationError):
        coordinator.provide(task_id, "  - ", expected_version=0)


def test_stale_version_is_rejected_without_change() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND))
    coordinator.advance(task_id, expected_version=0)

    with pytest.raises(StaleTransitionError) as excinfo:
        coordinator.advance(task_id, expected_version=0)

    assert excinfo.value.expected_version == 0
    assert excinfo.value.current_version == 1
    assert coordinator.get(task_id).phase is HandoffPhase.ANALYSIS


def test_concurrent_transitions_allow_exactly_one_winner() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND, _FRONTEND))
    barrier = threading.Barrier(8)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        try:
            coordinator.advance(task_id, expected_version=0)
        except StaleTransitionError:
            result = "stale"
        else:
            result = "advanced"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("advanced") == 1
    assert outcomes.count("stale") == 7
    state = coordinator.get(task_id)
    assert state.version == 1
    assert state.phase is HandoffPhase.ANALYSIS


def test_cancel_discards_state() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND))
    coordinator.advance(task_id, expected_version=0)

    last = coordinator.cancel(task_id)

    assert last.phase is HandoffPhase.ANALYSIS
    assert task_id not in coordinator.task_ids()
    with pytest.raises(NotFoundError):
        coordinator.cancel(task_id)


def test_start_rejects_duplicates_and_malformed_ids() -> None:
    coordinator = HandoffCoordinator()
    task_id = domain_ids.generate_task_id()
    coordinator.start(task_id, _composition(_BACKEND))

    with pytest.raises(ValidationError):
        coordinator.start(task_id, _composition(_BACKEND))
    with pytest.raises(ValidationError):
        coordinator.start("not-a-task", _composition(_BACKEND))
    with pytest.raises(ValidationError):
        coordinator.start(
            domain_ids.generate_task_id(), _composition(_BACKEND), prior_task_id="bogus"
        )


def test_prior_task_reference_is_recorded() -> None:
    coordinator = HandoffCoordinator()
    prior = domain_ids.generate_task_id()
    task_id = domain_ids.generate_task_id()

    state = coordinator.start(task_id, _composition(_BACKEND), prior_task_id=prior)

    assert state.prior_task_id == prior


def test_evaluate_contracts_only_gates_multiple_participants() -> None:
    solo = evaluate_contracts((_DESIGN,))
    pair = evaluate_contracts((_BACKEND, _FRONTEND))
    with_external = evaluate_contracts((_BACKEND, _DESIGN), external_provisions=("design doc",))

    assert solo[0].satisfied is True
    assert all(status.satisfied for status in pair)
    assert [status.missing for status in with_external] == [("UI contract",), ()]
