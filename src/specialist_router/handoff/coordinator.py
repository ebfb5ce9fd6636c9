"""
Handoff coordinator: one-directional phase state machine per task.

Phase paths
- single profile: intake -> analysis -> design -> implementation -> delivery -> closed
- multi profile:  intake -> analysis -> design -> collaboration -> implementation
  -> delivery -> closed

Leaving ``collaboration`` requires every participant's ``requires`` items to be
matched by another participant's ``provides`` (or by an external provision).
Unmet requirements park the task and are reported as a ``ContractUnsatisfied``
condition, never raised. Transitions for one task are serialized: a concurrent
or stale attempt raises ``StaleTransitionError``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import NotFoundError, StaleTransitionError, ValidationError
from specialist_router.domain.models import (
    ContractBinding,
    ContractUnsatisfied,
    HandoffPhase,
    HandoffState,
    MissingContractItem,
    ParticipantStatus,
    PhaseTransition,
    normalize_contract_item,
    phase_path,
)
from specialist_router.utils.concurrency import KeyedTryLock

if TYPE_CHECKING:
    from specialist_router.domain.models import CompositionResult

Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    """Result of ``advance``: the current snapshot plus any reported condition."""

    state: HandoffState
    advanced: bool
    condition: ContractUnsatisfied | None = None

    @property
    def parked(self) -> bool:
        return not self.advanced and self.condition is not None

    @property
    def closed(self) -> bool:
        return self.state.is_terminal


def evaluate_contracts(
    contracts: Sequence[ContractBinding],
    external_provisions: Iterable[str] = (),
) -> tuple[ParticipantStatus, ...]:
    """Match each participant's requirements against the others' provisions."""

    external = {normalize_contract_item(item) for item in external_provisions}
    gating = len(contracts) >= 2
    statuses: list[ParticipantStatus] = []
    for index, binding in enumerate(contracts):
        available = set(external)
        for other_index, other in enumerate(contracts):
            if other_index != index:
                available.update(normalize_contract_item(item) for item in other.provides)
        missing = (
            tuple(
                item
                for item in binding.requires
                if normalize_contract_item(item) not in available
            )
            if gating
            else ()
        )
        statuses.append(
            ParticipantStatus(
                profile_id=binding.profile_id,
                provides=binding.provides,
                requires=binding.requires,
                satisfied=not missing,
                missing=missing,
            )
        )
    return tuple(statuses)


def unsatisfied_condition(state: HandoffState) -> ContractUnsatisfied | None:
    """The ``ContractUnsatisfied`` condition for ``state``, if any requirement is open."""

    if not state.collaboration_required:
        return None
    missing = tuple(
        MissingContractItem(profile_id=participant.profile_id, item=item)
        for participant in state.participants
        for item in participant.missing
    )
    if not missing:
        return None
    return ContractUnsatisfied(task_id=state.task_id, missing=missing)


class HandoffCoordinator:
    """Owns task-local handoff state; the only component that mutates it."""

    def __init__(self, *, clock: Clock | None = None, logger: Any | None = None) -> None:
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._states: dict[str, HandoffState] = {}
        self._contracts: dict[str, tuple[ContractBinding, ...]] = {}
        self._guard = threading.Lock()
        self._task_locks = KeyedTryLock()

    def start(
        self,
        task_id: str,
        composition: CompositionResult,
        *,
        prior_task_id: str | None = None,
    ) -> HandoffState:
        """Create the handoff state for ``task_id`` in ``intake``."""

        _validate_task_id(task_id, "task_id")
        if prior_task_id is not None:
            _validate_task_id(prior_task_id, "prior_task_id")
        now = self._clock()
        contracts = composition.contracts
        state = HandoffState(
            task_id=task_id,
            phase=HandoffPhase.INTAKE,
            version=0,
            path=phase_path(composition.collaboration_required),
            participants=evaluate_contracts(contracts),
            created_at=now,
            updated_at=now,
            prior_task_id=prior_task_id,
        )
        with self._guard:
            if task_id in self._states:
                raise ValidationError("task_id", f"handoff already started for {task_id}")
            self._states[task_id] = state
            self._contracts[task_id] = contracts
        self._logger.info(
            "handoff_started",
            task_id=task_id,
            participants=[binding.profile_id for binding in contracts],
            collaboration_required=state.collaboration_required,
            prior_task_id=prior_task_id,
        )
        return state

    def get(self, task_id: str) -> HandoffState:
        with self._guard:
            state = self._states.get(task_id)
        if state is None:
            raise NotFoundError("task", task_id)
        return state

    def task_ids(self) -> tuple[str, ...]:
        with self._guard:
            return tuple(self._states)

    def check_contracts(self, task_id: str) -> ContractUnsatisfied | None:
        return unsatisfied_condition(self.get(task_id))

    def advance(self, task_id: str, *, expected_version: int) -> TransitionOutcome:
        """Move one phase forward, or park in ``collaboration`` on unmet contracts."""

        with self._transition(task_id, expected_version) as state:
            target = state.next_phase
            if target is None:
                raise ValidationError("phase", f"task {task_id} is already closed")

            if state.phase is HandoffPhase.COLLABORATION:
                condition = unsatisfied_condition(state)
                if condition is not None:
                    self._logger.info(
                        "handoff_parked",
                        task_id=task_id,
                        version=state.version,
                        missing=[[entry.profile_id, entry.item] for entry in condition.missing],
                    )
                    return TransitionOutcome(state=state, advanced=False, condition=condition)

            now = self._clock()
            updated = replace(
                state,
                phase=target,
                version=state.version + 1,
                updated_at=now,
                history=state.history
                + (
                    PhaseTransition(
                        from_phase=state.phase,
                        to_phase=target,
                        version=state.version + 1,
                        at=now,
                    ),
                ),
            )
            self._store(updated)

        self._logger.info(
            "handoff_advanced",
            task_id=task_id,
            from_phase=state.phase.value,
            to_phase=target.value,
            version=updated.version,
        )
        condition = (
            unsatisfied_condition(updated) if target is HandoffPhase.COLLABORATION else None
        )
        return TransitionOutcome(state=updated, advanced=True, condition=condition)

    def provide(self, task_id: str, item: str, *, expected_version: int) -> HandoffState:
        """Record a contract item supplied outside the participant set."""

        if not isinstance(item, str) or not normalize_contract_item(item):
            raise ValidationError("item", "contract item must be a non-empty string")
        cleaned = item.strip()
        with self._transition(task_id, expected_version) as state:
            known = {normalize_contract_item(existing) for existing in state.external_provisions}
            if normalize_contract_item(cleaned) in known:
                return state
            provisions = state.external_provisions + (cleaned,)
            updated = replace(
                state,
                version=state.version + 1,
                updated_at=self._clock(),
                external_provisions=provisions,
                participants=evaluate_contracts(self._contracts[task_id], provisions),
            )
            self._store(updated)
        self._logger.info(
            "handoff_provision_recorded",
            task_id=task_id,
            item=cleaned,
            version=updated.version,
        )
        return updated

    def cancel(self, task_id: str) -> HandoffState:
        """Discard the handoff state; returns the last snapshot."""

        with self._task_locks.hold(task_id) as acquired:
            with self._guard:
                state = self._states.get(task_id)
            if state is None:
                raise NotFoundError("task", task_id)
            if not acquired:
                raise StaleTransitionError(
                    task_id,
                    expected_version=state.version,
                    current_version=state.version,
                )
            self._discard(task_id)
        self._logger.info("handoff_cancelled", task_id=task_id, phase=state.phase.value)
        return state

    def _store(self, state: HandoffState) -> None:
        if state.is_terminal:
            self._discard(state.task_id)
            return
        with self._guard:
            self._states[state.task_id] = state

    def _discard(self, task_id: str) -> None:
        with self._guard:
            self._states.pop(task_id, None)
            self._contracts.pop(task_id, None)

    @contextmanager
    def _transition(self, task_id: str, expected_version: int) -> Iterator[HandoffState]:
        """Hold the per-task lock and check the optimistic version."""

        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise ValidationError("expected_version", "must be an integer")
        current = self.get(task_id)
        with self._task_locks.hold(task_id) as acquired:
            if not acquired:
                self._logger.info(
                    "handoff_transition_rejected", task_id=task_id, reason="in_flight"
                )
                raise StaleTransitionError(
                    task_id, expected_version=expected_version, current_version=current.version
                )
            state = self.get(task_id)
            if state.version != expected_version:
                self._logger.info(
                    "handoff_transition_rejected",
                    task_id=task_id,
                    reason="stale_version",
                    expected_version=expected_version,
                    current_version=state.version,
                )
                raise StaleTransitionError(
                    task_id, expected_version=expected_version, current_version=state.version
                )
            yield state


def _validate_task_id(value: str, path: str) -> None:
    try:
        domain_ids.validate_task_id(value)
    except ValueError as exc:
        raise ValidationError(path, str(exc)) from exc


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "Clock",
    "HandoffCoordinator",
    "TransitionOutcome",
    "evaluate_contracts",
    "unsatisfied_condition",
]
