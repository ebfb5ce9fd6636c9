"""
Routing engine: task submission and query surface over the routing pipeline.

Purpose
- Run classify -> resolve -> compose -> handoff start for each submitted task.
- Keep per-task records so callers can query phase, contract conditions and
  preference conflicts after submission.
- A closed task stays queryable until ``closed_retention`` newer tasks have
  closed; ``cancel`` releases any task at once.
- Publish domain events for every decision on an in-process ``EventBus``.

Concurrency
- Tasks are independent; ``submit_many`` runs them on a thread pool, one task
  per worker, and returns results in input order.
- Only the registry is shared across tasks. Handoff transitions are serialized
  per task by the coordinator.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from specialist_router.constants import (
    DEFAULT_CLOSED_RETENTION,
    DEFAULT_EVENT_BUFFER,
    DEFAULT_MAX_WORKERS,
)
from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import (
    AmbiguousRequestError,
    NotFoundError,
    RouterError,
    StaleTransitionError,
    ValidationError,
)
from specialist_router.domain.events import EventType, JSONValue
from specialist_router.domain.models import (
    ClassificationResult,
    CompositionResult,
    ContractUnsatisfied,
    HandoffPhase,
    HandoffState,
    Profile,
    ResolvedPreference,
    TaskRequest,
)
from specialist_router.handoff.coordinator import (
    HandoffCoordinator,
    TransitionOutcome,
    unsatisfied_condition,
)
from specialist_router.observability.events import EventBus
from specialist_router.observability.logging import correlation_scope
from specialist_router.registry.profile_registry import ProfileRegistry
from specialist_router.routing.classifier import ClassifierSettings, RequestClassifier
from specialist_router.routing.composer import ContextComposer
from specialist_router.routing.resolver import PreferenceResolver, active_profiles_for


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    """Everything produced for one accepted task."""

    task_id: str
    request: TaskRequest
    classification: ClassificationResult
    composition: CompositionResult
    handoff: HandoffState

    @property
    def conflicts(self) -> tuple[ResolvedPreference, ...]:
        return self.composition.conflicts


@dataclass(frozen=True, slots=True)
class BatchItem:
    """One slot of a ``submit_many`` result; exactly one of ``result``/``error`` is set."""

    index: int
    request: TaskRequest
    result: SubmissionResult | None = None
    error: RouterError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class TaskStatus:
    """Read model returned by ``RoutingEngine.query``."""

    task_id: str
    phase: HandoffPhase
    handoff: HandoffState
    composition: CompositionResult
    condition: ContractUnsatisfied | None
    prior_task_id: str | None = None

    @property
    def closed(self) -> bool:
        return self.phase is HandoffPhase.CLOSED

    @property
    def parked(self) -> bool:
        return self.condition is not None

    @property
    def conflicts(self) -> tuple[ResolvedPreference, ...]:
        return self.composition.conflicts


@dataclass(slots=True)
class _TaskRecord:
    request: TaskRequest
    classification: ClassificationResult
    composition: CompositionResult
    handoff: HandoffState


class RoutingEngine:
    """Accepts task requests and drives them through the routing pipeline."""

    def __init__(
        self,
        registry: ProfileRegistry,
        *,
        classifier: RequestClassifier | None = None,
        resolver: PreferenceResolver | None = None,
        coordinator: HandoffCoordinator | None = None,
        event_bus: EventBus | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        closed_retention: int = DEFAULT_CLOSED_RETENTION,
        logger: Any | None = None,
    ) -> None:
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        if (
            isinstance(closed_retention, bool)
            or not isinstance(closed_retention, int)
            or closed_retention < 0
        ):
            raise ValueError("closed_retention must be a non-negative integer")
        self._registry = registry
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._classifier = classifier if classifier is not None else RequestClassifier()
        self._resolver = resolver if resolver is not None else PreferenceResolver()
        self._composer = ContextComposer(registry)
        self._coordinator = coordinator if coordinator is not None else HandoffCoordinator()
        self._event_bus = (
            event_bus if event_bus is not None else EventBus(buffer_size=DEFAULT_EVENT_BUFFER)
        )
        self._max_workers = max_workers
        self._records: dict[str, _TaskRecord] = {}
        # closed task ids, oldest first
        self._closed: dict[str, None] = {}
        self._closed_retention = closed_retention
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        registry: ProfileRegistry | None = None,
        logger: Any | None = None,
    ) -> RoutingEngine:
        """Build an engine from a validated config mapping."""

        if registry is None:
            registry = registry_from_config(config.get("registry", {}))
        engine_cfg = config.get("engine", {})
        resolver_cfg = config.get("resolver", {})
        settings = ClassifierSettings.from_config(config.get("classifier", {}))
        return cls(
            registry,
            classifier=RequestClassifier(settings),
            resolver=PreferenceResolver(resolver_cfg.get("policy")),
            event_bus=EventBus(buffer_size=engine_cfg.get("event_buffer", DEFAULT_EVENT_BUFFER)),
            max_workers=engine_cfg.get("max_workers", DEFAULT_MAX_WORKERS),
            closed_retention=engine_cfg.get("closed_retention", DEFAULT_CLOSED_RETENTION),
            logger=logger,
        )

    @property
    def registry(self) -> ProfileRegistry:
        return self._registry

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def coordinator(self) -> HandoffCoordinator:
        return self._coordinator

    def register_profile(self, profile: Profile) -> Profile:
        registered = self._registry.register(profile)
        self._emit(
            EventType.PROFILE_REGISTERED,
            {"profile_id": registered.id, "domain_tags": list(registered.domain_tags)},
        )
        return registered

    def reload_profiles(self, profiles: Sequence[Profile]) -> tuple[Profile, ...]:
        installed = self._registry.reload(profiles)
        self._emit(
            EventType.REGISTRY_RELOADED,
            {
                "profile_ids": [profile.id for profile in installed],
                "generation": self._registry.generation,
            },
        )
        return installed

    def submit(self, request: TaskRequest) -> SubmissionResult:
        """Classify, resolve, compose, and start the handoff for one task.

        Raises ``AmbiguousRequestError`` when no profile reaches the minimum
        confidence; the sub-threshold classification is attached to the error.
        """

        if not isinstance(request, TaskRequest):
            raise TypeError(f"request must be TaskRequest, got {type(request).__name__}")
        task_id = domain_ids.generate_task_id()
        # All stages read this snapshot; a later reload does not affect the task.
        profiles = self._registry.snapshot()
        with correlation_scope(task_id=task_id, correlation_id=task_id):
            self._emit(
                EventType.TASK_SUBMITTED,
                {
                    "hints": list(request.hints),
                    "prior_task_id": request.prior_task_id,
                    "description_chars": len(request.description),
                },
                correlation_id=task_id,
            )
            try:
                classification = self._classifier.classify_profiles(request, profiles)
            except AmbiguousRequestError as exc:
                self._emit(
                    EventType.TASK_AMBIGUOUS,
                    {
                        "min_confidence": exc.result.min_confidence,
                        "scores": _scores_payload(exc.result),
                    },
                    correlation_id=task_id,
                )
                raise
            self._emit(
                EventType.TASK_CLASSIFIED,
                {
                    "co_primary": list(classification.co_primary),
                    "scores": _scores_payload(classification),
                },
                correlation_id=task_id,
            )

            try:
                active = active_profiles_for(classification, profiles)
                preferences = self._resolver.resolve_all(active)
                composition = self._composer.compose(
                    classification, preferences, profiles=profiles
                )
                handoff = self._coordinator.start(
                    task_id, composition, prior_task_id=request.prior_task_id
                )
            except RouterError as exc:
                self._emit(
                    EventType.TASK_FAILED,
                    {"error_type": type(exc).__name__, "message": str(exc)},
                    correlation_id=task_id,
                )
                self._logger.warning(
                    "engine_task_failed", task_id=task_id, error_type=type(exc).__name__
                )
                raise

            for conflict in composition.conflicts:
                self._emit(
                    EventType.PREFERENCE_CONFLICT,
                    {
                        "category": conflict.category,
                        "candidates": [option.option for option in conflict.candidates],
                        "contributors": list(conflict.contributors),
                    },
                    correlation_id=task_id,
                )
            self._emit(
                EventType.TASK_COMPOSED,
                {
                    "active_profile_ids": list(composition.active_profile_ids),
                    "collaboration_required": composition.collaboration_required,
                    "digest": composition.digest,
                },
                correlation_id=task_id,
            )
            self._emit(
                EventType.HANDOFF_STARTED,
                {"phase": handoff.phase.value, "path": [phase.value for phase in handoff.path]},
                correlation_id=task_id,
            )

            with self._lock:
                self._records[task_id] = _TaskRecord(
                    request=request,
                    classification=classification,
                    composition=composition,
                    handoff=handoff,
                )
            self._logger.info(
                "engine_task_submitted",
                task_id=task_id,
                active_profile_ids=list(composition.active_profile_ids),
                conflicts=len(composition.conflicts),
            )
        return SubmissionResult(
            task_id=task_id,
            request=request,
            classification=classification,
            composition=composition,
            handoff=handoff,
        )

    def submit_many(
        self,
        requests: Sequence[TaskRequest],
        *,
        max_workers: int | None = None,
    ) -> tuple[BatchItem, ...]:
        """Submit independent tasks in parallel; per-task failures are returned, not raised."""

        workers = self._max_workers if max_workers is None else max_workers
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ValueError("max_workers must be a positive integer")
        batch = tuple(requests)
        if not batch:
            return ()
        with ThreadPoolExecutor(
            max_workers=min(workers, len(batch)), thread_name_prefix="router-submit"
        ) as pool:
            items = list(pool.map(self._submit_one, range(len(batch)), batch))
        self._logger.info(
            "engine_batch_completed",
            submitted=len(items),
            failed=sum(1 for item in items if not item.ok),
            workers=min(workers, len(batch)),
        )
        return tuple(items)

    def query(self, task_id: str) -> TaskStatus:
        """Current phase, handoff snapshot, contract condition and conflicts for a task."""

        record = self._record(task_id)
        try:
            state = self._coordinator.get(task_id)
        except NotFoundError:
            state = record.handoff
        condition = (
            unsatisfied_condition(state) if state.phase is HandoffPhase.COLLABORATION else None
        )
        return TaskStatus(
            task_id=task_id,
            phase=state.phase,
            handoff=state,
            composition=record.composition,
            condition=condition,
            prior_task_id=record.request.prior_task_id,
        )

    def task_ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._records)

    def advance(self, task_id: str, *, expected_version: int | None = None) -> TransitionOutcome:
        """Move a task one phase forward; ``expected_version`` defaults to the current one."""

        self._require_open(task_id)
        with correlation_scope(task_id=task_id, correlation_id=task_id):
            try:
                version = self._resolve_version(task_id, expected_version)
                outcome = self._coordinator.advance(task_id, expected_version=version)
            except StaleTransitionError as exc:
                self._emit_stale(exc)
                raise
            except NotFoundError as exc:
                stale = self._released(task_id, expected_version, exc)
                if stale is None:
                    raise
                raise stale from exc
            self._remember(outcome.state)

            if outcome.parked and outcome.condition is not None:
                self._emit(
                    EventType.HANDOFF_PARKED,
                    {"missing": _missing_payload(outcome.condition)},
                    correlation_id=task_id,
                )
            elif outcome.advanced:
                previous = outcome.state.history[-1].from_phase
                self._emit(
                    EventType.HANDOFF_ADVANCED,
                    {
                        "from_phase": previous.value,
                        "to_phase": outcome.state.phase.value,
                        "version": outcome.state.version,
                    },
                    correlation_id=task_id,
                )
                if outcome.closed:
                    self._emit(
                        EventType.HANDOFF_CLOSED,
                        {"version": outcome.state.version},
                        correlation_id=task_id,
                    )
        return outcome

    def provide(
        self, task_id: str, item: str, *, expected_version: int | None = None
    ) -> HandoffState:
        """Record a contract item supplied from outside the participant set."""

        self._require_open(task_id)
        with correlation_scope(task_id=task_id, correlation_id=task_id):
            try:
                version = self._resolve_version(task_id, expected_version)
                state = self._coordinator.provide(task_id, item, expected_version=version)
            except StaleTransitionError as exc:
                self._emit_stale(exc)
                raise
            except NotFoundError as exc:
                stale = self._released(task_id, expected_version, exc)
                if stale is None:
                    raise
                raise stale from exc
            if state.version != version:
                self._remember(state)
                self._emit(
                    EventType.HANDOFF_PROVISION_RECORDED,
                    {"item": item.strip(), "version": state.version},
                    correlation_id=task_id,
                )
        return state

    def cancel(self, task_id: str) -> HandoffState:
        """Discard the task; returns its last handoff snapshot."""

        record = self._record(task_id)
        with correlation_scope(task_id=task_id, correlation_id=task_id):
            if record.handoff.is_terminal:
                last = record.handoff
            else:
                try:
                    last = self._coordinator.cancel(task_id)
                except StaleTransitionError as exc:
                    self._emit_stale(exc)
                    raise
                except NotFoundError as exc:
                    stale = self._released(task_id, record.handoff.version, exc)
                    if stale is None:
                        raise
                    raise stale from exc
            with self._lock:
                self._records.pop(task_id, None)
                self._closed.pop(task_id, None)
            self._emit(
                EventType.HANDOFF_CANCELLED,
                {"phase": last.phase.value, "version": last.version},
                correlation_id=task_id,
            )
        return last

    def _submit_one(self, index: int, request: TaskRequest) -> BatchItem:
        try:
            return BatchItem(index=index, request=request, result=self.submit(request))
        except RouterError as exc:
            return BatchItem(index=index, request=request, error=exc)

    def _record(self, task_id: str) -> _TaskRecord:
        with self._lock:
            record = self._records.get(task_id)
        if record is None:
            raise NotFoundError("task", task_id)
        return record

    def _require_open(self, task_id: str) -> None:
        if self._record(task_id).handoff.is_terminal:
            raise ValidationError("phase", f"task {task_id} is already closed")

    def _remember(self, state: HandoffState) -> None:
        with self._lock:
            record = self._records.get(state.task_id)
            if record is None:
                return
            record.handoff = state
            if not state.is_terminal:
                return
            self._closed[state.task_id] = None
            while len(self._closed) > self._closed_retention:
                evicted = next(iter(self._closed))
                del self._closed[evicted]
                self._records.pop(evicted, None)

    def _resolve_version(self, task_id: str, expected_version: int | None) -> int:
        if expected_version is not None:
            return expected_version
        return self._coordinator.get(task_id).version

    def _released(
        self, task_id: str, expected_version: int | None, exc: NotFoundError
    ) -> StaleTransitionError | None:
        """Stale error for a task the coordinator dropped while the engine still tracks it."""

        with self._lock:
            record = self._records.get(task_id)
        if record is None or exc.kind != "task":
            return None
        stale = StaleTransitionError(
            task_id,
            expected_version=(
                record.handoff.version if expected_version is None else expected_version
            ),
            current_version=None,
        )
        self._emit_stale(stale)
        return stale

    def _emit_stale(self, exc: StaleTransitionError) -> None:
        self._emit(
            EventType.HANDOFF_STALE,
            {
                "expected_version": exc.expected_version,
                "current_version": exc.current_version,
            },
            correlation_id=exc.task_id,
        )

    def _emit(
        self,
        event_type: EventType,
        payload: dict[str, JSONValue],
        *,
        correlation_id: str | None = None,
    ) -> None:
        event, errors = self._event_bus.emit(event_type, payload, correlation_id=correlation_id)
        for error in errors:
            self._logger.warning(
                "engine_subscriber_failed",
                event_id=event.event_id,
                event_type=event.event_type.value,
                target=error.target,
                error_type=error.error_type,
            )


def registry_from_config(section: Mapping[str, Any]) -> ProfileRegistry:
    """Built-in catalog (unless disabled) plus every document in ``profile_dir``."""

    if section.get("include_builtin", True):
        registry = ProfileRegistry.builtin()
    else:
        registry = ProfileRegistry()
    profile_dir = section.get("profile_dir")
    if profile_dir:
        directory = Path(profile_dir)
        if not directory.is_dir():
            raise NotFoundError("profile directory", str(directory))
        registry.load(directory)
    return registry


def _scores_payload(classification: ClassificationResult) -> dict[str, JSONValue]:
    return {score.profile_id: score.confidence for score in classification.scores}


def _missing_payload(condition: ContractUnsatisfied) -> list[JSONValue]:
    return [{"profile_id": entry.profile_id, "item": entry.item} for entry in condition.missing]


__all__ = [
    "BatchItem",
    "RoutingEngine",
    "SubmissionResult",
    "TaskStatus",
    "registry_from_config",
]
