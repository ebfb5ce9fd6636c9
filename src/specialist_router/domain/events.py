"""Router lifecycle events and their JSON envelope.

Every observable step of the pipeline (registration, classification,
composition, handoff transitions) is published as a ``RouterEvent``. Payloads
are restricted to plain JSON values so that events can be logged, replayed and
shipped elsewhere without custom encoders.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from specialist_router.domain import ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_DEPTH: Final[int] = 16
_MAX_STRING: Final[int] = 8192
_SENSITIVE_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)secret|password|token|api_?key|credential"
)
_REDACTED: Final[str] = "***REDACTED***"
_FIELDS: Final[frozenset[str]] = frozenset(
    {"event_id", "event_type", "timestamp", "correlation_id", "payload"}
)


class EventType(StrEnum):
    PROFILE_REGISTERED = "ProfileRegistered"
    REGISTRY_RELOADED = "RegistryReloaded"

    TASK_SUBMITTED = "TaskSubmitted"
    TASK_CLASSIFIED = "TaskClassified"
    TASK_AMBIGUOUS = "TaskAmbiguous"
    TASK_COMPOSED = "TaskComposed"
    TASK_FAILED = "TaskFailed"

    PREFERENCE_CONFLICT = "PreferenceConflict"

    HANDOFF_STARTED = "HandoffStarted"
    HANDOFF_ADVANCED = "HandoffAdvanced"
    HANDOFF_PARKED = "HandoffParked"
    HANDOFF_PROVISION_RECORDED = "HandoffProvisionRecorded"
    HANDOFF_CLOSED = "HandoffClosed"
    HANDOFF_CANCELLED = "HandoffCancelled"
    HANDOFF_STALE = "HandoffStale"


@dataclass(slots=True)
class RouterEvent:
    """One published event.

    Construction validates and normalizes every field: the id must be an
    ``evt-`` ULID, ``event_type`` accepts enum members or their string values,
    timestamps must be timezone-aware and are stored in UTC, and the payload
    must be a JSON object of finite, serializable values.
    """

    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = _event_type(self.event_type)
        self.timestamp = _utc(self.timestamp)
        if self.correlation_id is not None:
            if not isinstance(self.correlation_id, str) or not self.correlation_id.strip():
                raise ValueError("RouterEvent.correlation_id: expected a non-empty string")
            self.correlation_id = self.correlation_id.strip()
        payload = _json_value(self.payload, "RouterEvent.payload", 0)
        if not isinstance(payload, dict):
            raise ValueError("RouterEvent.payload: expected object")
        self.payload = payload

    @classmethod
    def create(
        cls,
        event_type: EventType,
        payload: dict[str, JSONValue] | None = None,
        *,
        correlation_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> RouterEvent:
        return cls(
            event_id=ids.generate_event_id(),
            event_type=event_type,
            timestamp=timestamp or datetime.now(tz=UTC),
            correlation_id=correlation_id,
            payload=payload or {},
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "correlation_id": self.correlation_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RouterEvent:
        if not isinstance(data, dict):
            raise ValueError(f"RouterEvent: expected object, got {type(data).__name__}")
        unexpected = sorted(str(key) for key in data if key not in _FIELDS)
        if unexpected:
            raise ValueError(f"RouterEvent: unexpected fields: {unexpected}")
        missing = sorted(_FIELDS - {"correlation_id"} - data.keys())
        if missing:
            raise ValueError(f"RouterEvent: missing required fields: {missing}")
        return cls(
            event_id=data["event_id"],  # type: ignore[arg-type]
            event_type=data["event_type"],  # type: ignore[arg-type]
            timestamp=data["timestamp"],  # type: ignore[arg-type]
            correlation_id=data.get("correlation_id"),  # type: ignore[arg-type]
            payload=data["payload"],  # type: ignore[arg-type]
        )

    @classmethod
    def from_json(cls, raw: str) -> RouterEvent:
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise ValueError(f"RouterEvent: invalid JSON: {exc}") from exc
        return cls.from_dict(parsed)


def redact_sensitive(event: RouterEvent) -> RouterEvent:
    """Copy of ``event`` whose payload masks values under secret-looking keys at any depth."""

    return replace(event, payload=_mask(event.payload))


def _mask(value: JSONValue) -> JSONValue:
    if isinstance(value, dict):
        return {
            key: _REDACTED if _SENSITIVE_KEY.search(key) else _mask(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_mask(item) for item in value]
    return value


def _event_type(value: object) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in EventType)
        raise ValueError(
            f"RouterEvent.event_type: unsupported event type {value!r}; allowed: {allowed}"
        ) from exc


def _utc(value: object) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"RouterEvent.timestamp: invalid ISO-8601 datetime {value!r}") from exc
    if not isinstance(value, datetime):
        raise ValueError(f"RouterEvent.timestamp: expected datetime, got {type(value).__name__}")
    if value.utcoffset() is None:
        raise ValueError("RouterEvent.timestamp: datetime must be timezone-aware")
    return value.astimezone(UTC)


def _json_value(value: object, path: str, depth: int) -> JSONValue:
    if depth > _MAX_DEPTH:
        raise ValueError(f"{path}: JSON nesting deeper than {_MAX_DEPTH}")
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_STRING:
            raise ValueError(f"{path}: string longer than {_MAX_STRING} characters")
        return value
    if isinstance(value, (list, tuple)):
        return [_json_value(item, f"{path}[{i}]", depth + 1) for i, item in enumerate(value)]
    if isinstance(value, dict):
        if not all(isinstance(key, str) for key in value):
            raise ValueError(f"{path}: object keys must be strings")
        return {key: _json_value(item, f"{path}.{key}", depth + 1) for key, item in value.items()}
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


__all__ = ["EventType", "JSONScalar", "JSONValue", "RouterEvent", "redact_sensitive"]
