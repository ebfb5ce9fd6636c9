"""
specialist-router configuration schema and validation.

Purpose
- Hold the built-in defaults and the field rules every effective config must satisfy.
- Report every problem as a structured issue (dotted path + message) rather than
  stopping at the first one.
- Apply named overlays (``strict``, ``lenient`` or user-defined) by deep merge.

Layout
- ``meta``           schema version gate.
- ``classifier``     confidence floor, tie tolerance and tag saturation.
- ``resolver``       preference merge policy.
- ``registry``       packaged catalog toggle and an optional profile directory.
- ``engine``         batch worker count and event replay buffer size.
- ``observability``  JSON-lines logging options.
- ``overlays``       named partial configs over the five sections above.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from specialist_router.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CLOSED_RETENTION,
    DEFAULT_EVENT_BUFFER,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_RESOLUTION_POLICY,
    DEFAULT_TAG_SATURATION,
    DEFAULT_TIE_TOLERANCE,
    LOGS_DIR,
    RESOLUTION_POLICIES,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_OVERLAY_NAMES: Final[tuple[str, ...]] = ("strict", "lenient")

# Resolved relative to the directory of the config file.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("registry", "profile_dir"),
    ("observability", "log_dir"),
)

OVERLAY_SECTIONS: Final[tuple[str, ...]] = (
    "classifier",
    "resolver",
    "registry",
    "engine",
    "observability",
)

_OVERLAY_NAME: Final[re.Pattern[str]] = re.compile(r"[a-z][a-z0-9_-]*")


class MetaConfig(TypedDict):
    schema_version: int


class ClassifierConfig(TypedDict):
    min_confidence: float
    tie_tolerance: float
    saturation: int


class ResolverConfig(TypedDict):
    policy: Literal["rank_sum", "primary_wins"]


class RegistryConfig(TypedDict):
    include_builtin: bool
    profile_dir: NotRequired[str]


class EngineConfig(TypedDict):
    max_workers: int
    event_buffer: int
    closed_retention: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ConfigOverlay(TypedDict, total=False):
    classifier: dict[str, object]
    resolver: dict[str, object]
    registry: dict[str, object]
    engine: dict[str, object]
    observability: dict[str, object]


class RouterConfig(TypedDict):
    meta: MetaConfig
    classifier: ClassifierConfig
    resolver: ResolverConfig
    registry: RegistryConfig
    engine: EngineConfig
    observability: ObservabilityConfig
    overlays: dict[str, ConfigOverlay]


DEFAULT_CONFIG: Final[RouterConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "classifier": {
        "min_confidence": DEFAULT_MIN_CONFIDENCE,
        "tie_tolerance": DEFAULT_TIE_TOLERANCE,
        "saturation": DEFAULT_TAG_SATURATION,
    },
    "resolver": {"policy": "rank_sum"},
    "registry": {"include_builtin": True},
    "engine": {
        "max_workers": DEFAULT_MAX_WORKERS,
        "event_buffer": DEFAULT_EVENT_BUFFER,
        "closed_retention": DEFAULT_CLOSED_RETENTION,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": str(LOGS_DIR),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "overlays": {
        "strict": {
            "classifier": {"min_confidence": 0.5, "tie_tolerance": 0.0},
            "resolver": {"policy": DEFAULT_RESOLUTION_POLICY},
        },
        "lenient": {
            "classifier": {"min_confidence": 0.1, "tie_tolerance": 0.15},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config when valid, otherwise ``None`` plus the issues found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when a config (or the overlay applied to it) fails validation."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


@dataclass(frozen=True, slots=True)
class _Field:
    """Rule for one scalar setting.

    Bounds appear in messages exactly as written (``1.0`` versus ``1``).
    ``above`` and ``below`` are exclusive.
    """

    kind: Literal["bool", "int", "float", "choice", "path"]
    required: bool = True
    at_least: float | None = None
    at_most: float | None = None
    above: float | None = None
    below: float | None = None
    choices: tuple[str, ...] = ()


_SECTION_FIELDS: Final[dict[str, dict[str, _Field]]] = {
    "classifier": {
        "min_confidence": _Field("float", at_most=1.0, above=0),
        "tie_tolerance": _Field("float", at_least=0.0, below=1),
        "saturation": _Field("int", at_least=1),
    },
    "resolver": {
        "policy": _Field("choice", choices=RESOLUTION_POLICIES),
    },
    "registry": {
        "include_builtin": _Field("bool"),
        "profile_dir": _Field("path", required=False),
    },
    "engine": {
        "max_workers": _Field("int", at_least=1),
        "event_buffer": _Field("int", at_least=1),
        "closed_retention": _Field("int", at_least=0),
    },
    "observability": {
        "log_level": _Field("choice", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": _Field("path"),
        "log_to_stdout": _Field("bool"),
        "redact_secrets": _Field("bool"),
    },
}


def default_config() -> RouterConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade router.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the specialist-router runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base`` into a new dict; neither input is modified."""

    merged: dict[str, Any] = {str(key): _detached(value) for key, value in base.items()}
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _detached(value)
    return merged


def apply_overlay(config: Mapping[str, object], overlay: str | None) -> dict[str, Any]:
    """Merge the named overlay onto ``config`` and validate the result."""

    name = overlay.strip() if overlay else ""
    if not name:
        return merge_config({}, config)
    overlays = config.get("overlays")
    body = overlays.get(name) if isinstance(overlays, Mapping) else None
    if body is None:
        raise ConfigValidationError(
            [ConfigValidationIssue("overlays", f"overlay {name!r} is not defined")]
        )
    if not isinstance(body, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue(f"overlays.{name}", "overlay must be an object")]
        )
    return assert_valid_config(merge_config(config, body), active_overlay=name)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_overlay: str | None = None,
) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    normalized = _check_root(config, issues)

    selected = active_overlay.strip() if isinstance(active_overlay, str) else ""
    if selected and not issues:
        body = normalized.get("overlays", {}).get(selected)
        if body is None:
            issues.append(ConfigValidationIssue("overlays", f"overlay {selected!r} is not defined"))
        else:
            _check_root(merge_config(normalized, body), issues)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_overlay: str | None = None,
) -> dict[str, Any]:
    result = validate_config(config, active_overlay=active_overlay)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _check_root(payload: object, issues: list[ConfigValidationIssue]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        kind = type(payload).__name__
        issues.append(ConfigValidationIssue("<root>", f"expected object, got {kind}"))
        return {}

    allowed = {"meta", "overlays", *OVERLAY_SECTIONS}
    _unknown_and_missing(payload, allowed, allowed - {"overlays"}, "", issues)

    out: dict[str, Any] = {}
    meta = _object_at(payload, "meta", "meta", issues)
    if meta is not None:
        out["meta"] = _check_meta(meta, issues)
    for section in OVERLAY_SECTIONS:
        body = _object_at(payload, section, section, issues)
        if body is not None:
            out[section] = _check_section(section, body, section, issues, partial=False)
    overlays = _object_at(payload, "overlays", "overlays", issues)
    if overlays is not None:
        out["overlays"] = _check_overlays(overlays, issues)
    return out


def _check_meta(
    payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    _unknown_and_missing(payload, {"schema_version"}, {"schema_version"}, "meta", issues)
    if "schema_version" not in payload:
        return {}
    version = _coerce(
        _Field("int", at_least=1), payload["schema_version"], "meta.schema_version", issues
    )
    if version is None:
        return {}
    if version != ConfigSchemaVersion:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))
    return {"schema_version": version}


def _check_section(
    section: str,
    payload: Mapping[str, object],
    path: str,
    issues: list[ConfigValidationIssue],
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTION_FIELDS[section]
    required = set() if partial else {name for name, rule in fields.items() if rule.required}
    _unknown_and_missing(payload, set(fields), required, path, issues)

    out: dict[str, Any] = {}
    for name, rule in fields.items():
        if name in payload:
            value = _coerce(rule, payload[name], f"{path}.{name}", issues)
            if value is not None:
                out[name] = value
    return out


def _check_overlays(
    payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        path = f"overlays.{name}"
        if not _OVERLAY_NAME.fullmatch(name):
            issues.append(ConfigValidationIssue(path, "overlay name must match ^[a-z][a-z0-9_-]*$"))
            continue
        body = _object_at(payload, name, path, issues)
        if body is None:
            continue
        _unknown_and_missing(body, set(OVERLAY_SECTIONS), set(), path, issues)
        checked: dict[str, Any] = {}
        for section in OVERLAY_SECTIONS:
            part = _object_at(body, section, f"{path}.{section}", issues)
            if part is not None:
                checked[section] = _check_section(
                    section, part, f"{path}.{section}", issues, partial=True
                )
        out[name] = checked
    return out


def _coerce(
    rule: _Field, value: object, path: str, issues: list[ConfigValidationIssue]
) -> Any:
    problem: str | None = None
    result: Any = None

    if rule.kind == "bool":
        if isinstance(value, bool):
            result = value
        else:
            problem = f"expected boolean, got {type(value).__name__}"
    elif rule.kind in ("int", "float"):
        numeric = (int, float) if rule.kind == "float" else (int,)
        if isinstance(value, bool) or not isinstance(value, numeric):
            noun = "number" if rule.kind == "float" else "integer"
            problem = f"expected {noun}, got {type(value).__name__}"
        elif rule.kind == "float" and not math.isfinite(value):
            problem = "must be finite"
        else:
            result = float(value) if rule.kind == "float" else value
            problem = _bound_problem(rule, result)
    else:
        if not isinstance(value, str) or not value.strip():
            problem = f"expected non-empty string, got {value!r}"
        else:
            result = value.strip()
            if rule.kind == "choice" and result not in rule.choices:
                expected = ", ".join(sorted(rule.choices))
                problem = f"invalid value {result!r}; expected one of: {expected}"
            elif rule.kind == "path" and "\x00" in result:
                problem = "must not contain NUL bytes"

    if problem is not None:
        issues.append(ConfigValidationIssue(path, problem))
        return None
    return result


def _bound_problem(rule: _Field, value: float) -> str | None:
    if rule.above is not None and value <= rule.above:
        return f"must be > {rule.above}"
    if rule.below is not None and value >= rule.below:
        return f"must be < {rule.below}"
    if rule.at_least is not None and value < rule.at_least:
        return f"must be >= {rule.at_least}"
    if rule.at_most is not None and value > rule.at_most:
        return f"must be <= {rule.at_most}"
    return None


def _object_at(
    payload: Mapping[str, object], key: str, path: str, issues: list[ConfigValidationIssue]
) -> Mapping[str, object] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        issues.append(ConfigValidationIssue(path, f"expected object, got {type(value).__name__}"))
        return None
    return value


def _unknown_and_missing(
    payload: Mapping[str, object],
    allowed: set[str],
    required: set[str],
    path: str,
    issues: list[ConfigValidationIssue],
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(str(key) for key in payload):
        if key not in allowed:
            issues.append(ConfigValidationIssue(prefix + key, "unknown field"))
    for key in sorted(required - payload.keys()):
        issues.append(ConfigValidationIssue(prefix + key, "missing required field"))


def _detached(value: object) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _detached(item) for key, item in value.items()}
    return copy.deepcopy(value)


__all__ = [
    "BUILTIN_OVERLAY_NAMES",
    "ConfigOverlay",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "OVERLAY_SECTIONS",
    "PATH_FIELDS",
    "RouterConfig",
    "apply_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
