"""Dataclass domain models with strict validation and canonical serialization.

Profile-side entities (``RankedOption`` through ``Profile``) are owned by the
registry and round-trip exactly through ``to_dict``/``from_dict``. Task-side
entities (classification, resolution, composition, handoff) are created fresh
per task and are immutable snapshots.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from specialist_router.constants import PROFILE_SCHEMA_VERSION
from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import ConflictError, ValidationError
from specialist_router.utils.hashing import sha256_text

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192
_MAX_NAME = 128
_MAX_COLLECTION = 512

_HAS_WORD_RE = re.compile(r"[a-z0-9]")
_CONTRACT_SEPARATOR_RE = re.compile(r"[\s_\-]+")


class PreferenceStatus(StrEnum):
    RESOLVED = "resolved"
    CONFLICT = "conflict"


class HandoffPhase(StrEnum):
    INTAKE = "intake"
    ANALYSIS = "analysis"
    DESIGN = "design"
    IMPLEMENTATION = "implementation"
    COLLABORATION = "collaboration"
    DELIVERY = "delivery"
    CLOSED = "closed"


SINGLE_PROFILE_PATH: tuple[HandoffPhase, ...] = (
    HandoffPhase.INTAKE,
    HandoffPhase.ANALYSIS,
    HandoffPhase.DESIGN,
    HandoffPhase.IMPLEMENTATION,
    HandoffPhase.DELIVERY,
    HandoffPhase.CLOSED,
)

MULTI_PROFILE_PATH: tuple[HandoffPhase, ...] = (
    HandoffPhase.INTAKE,
    HandoffPhase.ANALYSIS,
    HandoffPhase.DESIGN,
    HandoffPhase.COLLABORATION,
    HandoffPhase.IMPLEMENTATION,
    HandoffPhase.DELIVERY,
    HandoffPhase.CLOSED,
)


def phase_path(collaboration_required: bool) -> tuple[HandoffPhase, ...]:
    """Return the one-directional phase sequence for a task."""
    return MULTI_PROFILE_PATH if collaboration_required else SINGLE_PROFILE_PATH


def normalize_contract_item(value: str) -> str:
    """Normalize a provides/requires item for matching (``API-contract`` == ``api contract``)."""
    return _CONTRACT_SEPARATOR_RE.sub(" ", value.casefold()).strip()


class CanonicalModel:
    """Mixin giving the dataclass models a canonical JSON form.

    ``to_dict`` walks dataclass fields recursively (enums by value, datetimes as
    ``...Z`` strings, tuples as lists). Models that can be rebuilt from a
    document override ``from_dict``.
    """

    def to_dict(self) -> dict[str, JSONValue]:
        return cast("dict[str, JSONValue]", _plain(self, type(self).__name__))

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        raise NotImplementedError(f"{cls.__name__} is not rebuilt from documents")


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _fail(path: str, message: str) -> NoReturn:
    raise ValidationError(path, message)


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    """Check a document mapping for exactly the expected keys."""

    if not isinstance(value, Mapping) or not all(isinstance(key, str) for key in value):
        _fail(path, f"expected object with string keys, got {type(value).__name__}")
    unknown = sorted(set(value) - required - (optional or set()))
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")
    missing = sorted(required - set(value))
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return dict(value)


def _as_schema_version(value: object, path: str) -> int:
    version = _as_int(value, path, minimum=1)
    if version > PROFILE_SCHEMA_VERSION:
        _fail(path, f"unsupported schema version {version} (max {PROFILE_SCHEMA_VERSION})")
    return version


def _as_str(
    value: object, path: str, *, min_len: int = 1, max_len: int | None = _MAX_TEXT
) -> str:
    """Stripped text of at least ``min_len`` characters; ``max_len=None`` means unbounded."""

    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    text = value.strip()
    if max_len is None:
        if len(text) < min_len:
            _fail(path, f"length must be at least {min_len} characters")
    elif not min_len <= len(text) <= max_len:
        _fail(path, f"length must be between {min_len} and {max_len} characters")
    return text


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    return None if value is None else _as_str(value, path, max_len=max_len)


def _as_bool(value: object, path: str) -> bool:
    if not isinstance(value, bool):
        _fail(path, f"expected boolean, got {type(value).__name__}")
    return value


def _as_int(value: object, path: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_unit_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    if not 0.0 <= value <= 1.0:
        # NaN fails this comparison too.
        _fail(path, "must be a finite number within [0, 1]")
    return float(value)


def _as_utc(value: object, path: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            _fail(path, f"invalid ISO-8601 datetime: {value!r}")
    if not isinstance(value, datetime) or value.utcoffset() is None:
        _fail(path, "expected a timezone-aware datetime")
    return value.astimezone(UTC)


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if not isinstance(value, (list, tuple)):
        _fail(path, f"expected array, got {type(value).__name__}")
    if len(value) > _MAX_COLLECTION:
        _fail(path, f"too many items (>{_MAX_COLLECTION})")
    return list(value)


def _as_str_tuple(value: object, path: str, *, max_len: int = _MAX_TEXT) -> tuple[str, ...]:
    return tuple(
        _as_str(item, f"{path}[{index}]", max_len=max_len)
        for index, item in enumerate(_as_sequence(value, path))
    )


def _as_model_tuple(
    value: object,
    path: str,
    model: type[TModel],
) -> tuple[TModel, ...]:
    items: list[TModel] = []
    for index, item in enumerate(_as_sequence(value, path)):
        if isinstance(item, model):
            items.append(item)
        else:
            try:
                items.append(model.from_dict(cast("Mapping[str, object]", item)))
            except ValidationError as exc:
                _fail(f"{path}[{index}]", str(exc))
    return tuple(items)


def _reject_duplicates(names: list[str], path: str, *, what: str) -> None:
    seen: set[str] = set()
    for index, name in enumerate(names):
        key = name.casefold()
        if key in seen:
            _fail(f"{path}[{index}]", f"duplicate {what} {name!r}")
        seen.add(key)


def _plain(value: object, path: str) -> JSONValue:
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if isinstance(value, datetime):
        return _as_utc(value, path).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, float) and not math.isfinite(value):
        _fail(path, "float values must be finite")
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (tuple, list)):
        return [_plain(item, f"{path}[{index}]") for index, item in enumerate(value)]
    if isinstance(value, Mapping):
        return {str(key): _plain(item, f"{path}.{key}") for key, item in value.items()}
    if is_dataclass(value):
        return {
            spec.name: _plain(getattr(value, spec.name), f"{path}.{spec.name}")
            for spec in fields(value)
        }
    _fail(path, f"cannot serialize value of type {type(value).__name__}")


def _validate_profile_id(value: object, path: str) -> str:
    text = _as_str(value, path, max_len=64)
    try:
        return domain_ids.normalize_profile_id(text)
    except ValueError as exc:
        _fail(path, str(exc))


def _validate_task_id(value: object, path: str) -> str:
    text = _as_str(value, path)
    try:
        domain_ids.validate_task_id(text)
    except ValueError as exc:
        _fail(path, str(exc))
    return text


def _normalize_tag(value: object, path: str) -> str:
    tag = " ".join(_as_str(value, path, max_len=_MAX_NAME).lower().split())
    if _HAS_WORD_RE.search(tag) is None:
        _fail(path, "tag must contain at least one letter or digit")
    return tag


# ---------------------------------------------------------------------------
# Profile-side entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RankedOption(CanonicalModel):
    option: str
    rationale: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "option", _as_str(self.option, "RankedOption.option", max_len=_MAX_NAME)
        )
        object.__setattr__(
            self, "rationale", _as_str(self.rationale, "RankedOption.rationale", min_len=0)
        )

    @property
    def key(self) -> str:
        return self.option.casefold()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RankedOption:
        parsed = _expect_object(data, "RankedOption", required={"option"}, optional={"rationale"})
        return cls(
            option=parsed["option"],  # type: ignore[arg-type]
            rationale=parsed.get("rationale", ""),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class CategoryRanking(CanonicalModel):
    """Ranked options for one preference category.

    An ordered ranking is a total order: position is rank, best first. With
    ``ordered=False`` the options form an unordered set.
    """

    name: str
    options: tuple[RankedOption, ...]
    ordered: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "name", _as_str(self.name, "CategoryRanking.name", max_len=_MAX_NAME)
        )
        path = f"CategoryRanking[{self.name}].options"
        options = _as_model_tuple(self.options, path, RankedOption)
        if not options:
            _fail(path, "category ranking must not be empty")
        _reject_duplicates([item.option for item in options], path, what="option")
        object.__setattr__(self, "options", options)
        object.__setattr__(self, "ordered", _as_bool(self.ordered, "CategoryRanking.ordered"))

    @property
    def top(self) -> RankedOption:
        return self.options[0]

    def rank_of(self, option: str) -> int | None:
        """1-based rank of ``option`` (case-insensitive), or ``None`` when absent."""
        key = option.casefold()
        for index, item in enumerate(self.options, start=1):
            if item.key == key:
                return index
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> CategoryRanking:
        parsed = _expect_object(
            data, "CategoryRanking", required={"name", "options"}, optional={"ordered"}
        )
        name = _as_str(parsed["name"], "CategoryRanking.name", max_len=_MAX_NAME)
        return cls(
            name=name,
            options=_as_model_tuple(
                parsed["options"], f"CategoryRanking[{name}].options", RankedOption
            ),
            ordered=_as_bool(parsed.get("ordered", True), "CategoryRanking.ordered"),
        )


@dataclass(frozen=True, slots=True)
class TemplateSection(CanonicalModel):
    name: str
    required: bool = True
    category: str | None = None
    guidance: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "name", _as_str(self.name, "TemplateSection.name", max_len=_MAX_NAME)
        )
        object.__setattr__(self, "required", _as_bool(self.required, "TemplateSection.required"))
        object.__setattr__(
            self,
            "category",
            _as_optional_str(self.category, "TemplateSection.category", max_len=_MAX_NAME),
        )
        object.__setattr__(
            self, "guidance", _as_str(self.guidance, "TemplateSection.guidance", min_len=0)
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TemplateSection:
        parsed = _expect_object(
            data,
            "TemplateSection",
            required={"name"},
            optional={"required", "category", "guidance"},
        )
        return cls(
            name=parsed["name"],  # type: ignore[arg-type]
            required=parsed.get("required", True),  # type: ignore[arg-type]
            category=parsed.get("category"),  # type: ignore[arg-type]
            guidance=parsed.get("guidance", ""),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class CollaborationContract(CanonicalModel):
    provides: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in ("provides", "requires"):
            path = f"CollaborationContract.{name}"
            items = _as_str_tuple(getattr(self, name), path, max_len=_MAX_NAME)
            normalized = [normalize_contract_item(item) for item in items]
            if len(set(normalized)) != len(normalized):
                _fail(path, "contains duplicate values")
            object.__setattr__(self, name, items)

    @property
    def is_empty(self) -> bool:
        return not self.provides and not self.requires

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> CollaborationContract:
        parsed = _expect_object(
            data, "CollaborationContract", required=set(), optional={"provides", "requires"}
        )
        return cls(
            provides=tuple(parsed.get("provides", ()) or ()),  # type: ignore[arg-type]
            requires=tuple(parsed.get("requires", ()) or ()),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class Profile(CanonicalModel):
    id: str
    display_name: str
    domain_tags: tuple[str, ...]
    categories: tuple[CategoryRanking, ...] = ()
    template: tuple[TemplateSection, ...] = ()
    contract: CollaborationContract = field(default_factory=CollaborationContract)
    schema_version: int = PROFILE_SCHEMA_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "schema_version",
            _as_schema_version(self.schema_version, "Profile.schema_version"),
        )
        object.__setattr__(self, "id", _validate_profile_id(self.id, "Profile.id"))
        object.__setattr__(
            self,
            "display_name",
            _as_str(self.display_name, "Profile.display_name", max_len=_MAX_NAME),
        )

        raw_tags = _as_sequence(self.domain_tags, "Profile.domain_tags")
        if not raw_tags:
            _fail("Profile.domain_tags", "must not be empty")
        tags = [
            _normalize_tag(tag, f"Profile.domain_tags[{index}]")
            for index, tag in enumerate(raw_tags)
        ]
        _reject_duplicates(tags, "Profile.domain_tags", what="tag")
        object.__setattr__(self, "domain_tags", tuple(tags))

        categories = _as_model_tuple(self.categories, "Profile.categories", CategoryRanking)
        _reject_duplicates(
            [item.name for item in categories], "Profile.categories", what="category"
        )
        object.__setattr__(self, "categories", categories)

        template = _as_model_tuple(self.template, "Profile.template", TemplateSection)
        _reject_duplicates([item.name for item in template], "Profile.template", what="section")
        object.__setattr__(self, "template", template)

        if not isinstance(self.contract, CollaborationContract):
            object.__setattr__(
                self,
                "contract",
                CollaborationContract.from_dict(cast("Mapping[str, object]", self.contract)),
            )

    def category(self, name: str) -> CategoryRanking | None:
        key = name.casefold()
        for ranking in self.categories:
            if ranking.name.casefold() == key:
                return ranking
        return None

    @property
    def category_names(self) -> tuple[str, ...]:
        return tuple(ranking.name for ranking in self.categories)

    @property
    def required_sections(self) -> tuple[TemplateSection, ...]:
        return tuple(section for section in self.template if section.required)

    @property
    def optional_sections(self) -> tuple[TemplateSection, ...]:
        return tuple(section for section in self.template if not section.required)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Profile:
        parsed = _expect_object(
            data,
            "Profile",
            required={"id", "display_name", "domain_tags"},
            optional={"categories", "template", "contract", "schema_version"},
        )
        contract_raw = parsed.get("contract") or {}
        return cls(
            id=parsed["id"],  # type: ignore[arg-type]
            display_name=parsed["display_name"],  # type: ignore[arg-type]
            domain_tags=tuple(
                _as_sequence(parsed["domain_tags"], "Profile.domain_tags")
            ),  # type: ignore[arg-type]
            categories=_as_model_tuple(
                parsed.get("categories", ()) or (), "Profile.categories", CategoryRanking
            ),
            template=_as_model_tuple(
                parsed.get("template", ()) or (), "Profile.template", TemplateSection
            ),
            contract=(
                contract_raw
                if isinstance(contract_raw, CollaborationContract)
                else CollaborationContract.from_dict(
                    _expect_object(
                        contract_raw,
                        "Profile.contract",
                        required=set(),
                        optional={"provides", "requires"},
                    )
                )
            ),
            schema_version=_as_schema_version(
                parsed.get("schema_version", PROFILE_SCHEMA_VERSION), "Profile.schema_version"
            ),
        )


# ---------------------------------------------------------------------------
# Task-side entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TaskRequest(CanonicalModel):
    """Free-form task plus optional domain-tag hints; immutable once submitted."""

    description: str
    hints: tuple[str, ...] = ()
    prior_task_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "description",
            _as_str(self.description, "TaskRequest.description", min_len=0, max_len=None),
        )
        raw_hints = _as_sequence(self.hints, "TaskRequest.hints")
        hints = [
            _normalize_tag(hint, f"TaskRequest.hints[{index}]")
            for index, hint in enumerate(raw_hints)
        ]
        object.__setattr__(self, "hints", tuple(dict.fromkeys(hints)))
        if not self.description and not self.hints:
            _fail("TaskRequest", "a description or at least one hint is required")
        if self.prior_task_id is not None:
            object.__setattr__(
                self,
                "prior_task_id",
                _validate_task_id(self.prior_task_id, "TaskRequest.prior_task_id"),
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TaskRequest:
        parsed = _expect_object(
            data,
            "TaskRequest",
            required={"description"},
            optional={"hints", "prior_task_id"},
        )
        return cls(
            description=parsed["description"],  # type: ignore[arg-type]
            hints=tuple(
                _as_sequence(parsed.get("hints", ()), "TaskRequest.hints")
            ),  # type: ignore[arg-type]
            prior_task_id=parsed.get("prior_task_id"),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class ProfileScore(CanonicalModel):
    profile_id: str
    confidence: float
    matched_tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "confidence", _as_unit_float(self.confidence, "ProfileScore.confidence")
        )
        object.__setattr__(self, "matched_tags", tuple(self.matched_tags))


@dataclass(frozen=True, slots=True)
class ClassificationResult(CanonicalModel):
    """Deterministic scores for every registered profile, best first."""

    scores: tuple[ProfileScore, ...]
    co_primary: tuple[str, ...]
    min_confidence: float
    tie_tolerance: float
    signals: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "scores", tuple(self.scores))
        object.__setattr__(self, "co_primary", tuple(self.co_primary))
        object.__setattr__(self, "signals", tuple(self.signals))
        known = {score.profile_id for score in self.scores}
        for profile_id in self.co_primary:
            if profile_id not in known:
                _fail("ClassificationResult.co_primary", f"unscored profile {profile_id!r}")

    @property
    def top(self) -> ProfileScore | None:
        return self.scores[0] if self.scores else None

    @property
    def is_confident(self) -> bool:
        top = self.top
        return top is not None and top.confidence >= self.min_confidence

    def confidence_of(self, profile_id: str) -> float:
        for score in self.scores:
            if score.profile_id == profile_id:
                return score.confidence
        raise KeyError(profile_id)

    def explain(self) -> dict[str, tuple[str, ...]]:
        """Matched tags per profile, in score order."""
        return {score.profile_id: score.matched_tags for score in self.scores}


@dataclass(frozen=True, slots=True)
class ResolvedPreference(CanonicalModel):
    """Outcome of merging one category across the active profiles.

    ``selection`` is the resolved set for unordered categories and
    ``(choice,)`` for ordered ones. On conflict ``choice`` is ``None`` and
    ``candidates`` holds the options an external decision-maker picks from.
    """

    category: str
    status: PreferenceStatus
    ordered: bool = True
    choice: RankedOption | None = None
    selection: tuple[RankedOption, ...] = ()
    candidates: tuple[RankedOption, ...] = ()
    contributors: tuple[str, ...] = ()
    rank_sums: tuple[tuple[str, int], ...] = ()
    source_profile_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "status", _as_enum(PreferenceStatus, self.status, "ResolvedPreference.status")
        )
        if self.status is PreferenceStatus.CONFLICT:
            if self.choice is not None or self.selection:
                _fail("ResolvedPreference", "a conflict carries candidates, not a choice")
            if not self.candidates:
                _fail("ResolvedPreference.candidates", "conflict must attach candidates")
        elif not self.selection:
            _fail("ResolvedPreference.selection", "resolved preference must select an option")

    @property
    def is_conflict(self) -> bool:
        return self.status is PreferenceStatus.CONFLICT

    def require_choice(self) -> RankedOption:
        """Return the strict winner or raise ``ConflictError``."""
        if self.is_conflict:
            raise ConflictError(self.category, self.candidates)
        if self.choice is None:
            raise ConflictError(self.category, self.selection)
        return self.choice

    def require_selection(self) -> tuple[RankedOption, ...]:
        if self.is_conflict:
            raise ConflictError(self.category, self.candidates)
        return self.selection


@dataclass(frozen=True, slots=True)
class SectionFragment(CanonicalModel):
    profile_id: str
    guidance: str


@dataclass(frozen=True, slots=True)
class MergedSection(CanonicalModel):
    name: str
    required: bool
    category: str | None
    contributors: tuple[str, ...]
    fragments: tuple[SectionFragment, ...] = ()
    preference: ResolvedPreference | None = None
    attributed: bool = False


@dataclass(frozen=True, slots=True)
class ContractBinding(CanonicalModel):
    profile_id: str
    provides: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CompositionResult(CanonicalModel):
    active_profile_ids: tuple[str, ...]
    co_primary: tuple[str, ...]
    confidences: tuple[tuple[str, float], ...]
    preferences: tuple[ResolvedPreference, ...]
    sections: tuple[MergedSection, ...]
    optional_sections: tuple[MergedSection, ...]
    contracts: tuple[ContractBinding, ...]
    collaboration_required: bool

    @property
    def conflicts(self) -> tuple[ResolvedPreference, ...]:
        return tuple(item for item in self.preferences if item.is_conflict)

    @property
    def digest(self) -> str:
        return sha256_text(self.to_json())

    def preference(self, category: str) -> ResolvedPreference | None:
        key = category.casefold()
        for item in self.preferences:
            if item.category.casefold() == key:
                return item
        return None

    def section_names(self) -> tuple[str, ...]:
        return tuple(section.name for section in self.sections)


@dataclass(frozen=True, slots=True)
class ParticipantStatus(CanonicalModel):
    profile_id: str
    provides: tuple[str, ...]
    requires: tuple[str, ...]
    satisfied: bool
    missing: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MissingContractItem(CanonicalModel):
    profile_id: str
    item: str


@dataclass(frozen=True, slots=True)
class ContractUnsatisfied(CanonicalModel):
    """Reported condition: the task stays parked in collaboration until resolved."""

    task_id: str
    missing: tuple[MissingContractItem, ...]

    def items_for(self, profile_id: str) -> tuple[str, ...]:
        return tuple(entry.item for entry in self.missing if entry.profile_id == profile_id)


@dataclass(frozen=True, slots=True)
class PhaseTransition(CanonicalModel):
    from_phase: HandoffPhase
    to_phase: HandoffPhase
    version: int
    at: datetime


@dataclass(frozen=True, slots=True)
class HandoffState(CanonicalModel):
    task_id: str
    phase: HandoffPhase
    version: int
    path: tuple[HandoffPhase, ...]
    participants: tuple[ParticipantStatus, ...]
    created_at: datetime
    updated_at: datetime
    external_provisions: tuple[str, ...] = ()
    history: tuple[PhaseTransition, ...] = ()
    prior_task_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "task_id", _validate_task_id(self.task_id, "HandoffState.task_id"))
        object.__setattr__(self, "phase", _as_enum(HandoffPhase, self.phase, "HandoffState.phase"))
        object.__setattr__(
            self, "version", _as_int(self.version, "HandoffState.version", minimum=0)
        )
        if self.phase not in self.path:
            _fail("HandoffState.phase", f"{self.phase.value!r} is not on this task's path")
        object.__setattr__(
            self, "created_at", _as_utc(self.created_at, "HandoffState.created_at")
        )
        object.__setattr__(
            self, "updated_at", _as_utc(self.updated_at, "HandoffState.updated_at")
        )
        if self.updated_at < self.created_at:
            _fail("HandoffState.updated_at", "must be >= HandoffState.created_at")

    @property
    def collaboration_required(self) -> bool:
        return HandoffPhase.COLLABORATION in self.path

    @property
    def is_terminal(self) -> bool:
        return self.phase is HandoffPhase.CLOSED

    @property
    def next_phase(self) -> HandoffPhase | None:
        index = self.path.index(self.phase)
        return self.path[index + 1] if index + 1 < len(self.path) else None

    @property
    def unsatisfied(self) -> tuple[ParticipantStatus, ...]:
        return tuple(item for item in self.participants if not item.satisfied)


__all__ = [
    "MULTI_PROFILE_PATH",
    "SINGLE_PROFILE_PATH",
    "CanonicalModel",
    "CategoryRanking",
    "ClassificationResult",
    "CollaborationContract",
    "CompositionResult",
    "ContractBinding",
    "ContractUnsatisfied",
    "HandoffPhase",
    "HandoffState",
    "JSONValue",
    "MergedSection",
    "MissingContractItem",
    "ParticipantStatus",
    "PhaseTransition",
    "PreferenceStatus",
    "Profile",
    "ProfileScore",
    "RankedOption",
    "ResolvedPreference",
    "SectionFragment",
    "TaskRequest",
    "canonical_json",
    "normalize_contract_item",
    "phase_path",
]
