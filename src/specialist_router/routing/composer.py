"""
Context composer: merge co-primary profiles into one working context.

Purpose
- Union the active profiles' required template sections, walking profiles in
  classification-confidence order and preserving each profile's own order.
- Collapse identically named sections into one slot whose content is the
  resolved preference for its category, or profile-attributed fragments when
  no preference applies.
- List optional sections separately.

Composition is a pure function of (classification result, resolved
preferences, registry snapshot): no I/O, no clock, no randomness.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from specialist_router.domain.errors import NotFoundError
from specialist_router.domain.models import (
    CompositionResult,
    ContractBinding,
    MergedSection,
    Profile,
    ResolvedPreference,
    SectionFragment,
    TemplateSection,
)

if TYPE_CHECKING:
    from specialist_router.domain.models import ClassificationResult
    from specialist_router.registry.profile_registry import ProfileRegistry


@dataclass(slots=True)
class _Slot:
    name: str
    required: bool
    category: str | None
    contributors: list[str] = field(default_factory=list)
    fragments: list[SectionFragment] = field(default_factory=list)

    def absorb(self, profile_id: str, section: TemplateSection) -> None:
        if profile_id not in self.contributors:
            self.contributors.append(profile_id)
        if self.category is None and section.category is not None:
            self.category = section.category
        if section.guidance:
            self.fragments.append(SectionFragment(profile_id=profile_id, guidance=section.guidance))

    def freeze(self, preferences: dict[str, ResolvedPreference]) -> MergedSection:
        preference = (
            preferences.get(self.category.casefold()) if self.category is not None else None
        )
        return MergedSection(
            name=self.name,
            required=self.required,
            category=self.category,
            contributors=tuple(self.contributors),
            fragments=tuple(self.fragments),
            preference=preference,
            attributed=preference is None,
        )


def compose_context(
    classification: ClassificationResult,
    resolved_preferences: Iterable[ResolvedPreference],
    profiles: Iterable[Profile],
) -> CompositionResult:
    """Build the composition for ``classification`` from one registry snapshot."""

    by_id = {profile.id: profile for profile in profiles}
    active: list[Profile] = []
    for profile_id in classification.co_primary:
        profile = by_id.get(profile_id)
        if profile is None:
            raise NotFoundError("profile", profile_id)
        active.append(profile)

    preferences = tuple(resolved_preferences)
    preference_index: dict[str, ResolvedPreference] = {}
    for preference in preferences:
        preference_index.setdefault(preference.category.casefold(), preference)

    required = _merge_sections(active, required=True)
    required_keys = {slot.name.casefold() for slot in required}
    optional = [
        slot
        for slot in _merge_sections(active, required=False)
        if slot.name.casefold() not in required_keys
    ]

    return CompositionResult(
        active_profile_ids=tuple(profile.id for profile in active),
        co_primary=classification.co_primary,
        confidences=tuple(
            (profile.id, classification.confidence_of(profile.id)) for profile in active
        ),
        preferences=preferences,
        sections=tuple(slot.freeze(preference_index) for slot in required),
        optional_sections=tuple(slot.freeze(preference_index) for slot in optional),
        contracts=tuple(
            ContractBinding(
                profile_id=profile.id,
                provides=profile.contract.provides,
                requires=profile.contract.requires,
            )
            for profile in active
        ),
        collaboration_required=len(active) >= 2,
    )


class ContextComposer:
    """Composer bound to a registry; each call reads one consistent snapshot."""

    def __init__(self, registry: ProfileRegistry, *, logger: Any | None = None) -> None:
        self._registry = registry
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def compose(
        self,
        classification: ClassificationResult,
        resolved_preferences: Sequence[ResolvedPreference],
        *,
        profiles: Iterable[Profile] | None = None,
    ) -> CompositionResult:
        """Compose from ``profiles`` when given, else from a fresh registry snapshot."""

        snapshot = self._registry.snapshot() if profiles is None else profiles
        result = compose_context(classification, resolved_preferences, snapshot)
        self._logger.info(
            "composer_context_composed",
            active_profile_ids=list(result.active_profile_ids),
            sections=list(result.section_names()),
            conflicts=[item.category for item in result.conflicts],
            collaboration_required=result.collaboration_required,
        )
        return result


def _merge_sections(profiles: Sequence[Profile], *, required: bool) -> list[_Slot]:
    slots: dict[str, _Slot] = {}
    for profile in profiles:
        for section in profile.template:
            if section.required is not required:
                continue
            key = section.name.casefold()
            slot = slots.get(key)
            if slot is None:
                slot = _Slot(name=section.name, required=required, category=section.category)
                slots[key] = slot
            slot.absorb(profile.id, section)
    return list(slots.values())


__all__ = ["ContextComposer", "compose_context"]
