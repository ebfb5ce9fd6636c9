"""
Preference resolver: merge one category's rankings across active profiles.

Purpose
- One contributor: its top-ranked option verbatim.
- Several contributors (``rank_sum``): lowest sum of 1-based ranks wins; an
  option missing from a contributor's ranking takes that contributor's worst
  rank (``len(ranking) + 1``) so no profile can veto by omission. Ties go to
  the highest-confidence contributor tier; a tier that disagrees, or no tier
  expressing a preference, yields an explicit conflict.
- Unordered sets resolve to the intersection; an empty intersection is a
  conflict carrying the union.

Resolution never guesses: every unresolvable tie is returned as a
``conflict`` with its candidates attached.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from specialist_router.constants import DEFAULT_RESOLUTION_POLICY
from specialist_router.domain.errors import NotFoundError
from specialist_router.domain.models import (
    CategoryRanking,
    PreferenceStatus,
    Profile,
    RankedOption,
    ResolvedPreference,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from specialist_router.domain.models import ClassificationResult

@dataclass(frozen=True, slots=True)
class ActiveProfile:
    profile: Profile
    confidence: float

    def __post_init__(self) -> None:
        if not isinstance(self.profile, Profile):
            raise ValueError("ActiveProfile.profile must be Profile")
        if isinstance(self.confidence, bool) or not isinstance(self.confidence, (int, float)):
            raise ValueError("ActiveProfile.confidence must be a number")
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError("ActiveProfile.confidence must be within [0, 1]")
        object.__setattr__(self, "confidence", float(self.confidence))

    @property
    def profile_id(self) -> str:
        return self.profile.id


@dataclass(frozen=True, slots=True)
class Contribution:
    """One active profile's ranking for the category being resolved."""

    active: ActiveProfile
    ranking: CategoryRanking

    @property
    def profile_id(self) -> str:
        return self.active.profile.id

    @property
    def confidence(self) -> float:
        return self.active.confidence

    def rank(self, option: RankedOption) -> int:
        position = self.ranking.rank_of(option.option)
        return position if position is not None else len(self.ranking.options) + 1


class ResolutionPolicy(Protocol):
    name: str

    def resolve(
        self, category: str, contributions: Sequence[Contribution]
    ) -> ResolvedPreference: ...


class RankSumPolicy:
    """Default policy: combined-rank merge with confidence-tier tie-breaking."""

    name = "rank_sum"

    def resolve(self, category: str, contributions: Sequence[Contribution]) -> ResolvedPreference:
        if _is_unordered(contributions):
            return _resolve_set(category, contributions)
        if len(contributions) == 1:
            return _single_choice(category, contributions[0])

        union = _option_union(contributions)
        sums = {
            option.key: sum(contribution.rank(option) for contribution in contributions)
            for option in union
        }
        rank_sums = tuple((option.option, sums[option.key]) for option in union)
        best = min(sums.values())
        tied = tuple(option for option in union if sums[option.key] == best)
        contributors = tuple(contribution.profile_id for contribution in contributions)

        if len(tied) == 1:
            winner = tied[0]
            return ResolvedPreference(
                category=category,
                status=PreferenceStatus.RESOLVED,
                choice=winner,
                selection=(winner,),
                contributors=contributors,
                rank_sums=rank_sums,
                source_profile_id=_best_ranker(winner, contributions),
            )

        for tier in _confidence_tiers(contributions):
            preferred: dict[str, tuple[RankedOption, str]] = {}
            for contribution in tier:
                pick = _preferred_among(tied, contribution)
                if pick is not None:
                    preferred.setdefault(pick.key, (pick, contribution.profile_id))
            if len(preferred) == 1:
                winner, source = next(iter(preferred.values()))
                return ResolvedPreference(
                    category=category,
                    status=PreferenceStatus.RESOLVED,
                    choice=winner,
                    selection=(winner,),
                    contributors=contributors,
                    rank_sums=rank_sums,
                    source_profile_id=source,
                )
            if preferred:
                break

        return ResolvedPreference(
            category=category,
            status=PreferenceStatus.CONFLICT,
            candidates=tied,
            contributors=contributors,
            rank_sums=rank_sums,
        )


class PrimaryWinsPolicy:
    """The highest-confidence tier decides; disagreement inside it is a conflict."""

    name = "primary_wins"

    def resolve(self, category: str, contributions: Sequence[Contribution]) -> ResolvedPreference:
        top_tier = _confidence_tiers(contributions)[0]
        if _is_unordered(contributions):
            resolved = _resolve_set(category, top_tier)
            return _with_contributors(resolved, contributions)
        if len(top_tier) == 1:
            return _with_contributors(_single_choice(category, top_tier[0]), contributions)

        tops: dict[str, RankedOption] = {}
        for contribution in top_tier:
            tops.setdefault(contribution.ranking.top.key, contribution.ranking.top)
        contributors = tuple(contribution.profile_id for contribution in contributions)
        if len(tops) == 1:
            winner = next(iter(tops.values()))
            return ResolvedPreference(
                category=category,
                status=PreferenceStatus.RESOLVED,
                choice=winner,
                selection=(winner,),
                contributors=contributors,
                source_profile_id=top_tier[0].profile_id,
            )
        return ResolvedPreference(
            category=category,
            status=PreferenceStatus.CONFLICT,
            candidates=tuple(tops.values()),
            contributors=contributors,
        )


_POLICIES: dict[str, type[RankSumPolicy] | type[PrimaryWinsPolicy]] = {
    RankSumPolicy.name: RankSumPolicy,
    PrimaryWinsPolicy.name: PrimaryWinsPolicy,
}


def get_policy(name: str = DEFAULT_RESOLUTION_POLICY) -> ResolutionPolicy:
    try:
        return _POLICIES[name]()
    except KeyError:
        allowed = ", ".join(sorted(_POLICIES))
        raise ValueError(
            f"unknown resolution policy {name!r}; expected one of: {allowed}"
        ) from None


def order_by_confidence(active_profiles: Iterable[ActiveProfile]) -> tuple[ActiveProfile, ...]:
    """Stable sort, highest confidence first; equal confidence keeps input order."""
    return tuple(sorted(active_profiles, key=lambda item: -item.confidence))


def active_profiles_for(
    classification: ClassificationResult, profiles: Iterable[Profile]
) -> tuple[ActiveProfile, ...]:
    """The co-primary profiles of ``classification``, taken from the same snapshot it scored."""
    by_id = {profile.id: profile for profile in profiles}
    active: list[ActiveProfile] = []
    for profile_id in classification.co_primary:
        if profile_id not in by_id:
            raise NotFoundError("profile", profile_id)
        active.append(
            ActiveProfile(
                profile=by_id[profile_id],
                confidence=classification.confidence_of(profile_id),
            )
        )
    return tuple(active)


def resolve(
    active_profiles: Sequence[ActiveProfile],
    category: str,
    *,
    policy: ResolutionPolicy | None = None,
) -> ResolvedPreference | None:
    """Resolve ``category``; ``None`` when no active profile defines it."""
    contributions = tuple(
        Contribution(active=active, ranking=ranking)
        for active in order_by_confidence(active_profiles)
        if (ranking := active.profile.category(category)) is not None
    )
    if not contributions:
        return None
    name = contributions[0].ranking.name
    return (policy if policy is not None else RankSumPolicy()).resolve(name, contributions)


def resolve_all(
    active_profiles: Sequence[ActiveProfile],
    *,
    policy: ResolutionPolicy | None = None,
) -> tuple[ResolvedPreference, ...]:
    """Resolve every category any active profile defines, in first-appearance order."""
    resolved: list[ResolvedPreference] = []
    seen: set[str] = set()
    for active in order_by_confidence(active_profiles):
        for ranking in active.profile.categories:
            key = ranking.name.casefold()
            if key in seen:
                continue
            seen.add(key)
            preference = resolve(active_profiles, ranking.name, policy=policy)
            if preference is not None:
                resolved.append(preference)
    return tuple(resolved)


class PreferenceResolver:
    """Policy-bound resolver with structured conflict logging."""

    def __init__(
        self,
        policy: ResolutionPolicy | str | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        if policy is None or isinstance(policy, str):
            self._policy = get_policy(policy or DEFAULT_RESOLUTION_POLICY)
        else:
            self._policy = policy
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def policy(self) -> ResolutionPolicy:
        return self._policy

    def resolve(
        self, active_profiles: Sequence[ActiveProfile], category: str
    ) -> ResolvedPreference | None:
        preference = resolve(active_profiles, category, policy=self._policy)
        if preference is not None and preference.is_conflict:
            self._log_conflict(preference)
        return preference

    def resolve_all(
        self, active_profiles: Sequence[ActiveProfile]
    ) -> tuple[ResolvedPreference, ...]:
        preferences = resolve_all(active_profiles, policy=self._policy)
        for preference in preferences:
            if preference.is_conflict:
                self._log_conflict(preference)
        return preferences

    def _log_conflict(self, preference: ResolvedPreference) -> None:
        self._logger.info(
            "resolver_preference_conflict",
            policy=self._policy.name,
            category=preference.category,
            candidates=[option.option for option in preference.candidates],
            contributors=list(preference.contributors),
        )


def _is_unordered(contributions: Sequence[Contribution]) -> bool:
    # Mixed declarations fall back to ordered treatment.
    return all(not contribution.ranking.ordered for contribution in contributions)


def _single_choice(category: str, contribution: Contribution) -> ResolvedPreference:
    top = contribution.ranking.top
    return ResolvedPreference(
        category=category,
        status=PreferenceStatus.RESOLVED,
        choice=top,
        selection=(top,),
        contributors=(contribution.profile_id,),
        rank_sums=tuple(
            (option.option, index)
            for index, option in enumerate(contribution.ranking.options, start=1)
        ),
        source_profile_id=contribution.profile_id,
    )


def _resolve_set(category: str, contributions: Sequence[Contribution]) -> ResolvedPreference:
    contributors = tuple(contribution.profile_id for contribution in contributions)
    lead = contributions[0]
    selection = tuple(
        option
        for option in lead.ranking.options
        if all(other.ranking.rank_of(option.option) is not None for other in contributions[1:])
    )
    if not selection:
        return ResolvedPreference(
            category=category,
            status=PreferenceStatus.CONFLICT,
            ordered=False,
            candidates=_option_union(contributions),
            contributors=contributors,
        )
    return ResolvedPreference(
        category=category,
        status=PreferenceStatus.RESOLVED,
        ordered=False,
        choice=selection[0] if len(selection) == 1 else None,
        selection=selection,
        contributors=contributors,
        source_profile_id=lead.profile_id,
    )


def _with_contributors(
    preference: ResolvedPreference, contributions: Sequence[Contribution]
) -> ResolvedPreference:
    return ResolvedPreference(
        category=preference.category,
        status=preference.status,
        ordered=preference.ordered,
        choice=preference.choice,
        selection=preference.selection,
        candidates=preference.candidates,
        contributors=tuple(contribution.profile_id for contribution in contributions),
        rank_sums=preference.rank_sums,
        source_profile_id=preference.source_profile_id,
    )


def _option_union(contributions: Sequence[Contribution]) -> tuple[RankedOption, ...]:
    union: dict[str, RankedOption] = {}
    for contribution in contributions:
        for option in contribution.ranking.options:
            union.setdefault(option.key, option)
    return tuple(union.values())


def _confidence_tiers(contributions: Sequence[Contribution]) -> list[list[Contribution]]:
    tiers: list[list[Contribution]] = []
    for contribution in sorted(contributions, key=lambda item: -item.confidence):
        if tiers and tiers[-1][0].confidence == contribution.confidence:
            tiers[-1].append(contribution)
        else:
            tiers.append([contribution])
    return tiers


def _preferred_among(
    tied: Sequence[RankedOption], contribution: Contribution
) -> RankedOption | None:
    ranked = [
        (position, option)
        for option in tied
        if (position := contribution.ranking.rank_of(option.option)) is not None
    ]
    if not ranked:
        return None
    return min(ranked, key=lambda item: item[0])[1]


def _best_ranker(option: RankedOption, contributions: Sequence[Contribution]) -> str:
    return min(
        contributions,
        key=lambda contribution: contribution.rank(option),
    ).profile_id


__all__ = [
    "ActiveProfile",
    "Contribution",
    "PreferenceResolver",
    "PrimaryWinsPolicy",
    "RankSumPolicy",
    "ResolutionPolicy",
    "active_profiles_for",
    "get_policy",
    "order_by_confidence",
    "resolve",
    "resolve_all",
]
