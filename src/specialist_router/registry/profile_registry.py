"""
Profile registry: the single owner of validated specialist profiles.

Registration happens at load time; reads (classification, resolution) are
shared and never observe a partially applied update. Hot reload swaps the
whole profile set under the exclusive side of the readers-writer lock.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from importlib import resources
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog

from specialist_router.domain.errors import NotFoundError, ValidationError
from specialist_router.domain.models import Profile
from specialist_router.registry.documents import (
    discover_profile_files,
    load_profile_file,
    load_profile_text,
)
from specialist_router.utils.concurrency import ReadWriteLock

if TYPE_CHECKING:
    from pathlib import Path

    from specialist_router.registry.documents import PathLike

_BUILTIN_PACKAGE = "specialist_router.catalog"

__all__ = ["ProfileRegistry", "ProfileView", "builtin_profiles"]


class ProfileView:
    """Lazy, restartable view over the registry in registration order.

    Each iteration walks the snapshot current when that iteration starts.
    """

    __slots__ = ("_registry",)

    def __init__(self, registry: ProfileRegistry) -> None:
        self._registry = registry

    def __iter__(self) -> Iterator[Profile]:
        return iter(self._registry.snapshot())

    def __len__(self) -> int:
        return len(self._registry)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Profile) and item in self._registry.snapshot()


class ProfileRegistry:
    """Thread-safe registry of profiles keyed by normalized identifier."""

    def __init__(
        self,
        profiles: Iterable[Profile] = (),
        *,
        logger: Any | None = None,
    ) -> None:
        self._lock = ReadWriteLock()
        self._profiles: tuple[Profile, ...] = ()
        self._by_id: MappingProxyType[str, Profile] = MappingProxyType({})
        self._generation = 0
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        for profile in profiles:
            self.register(profile)

    @classmethod
    def builtin(cls, *, logger: Any | None = None) -> ProfileRegistry:
        """Registry preloaded with the packaged backend/frontend catalogue."""

        registry = cls(logger=logger)
        registry.register_many(builtin_profiles())
        return registry

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._profiles)

    def __contains__(self, profile_id: object) -> bool:
        if not isinstance(profile_id, str):
            return False
        with self._lock.read_locked():
            return profile_id.strip().lower() in self._by_id

    @property
    def generation(self) -> int:
        """Incremented on every successful mutation."""

        with self._lock.read_locked():
            return self._generation

    def register(self, profile: Profile) -> Profile:
        """Register one profile; on failure the registry is unchanged."""

        if not isinstance(profile, Profile):
            raise ValidationError("register", f"expected Profile, got {type(profile).__name__}")
        _check_registrable(profile)
        with self._lock.write_locked():
            if profile.id in self._by_id:
                raise ValidationError("Profile.id", f"duplicate profile identifier {profile.id!r}")
            self._install(self._profiles + (profile,))
        self._logger.info(
            "registry_profile_registered",
            profile_id=profile.id,
            domain_tags=list(profile.domain_tags),
            categories=list(profile.category_names),
        )
        return profile

    def register_many(self, profiles: Iterable[Profile]) -> tuple[Profile, ...]:
        """Register ``profiles`` in order; stops at the first failure."""

        return tuple(self.register(profile) for profile in profiles)

    def load(self, directory: PathLike) -> tuple[Profile, ...]:
        """Register every profile document in ``directory`` in lexicographic file order."""

        return self.load_documents(discover_profile_files(directory))

    def load_documents(self, paths: Sequence[Path]) -> tuple[Profile, ...]:
        loaded: list[Profile] = []
        for path in paths:
            profile = load_profile_file(path)
            try:
                self.register(profile)
            except ValidationError as exc:
                raise ValidationError(path.name, str(exc)) from exc
            loaded.append(profile)
        return tuple(loaded)

    def reload(self, profiles: Iterable[Profile]) -> tuple[Profile, ...]:
        """Atomically replace the profile set; all-or-nothing validation."""

        candidates = tuple(profiles)
        seen: set[str] = set()
        for index, profile in enumerate(candidates):
            if not isinstance(profile, Profile):
                raise ValidationError(
                    f"reload[{index}]", f"expected Profile, got {type(profile).__name__}"
                )
            _check_registrable(profile)
            if profile.id in seen:
                raise ValidationError(
                    f"reload[{index}].id", f"duplicate profile identifier {profile.id!r}"
                )
            seen.add(profile.id)

        with self._lock.write_locked():
            previous = len(self._profiles)
            self._install(candidates)
            generation = self._generation
        self._logger.info(
            "registry_reloaded",
            previous_count=previous,
            profile_ids=[profile.id for profile in candidates],
            generation=generation,
        )
        return candidates

    def lookup(self, profile_id: str) -> Profile:
        key = profile_id.strip().lower() if isinstance(profile_id, str) else profile_id
        with self._lock.read_locked():
            profile = self._by_id.get(key)  # type: ignore[arg-type]
        if profile is None:
            raise NotFoundError("profile", str(profile_id))
        return profile

    def snapshot(self) -> tuple[Profile, ...]:
        """Immutable registration-ordered tuple taken under the shared lock."""

        with self._lock.read_locked():
            return self._profiles

    def all(self) -> ProfileView:
        return ProfileView(self)

    def ids(self) -> tuple[str, ...]:
        return tuple(profile.id for profile in self.snapshot())

    def _install(self, profiles: tuple[Profile, ...]) -> None:
        # Caller holds the write lock.
        self._profiles = profiles
        self._by_id = MappingProxyType({profile.id: profile for profile in profiles})
        self._generation += 1


def builtin_profiles() -> tuple[Profile, ...]:
    """Parse the packaged catalogue documents in lexicographic order."""

    root = resources.files(_BUILTIN_PACKAGE)
    documents = sorted(
        (entry for entry in root.iterdir() if entry.name.endswith((".yaml", ".yml"))),
        key=lambda entry: entry.name,
    )
    return tuple(
        load_profile_text(entry.read_text(encoding="utf-8"), source=entry.name)
        for entry in documents
    )


def _check_registrable(profile: Profile) -> None:
    for index, ranking in enumerate(profile.categories):
        if not ranking.options:
            raise ValidationError(
                f"Profile[{profile.id}].categories[{index}]",
                f"category ranking {ranking.name!r} is empty",
            )
    seen_sections: set[str] = set()
    for index, section in enumerate(profile.template):
        key = section.name.casefold()
        if key in seen_sections:
            raise ValidationError(
                f"Profile[{profile.id}].template[{index}]",
                f"duplicate section name {section.name!r}",
            )
        seen_sections.add(key)
