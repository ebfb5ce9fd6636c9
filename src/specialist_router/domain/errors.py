"""Error taxonomy shared by the registry, routing, and handoff layers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from specialist_router.domain.models import ClassificationResult, RankedOption


class RouterError(Exception):
    """Base class for every error raised by the routing engine."""


class ValidationError(RouterError, ValueError):
    """Raised when a profile, document, or request payload is malformed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)


class NotFoundError(RouterError, LookupError):
    """Raised when a profile or task identifier is unknown."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"unknown {kind}: {identifier!r}")


class AmbiguousRequestError(RouterError):
    """Raised when no profile reaches the configured minimum confidence.

    The sub-threshold classification is attached so that the caller's policy
    (clarification, generalist fallback) can inspect it.
    """

    def __init__(self, result: ClassificationResult) -> None:
        self.result = result
        top = result.scores[0].confidence if result.scores else 0.0
        super().__init__(
            f"no profile reached min_confidence={result.min_confidence:g} "
            f"(top confidence {top:g})"
        )


class ConflictError(RouterError):
    """Raised when a caller demands a strict winner for a conflicted category."""

    def __init__(self, category: str, candidates: Sequence[RankedOption]) -> None:
        self.category = category
        self.candidates = tuple(candidates)
        names = ", ".join(candidate.option for candidate in self.candidates)
        super().__init__(f"preference conflict in {category!r}: {names}")


class StaleTransitionError(RouterError):
    """Raised when a handoff transition races another or uses a stale version.

    ``current_version`` is ``None`` when a concurrent transition closed or
    cancelled the task before this one could read it.
    """

    def __init__(
        self, task_id: str, *, expected_version: int, current_version: int | None
    ) -> None:
        self.task_id = task_id
        self.expected_version = expected_version
        self.current_version = current_version
        current = (
            "state released by a concurrent transition"
            if current_version is None
            else f"current version {current_version}"
        )
        super().__init__(
            f"stale transition for {task_id}: expected version {expected_version}, {current}"
        )


__all__ = [
    "AmbiguousRequestError",
    "ConflictError",
    "NotFoundError",
    "RouterError",
    "StaleTransitionError",
    "ValidationError",
]
