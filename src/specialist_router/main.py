"""Executable CLI entrypoint for ``specialist_router``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from specialist_router.config import ConfigLoadError, ConfigValidationError
from specialist_router.domain.errors import (
    AmbiguousRequestError,
    ConflictError,
    NotFoundError,
    StaleTransitionError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    AMBIGUOUS_REQUEST = 1
    CONFIG_ERROR = 2
    NOT_FOUND = 3
    INTERNAL_ERROR = 4
    PREFERENCE_CONFLICT = 5
    STALE_TRANSITION = 6


_EXCEPTION_EXIT_CODES: tuple[tuple[type[BaseException], ExitCode], ...] = (
    (AmbiguousRequestError, ExitCode.AMBIGUOUS_REQUEST),
    (ConflictError, ExitCode.PREFERENCE_CONFLICT),
    (StaleTransitionError, ExitCode.STALE_TRANSITION),
    (NotFoundError, ExitCode.NOT_FOUND),
    (ConfigLoadError, ExitCode.CONFIG_ERROR),
    (ConfigValidationError, ExitCode.CONFIG_ERROR),
    (ValidationError, ExitCode.CONFIG_ERROR),
    (FileNotFoundError, ExitCode.CONFIG_ERROR),
    (NotADirectoryError, ExitCode.CONFIG_ERROR),
    (PermissionError, ExitCode.CONFIG_ERROR),
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m specialist_router`` and the ``router`` script."""

    try:
        from specialist_router.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in set(ExitCode):
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    """Map the first recognised error in the cause/context chain to its exit code."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for error_type, exit_code in _EXCEPTION_EXIT_CODES:
            if isinstance(current, error_type):
                return exit_code
        current = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )
    return ExitCode.INTERNAL_ERROR


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(f"error: {str(exc).strip() or exc.__class__.__name__}")


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
