"""Stable constants shared across the routing engine."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
PROFILE_SCHEMA_VERSION: Final[int] = 1

# Classifier defaults.
DEFAULT_MIN_CONFIDENCE: Final[float] = 0.25
DEFAULT_TIE_TOLERANCE: Final[float] = 0.05
DEFAULT_TAG_SATURATION: Final[int] = 3
CONFIDENCE_PRECISION: Final[int] = 6

# Resolver policies.
RESOLUTION_POLICIES: Final[tuple[str, ...]] = ("rank_sum", "primary_wins")
DEFAULT_RESOLUTION_POLICY: Final[str] = "rank_sum"

# Engine defaults.
DEFAULT_MAX_WORKERS: Final[int] = 4
DEFAULT_EVENT_BUFFER: Final[int] = 1024
DEFAULT_CLOSED_RETENTION: Final[int] = 1024

# Default runtime paths (relative to the working directory unless overridden by config).
CONFIG_FILE_NAME: Final[str] = "router.toml"
LOGS_DIR: Final[PurePosixPath] = PurePosixPath(".router/logs")
PROFILE_DOCUMENT_SUFFIXES: Final[tuple[str, ...]] = (".yaml", ".yml")

__all__ = [
    "CONFIDENCE_PRECISION",
    "CONFIG_FILE_NAME",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CLOSED_RETENTION",
    "DEFAULT_EVENT_BUFFER",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_MIN_CONFIDENCE",
    "DEFAULT_RESOLUTION_POLICY",
    "DEFAULT_TAG_SATURATION",
    "DEFAULT_TIE_TOLERANCE",
    "LOGS_DIR",
    "PROFILE_DOCUMENT_SUFFIXES",
    "PROFILE_SCHEMA_VERSION",
    "RESOLUTION_POLICIES",
]
