"""Identifiers used by the router.

Tasks, events and logging sessions get ``<prefix>-<ULID>`` identifiers so they
sort by creation time and stay unique across concurrent submissions. Profile
identifiers are author-chosen slugs such as ``backend`` or ``frontend_web``.
"""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

TASK_ID_PREFIX: Final[str] = "task"
EVENT_ID_PREFIX: Final[str] = "evt"
SESSION_ID_PREFIX: Final[str] = "ses"

PROFILE_ID_MAX_LENGTH: Final[int] = 64
_PROFILE_ID_RE: Final[re.Pattern[str]] = re.compile(r"[a-z][a-z0-9]*(?:[_-][a-z0-9]+)*")

_RANDOM_BYTES: Final[int] = 10
_DIGITS: Final[dict[str, int]] = {char: i for i, char in enumerate(CROCKFORD_BASE32_ALPHABET)}

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    """Return a 26-character Crockford Base32 ULID (48-bit ms timestamp, 80 random bits)."""

    stamp = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(stamp, int) or not 0 <= stamp <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms must be an int in 0..{ULID_MAX_TIMESTAMP_MS}")
    entropy = bytes((randbytes or secrets.token_bytes)(_RANDOM_BYTES))
    if len(entropy) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (stamp << 80) | int.from_bytes(entropy, "big")
    return "".join(
        CROCKFORD_BASE32_ALPHABET[(value >> shift) & 0x1F]
        for shift in range(5 * (ULID_LENGTH - 1), -1, -5)
    )


def _ulid_value(text: str) -> int:
    if not isinstance(text, str):
        raise ValueError(f"ulid must be a string, got {type(text).__name__}")
    if len(text) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(text)}")
    value = 0
    for index, char in enumerate(text.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"invalid ULID character {text[index]!r} at index {index}")
        value = (value << 5) | digit
    # 26 base32 digits hold 130 bits; a ULID is 128.
    if value >> 128:
        raise ValueError("ulid overflow: value exceeds 128 bits")
    return value


def validate_ulid(text: str) -> None:
    _ulid_value(text)


def parse_ulid_timestamp_ms(text: str) -> int:
    return _ulid_value(text) >> 80


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    if not prefix or "-" in prefix:
        raise ValueError(f"prefix must be non-empty and free of '-', got {prefix!r}")
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    lead = f"{expected_prefix}-"
    if not isinstance(id_str, str) or not id_str.startswith(lead):
        raise ValueError(f"expected prefix {lead!r} in {id_str!r}")
    try:
        _ulid_value(id_str[len(lead) :])
    except ValueError as exc:
        raise ValueError(f"invalid ULID part in {id_str!r}: {exc}") from exc


def generate_task_id(**kwargs: object) -> str:
    return generate_prefixed_id(TASK_ID_PREFIX, **kwargs)  # type: ignore[arg-type]


def generate_event_id(**kwargs: object) -> str:
    return generate_prefixed_id(EVENT_ID_PREFIX, **kwargs)  # type: ignore[arg-type]


def generate_session_id(**kwargs: object) -> str:
    return generate_prefixed_id(SESSION_ID_PREFIX, **kwargs)  # type: ignore[arg-type]


def validate_task_id(id_str: str) -> None:
    validate_prefixed_id(id_str, TASK_ID_PREFIX)


def validate_event_id(id_str: str) -> None:
    validate_prefixed_id(id_str, EVENT_ID_PREFIX)


def validate_session_id(id_str: str) -> None:
    validate_prefixed_id(id_str, SESSION_ID_PREFIX)


def short_id(id_str: str) -> str:
    """Last eight characters, enough to tell tasks apart in CLI output."""

    if not isinstance(id_str, str) or len(id_str) < 8:
        raise ValueError(f"id must be a string of at least 8 characters, got {id_str!r}")
    return id_str[-8:]


def validate_profile_id(profile_id: str) -> None:
    if not isinstance(profile_id, str):
        raise ValueError(f"profile_id must be a string, got {type(profile_id).__name__}")
    if len(profile_id) > PROFILE_ID_MAX_LENGTH:
        raise ValueError(f"profile_id must be <= {PROFILE_ID_MAX_LENGTH} characters")
    if _PROFILE_ID_RE.fullmatch(profile_id) is None:
        raise ValueError(
            "profile_id must be a lowercase slug such as backend, frontend_web or "
            f"data-platform (got {profile_id!r})"
        )


def normalize_profile_id(value: str) -> str:
    """Trim and lowercase ``value``, then validate it as a profile identifier."""

    if not isinstance(value, str):
        raise ValueError(f"profile_id must be a string, got {type(value).__name__}")
    normalized = value.strip().lower()
    validate_profile_id(normalized)
    return normalized


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "PROFILE_ID_MAX_LENGTH",
    "SESSION_ID_PREFIX",
    "TASK_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_event_id",
    "generate_prefixed_id",
    "generate_session_id",
    "generate_task_id",
    "generate_ulid",
    "normalize_profile_id",
    "parse_ulid_timestamp_ms",
    "short_id",
    "validate_event_id",
    "validate_prefixed_id",
    "validate_profile_id",
    "validate_session_id",
    "validate_task_id",
]
