"""Utility exports for hashing and concurrency helpers."""

from specialist_router.utils.concurrency import KeyedTryLock, ReadWriteLock
from specialist_router.utils.hashing import sha256_text

__all__ = [
    "KeyedTryLock",
    "ReadWriteLock",
    "sha256_text",
]
