"""Digest helper for composition results."""

from __future__ import annotations

import hashlib


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Hex digest of ``text``; ``CompositionResult.digest`` hashes its canonical JSON."""

    return hashlib.sha256(text.encode(encoding)).hexdigest()


__all__ = ["sha256_text"]
