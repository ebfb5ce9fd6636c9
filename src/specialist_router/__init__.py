"""
specialist-router: package root

Purpose
- Route incoming tasks to specialist profiles, merge their ranked preferences
  into one working context, and sequence multi-specialist handoffs.

Import boundary
- No side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by callers, not re-exported here.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
