"""Module entrypoint for ``python -m specialist_router``."""

from __future__ import annotations

from specialist_router.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
