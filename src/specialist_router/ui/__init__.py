"""UI package exports for the CLI and terminal rendering."""

from specialist_router.ui.cli import CLIError, build_parser, run_cli
from specialist_router.ui.render import CLIRenderer, create_renderer, describe_preference

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "describe_preference",
    "run_cli",
]
