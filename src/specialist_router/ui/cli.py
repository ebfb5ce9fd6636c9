"""Command-line interface router for specialist-router."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from specialist_router.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from specialist_router.domain import ids as domain_ids
from specialist_router.domain.errors import AmbiguousRequestError, ValidationError
from specialist_router.domain.models import TaskRequest
from specialist_router.engine import RoutingEngine, SubmissionResult, registry_from_config
from specialist_router.observability.logging import (
    configure_structlog_console,
    setup_logging,
    shutdown_logging,
)
from specialist_router.registry import (
    ProfileRegistry,
    discover_profile_files,
    dump_profile,
    load_profile_file,
)
from specialist_router.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Failure reported as ``error: <message>`` on stderr with its own exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Parser for the route, profiles, validate and config subcommands."""

    parser = argparse.ArgumentParser(
        prog="router",
        description=(
            "specialist-router: route tasks to specialist profiles and merge their guidance.\n\n"
            "Common workflows:\n"
            '  router route "add a login form"     Classify and compose one task\n'
            "  router profiles list                List registered profiles\n"
            "  router validate profiles/           Check profile documents\n"
            "  router config                       Show the effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to router TOML config (default: ./router.toml if present).",
    )
    common.add_argument(
        "--overlay",
        default=None,
        help="Optional config overlay name (strict, lenient, or one defined in the config).",
    )
    common.add_argument(
        "--profiles-dir",
        default=None,
        help="Directory of profile YAML documents to register.",
    )
    common.add_argument(
        "--no-builtin",
        action="store_true",
        default=False,
        help="Do not register the built-in backend/frontend catalog.",
    )
    common.add_argument(
        "--log",
        action="store_true",
        default=False,
        help="Write structured JSON-lines logs under the configured log directory.",
    )
    common.add_argument("--verbose", "-v", action="store_true", default=False)
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Plain output without ANSI colors (NO_COLOR is honored too).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # route ---------------------------------------------------------------
    route_parser = subparsers.add_parser(
        "route",
        parents=[common],
        help="Classify a task, resolve preferences, and compose its context",
        description=(
            "Route one task through classification, preference resolution and composition.\n\n"
            "Examples:\n"
            '  router route "add an endpoint for orders"\n'
            '  router route "checkout flow" --hint api --hint ui\n'
            '  router route "checkout flow" --hint api --hint ui --drive --provide "UI contract"\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    route_parser.add_argument("description", nargs="?", default="", help="Task description")
    route_parser.add_argument(
        "--hint",
        action="append",
        default=[],
        dest="hints",
        help="Explicit domain tag override (repeatable)",
    )
    route_parser.add_argument("--prior-task", default=None, help="Task id this task reworks")
    route_parser.add_argument(
        "--policy",
        choices=("rank_sum", "primary_wins"),
        default=None,
        help="Preference resolution policy",
    )
    route_parser.add_argument(
        "--min-confidence", type=float, default=None, help="Override classifier threshold"
    )
    route_parser.add_argument(
        "--strict",
        action="store_true",
        default=False,
        help="Fail when any preference category ends in conflict",
    )
    route_parser.add_argument(
        "--drive",
        action="store_true",
        default=False,
        help="Advance the handoff until it closes or parks on unmet contracts",
    )
    route_parser.add_argument(
        "--provide",
        action="append",
        default=[],
        help="Contract item supplied externally before driving (repeatable)",
    )
    route_parser.set_defaults(handler=_cmd_route)

    # profiles ------------------------------------------------------------
    profiles_parser = subparsers.add_parser(
        "profiles",
        parents=[common],
        help="Inspect registered profiles",
    )
    profiles_parser.add_argument("action", choices=("list", "show", "dump"))
    profiles_parser.add_argument("profile_id", nargs="?", default=None)
    profiles_parser.set_defaults(handler=_cmd_profiles)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate profile documents without routing",
    )
    validate_parser.add_argument("paths", nargs="+", help="Profile files or directories")
    validate_parser.set_defaults(handler=_cmd_validate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Dispatch ``argv`` to its subcommand handler and return the exit code.

    Domain errors propagate to ``main.cli_entrypoint`` which maps them to exit codes.
    """

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    configure_structlog_console(level="INFO" if _flag(namespace, "verbose") else "WARNING")
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        if _flag(namespace, "log"):
            shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_route(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _maybe_setup_logging(args, config)
    engine = RoutingEngine.from_config(config)
    request = TaskRequest(
        description=args.description,
        hints=tuple(args.hints),
        prior_task_id=args.prior_task,
    )

    try:
        submission = engine.submit(request)
    except AmbiguousRequestError as exc:
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "route",
                    "ambiguous": True,
                    "classification": exc.result.to_dict(),
                }
            )
        else:
            renderer = _get_renderer(args)
            renderer.warning(str(exc))
            renderer.classification(exc.result)
        raise

    if _flag(args, "strict"):
        for preference in submission.composition.preferences:
            if preference.ordered:
                preference.require_choice()
            else:
                preference.require_selection()

    for item in args.provide:
        engine.provide(submission.task_id, item)
    if _flag(args, "drive"):
        _drive(engine, submission.task_id)

    status = engine.query(submission.task_id)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "route",
                "task_id": submission.task_id,
                "classification": submission.classification.to_dict(),
                "composition": submission.composition.to_dict(),
                "digest": submission.composition.digest,
                "handoff": status.handoff.to_dict(),
                "condition": status.condition.to_dict() if status.condition else None,
            }
        )
        return 0

    renderer = _get_renderer(args)
    _render_submission(renderer, submission)
    renderer.handoff(status.handoff, status.condition)
    return 0


def _cmd_profiles(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    registry = registry_from_config(config["registry"])
    action = args.action

    if action == "list":
        profiles = registry.snapshot()
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "profiles",
                    "profiles": [
                        {
                            "id": profile.id,
                            "display_name": profile.display_name,
                            "domain_tags": list(profile.domain_tags),
                        }
                        for profile in profiles
                    ],
                }
            )
            return 0
        rows = [
            (profile.id, profile.display_name, ", ".join(profile.domain_tags))
            for profile in profiles
        ]
        _get_renderer(args).table(("id", "name", "domain tags"), rows)
        return 0

    if not args.profile_id:
        raise CLIError(f"profiles {action} requires a profile id", exit_code=2)
    profile = registry.lookup(args.profile_id)
    if action == "dump":
        sys.stdout.write(dump_profile(profile))
        return 0
    if _flag(args, "json"):
        _emit_json({"command": "profiles", "profile": profile.to_dict()})
        return 0
    _get_renderer(args).profile(profile)
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    registry = ProfileRegistry()
    results: list[dict[str, object]] = []
    for raw in args.paths:
        path = Path(raw)
        files = discover_profile_files(path) if path.is_dir() else (path,)
        for file_path in files:
            try:
                profile = load_profile_file(file_path)
                registry.register(profile)
            except ValidationError as exc:
                results.append({"path": str(file_path), "ok": False, "error": str(exc)})
                continue
            results.append({"path": str(file_path), "ok": True, "profile_id": profile.id})

    failed = [item for item in results if not item["ok"]]
    if _flag(args, "json"):
        _emit_json({"command": "validate", "results": results, "failed": len(failed)})
    else:
        for item in results:
            if item["ok"]:
                renderer.ok(f"{item['path']} ({item['profile_id']})")
            else:
                renderer.fail(f"{item['path']}: {item['error']}")
    return 2 if failed else 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    overlay = _optional_str(getattr(args, "overlay", None))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "config",
                "active_overlay": overlay,
                "config": json.loads(dump_effective_config(config)),
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active overlay", overlay or "(default)")
    renderer.text(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _drive(engine: RoutingEngine, task_id: str) -> None:
    while True:
        outcome = engine.advance(task_id)
        if outcome.closed or outcome.parked:
            return


def _render_submission(renderer: CLIRenderer, submission: SubmissionResult) -> None:
    renderer.heading(f"Task {domain_ids.short_id(submission.task_id)}")
    renderer.classification(submission.classification)
    renderer.section("Composition:")
    renderer.composition(submission.composition)


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    overlay = _optional_str(getattr(args, "overlay", None))

    try:
        return load_config(config_path, overlay=overlay, cli_overrides=_cli_overrides(args))
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _cli_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {}
    profiles_dir = _optional_str(getattr(args, "profiles_dir", None))
    if profiles_dir is not None:
        overrides["registry.profile_dir"] = str(Path(profiles_dir).expanduser().resolve())
    if _flag(args, "no_builtin"):
        overrides["registry.include_builtin"] = False
    policy = _optional_str(getattr(args, "policy", None))
    if policy is not None:
        overrides["resolver.policy"] = policy
    min_confidence = getattr(args, "min_confidence", None)
    if min_confidence is not None:
        overrides["classifier.min_confidence"] = min_confidence
    return overrides


def _maybe_setup_logging(args: argparse.Namespace, config: Mapping[str, Any]) -> None:
    if not _flag(args, "log"):
        return
    setup_logging(config.get("observability"), session_id=domain_ids.generate_session_id())


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
