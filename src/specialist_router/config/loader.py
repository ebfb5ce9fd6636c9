"""
specialist-router runtime config loader.

Purpose
- Build the effective config from four layers: defaults, ``router.toml``,
  ``ROUTER_*`` environment variables, then explicit CLI overrides.
- Select an overlay by argument, CLI override ``overlay`` or ``ROUTER_OVERLAY``.
- Resolve path settings relative to the directory holding the config file.

Environment variables are derived from the default config: ``classifier.min_confidence``
is read from ``ROUTER_CLASSIFIER_MIN_CONFIDENCE`` and coerced to the type of its default.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from specialist_router.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    apply_overlay,
    assert_valid_config,
    default_config,
    merge_config,
)
from specialist_router.constants import CONFIG_FILE_NAME

DEFAULT_CONFIG_FILE: Final[str] = CONFIG_FILE_NAME
ENV_PREFIX: Final[str] = "ROUTER_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Config file missing or unreadable, or an override that cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    overlay: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config; precedence is CLI > env > file > defaults.

    Without ``config_path`` a ``router.toml`` in the working directory is used
    when present. An explicit path that does not exist is an error.
    """

    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    env = os.environ if environ is None else environ
    cli = dict(cli_overrides or {})

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )

    selected = _selected_overlay(overlay, cli, env)
    if selected:
        config = apply_overlay(config, selected)

    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _cli_layer(cli))
    config = normalize_paths(config, base_dir=path.parent)
    return assert_valid_config(config, active_overlay=selected)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy of ``config`` with path settings (overlay copies included) made absolute."""

    out = merge_config({}, config)
    scopes: list[dict[str, Any]] = [out]
    overlays = out.get("overlays")
    if isinstance(overlays, dict):
        scopes.extend(body for body in overlays.values() if isinstance(body, dict))

    for scope in scopes:
        for section, key in PATH_FIELDS:
            body = scope.get(section)
            if isinstance(body, dict) and isinstance(body.get(key), str):
                body[key] = _absolute(body[key], base_dir)
    return out


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        merge_config({}, config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _selected_overlay(
    overlay: str | None, cli: Mapping[str, object], env: Mapping[str, str]
) -> str | None:
    for source, value in (
        ("overlay argument", overlay),
        ("cli override 'overlay'", cli.get("overlay")),
        (f"{ENV_PREFIX}OVERLAY", env.get(f"{ENV_PREFIX}OVERLAY")),
    ):
        if value is None:
            continue
        if not isinstance(value, str):
            raise ConfigLoadError(f"{source} must be a string")
        return value.strip() or None
    return None


def _leaves(
    node: Mapping[str, object], trail: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key, value in node.items():
        if isinstance(value, Mapping):
            yield from _leaves(value, (*trail, key))
        else:
            yield (*trail, key), value


def _env_bindings() -> Iterator[tuple[str, tuple[str, ...], Callable[[str], object]]]:
    sections = {key: value for key, value in DEFAULT_CONFIG.items() if key != "overlays"}
    for path, default in _leaves(sections):
        yield _env_name(path), path, _coercer_for(default)
    # Not present in the defaults but still settable from the environment.
    yield _env_name(("registry", "profile_dir")), ("registry", "profile_dir"), str


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, path, coerce in sorted(_env_bindings(), key=lambda binding: binding[0]):
        raw = env.get(name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from exc
        _put(layer, path, value)
    return layer


def _cli_layer(cli: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in cli.items():
        if key == "overlay":
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _put(layer, path, value)
    return layer


def _coercer_for(default: object) -> Callable[[str], object]:
    if isinstance(default, bool):
        return _as_bool
    if isinstance(default, int):
        return _typed(int, "must be an integer")
    if isinstance(default, float):
        return _typed(float, "must be a number")
    return str


def _typed(kind: Callable[[str], object], message: str) -> Callable[[str], object]:
    def convert(raw: str) -> object:
        try:
            return kind(raw)
        except ValueError:
            raise ValueError(message) from None

    return convert


def _as_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _put(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    for part in path[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[path[-1]] = value


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


def _env_name(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
