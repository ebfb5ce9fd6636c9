"""YAML profile documents: one profile per file, strict schema, exact round-trip."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TypeAlias, cast

import yaml

from specialist_router.constants import PROFILE_DOCUMENT_SUFFIXES
from specialist_router.domain.errors import ValidationError
from specialist_router.domain.models import Profile

PathLike: TypeAlias = str | os.PathLike[str]

__all__ = [
    "discover_profile_files",
    "dump_profile",
    "load_profile_file",
    "load_profile_text",
    "profile_to_document",
]


def profile_to_document(profile: Profile) -> dict[str, object]:
    """Return the YAML document mapping for ``profile`` with schema key order."""

    return {
        "schema_version": profile.schema_version,
        "id": profile.id,
        "display_name": profile.display_name,
        "domain_tags": list(profile.domain_tags),
        "categories": [
            {
                "name": ranking.name,
                "ordered": ranking.ordered,
                "options": [
                    {"option": item.option, "rationale": item.rationale}
                    for item in ranking.options
                ],
            }
            for ranking in profile.categories
        ],
        "template": [
            {
                "name": section.name,
                "required": section.required,
                "category": section.category,
                "guidance": section.guidance,
            }
            for section in profile.template
        ],
        "contract": {
            "provides": list(profile.contract.provides),
            "requires": list(profile.contract.requires),
        },
    }


def dump_profile(profile: Profile) -> str:
    """Render ``profile`` as a deterministic YAML document."""

    rendered = yaml.safe_dump(
        profile_to_document(profile),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=120,
    )
    if not rendered.endswith("\n"):
        rendered = rendered + "\n"
    return rendered


def load_profile_text(text: str, *, source: str = "<string>") -> Profile:
    """Parse one YAML profile document; errors carry ``source`` as the path prefix."""

    try:
        loaded = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as exc:
        raise ValidationError(source, f"invalid YAML ({exc})") from exc

    if not isinstance(loaded, dict):
        raise ValidationError(
            source, f"expected top-level YAML mapping, got {type(loaded).__name__}"
        )
    try:
        return Profile.from_dict(loaded)
    except ValidationError as exc:
        raise ValidationError(source, str(exc)) from exc


def load_profile_file(path: PathLike) -> Profile:
    target = Path(path)
    try:
        text = target.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError(target.name, f"profile document is not UTF-8 ({exc})") from exc
    return load_profile_text(text, source=target.name)


def discover_profile_files(directory: PathLike) -> tuple[Path, ...]:
    """Return profile documents under ``directory`` in lexicographic file order."""

    root = Path(directory).expanduser()
    if not root.exists():
        raise FileNotFoundError(f"profile directory does not exist: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"profile path is not a directory: {root}")
    return tuple(
        sorted(
            (
                path
                for path in root.iterdir()
                if path.is_file() and path.suffix in PROFILE_DOCUMENT_SUFFIXES
            ),
            key=lambda path: (path.name, path.as_posix()),
        )
    )
