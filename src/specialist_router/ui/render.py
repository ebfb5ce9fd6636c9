"""Plain-text output rendering for the ``router`` CLI.

Purpose
- Render classification scores, composed contexts and handoff snapshots as
  deterministic plain text.
- Respect the ``NO_COLOR`` environment variable and the ``--no-color`` flag.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from specialist_router.domain.models import (
        ClassificationResult,
        CompositionResult,
        ContractUnsatisfied,
        HandoffState,
        MergedSection,
        Profile,
        ResolvedPreference,
    )

_RESET = "\x1b[0m"
_BOLD = "\x1b[1m"
_YELLOW = "\x1b[33m"


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output. ANSI emphasis is only
    added for headings and warnings, and only on a TTY.
    """

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)

    def heading(self, text: str) -> None:
        print(self._paint(text, _BOLD))

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{self._paint(title, _BOLD)}")

    def warning(self, text: str) -> None:
        print(f"  {self._paint('Warning:', _YELLOW)} {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def ok(self, label: str) -> None:
        print(f"  OK  {label}")

    def fail(self, label: str) -> None:
        print(f"  FAIL  {label}")

    # -- domain views -------------------------------------------------------

    def classification(self, result: ClassificationResult) -> None:
        rows = [
            (
                score.profile_id,
                f"{score.confidence:.3f}",
                "*" if score.profile_id in result.co_primary else "",
                ", ".join(score.matched_tags),
            )
            for score in result.scores
        ]
        self.table(("profile", "confidence", "active", "matched tags"), rows, title="Scores:")

    def composition(self, result: CompositionResult) -> None:
        self.kv("Active profiles", ", ".join(result.active_profile_ids))
        self.kv("Collaboration required", "yes" if result.collaboration_required else "no")
        self.section("Preferences:")
        for preference in result.preferences:
            self.text(f"  {preference.category}: {describe_preference(preference)}")
        self.section("Sections:")
        for section in result.sections:
            self._merged_section(section)
        if self.verbose and result.optional_sections:
            self.section("Optional sections:")
            for section in result.optional_sections:
                self._merged_section(section)
        for conflict in result.conflicts:
            names = ", ".join(option.option for option in conflict.candidates)
            self.warning(f"unresolved preference {conflict.category!r}: {names}")

    def handoff(self, state: HandoffState, condition: ContractUnsatisfied | None = None) -> None:
        path = " -> ".join(
            f"[{phase.value}]" if phase is state.phase else phase.value for phase in state.path
        )
        self.section("Handoff:")
        self.kv("  Task", state.task_id)
        self.kv("  Phase", f"{state.phase.value} (version {state.version})")
        self.text(f"  Path: {path}")
        if state.prior_task_id:
            self.kv("  Follows", state.prior_task_id)
        if condition is not None:
            self.warning("collaboration parked; missing contract items:")
            self.items(
                [f"{entry.profile_id} requires {entry.item!r}" for entry in condition.missing]
            )

    def profile(self, profile: Profile) -> None:
        self.heading(f"{profile.display_name} ({profile.id})")
        self.kv("Domain tags", ", ".join(profile.domain_tags))
        self.section("Categories:")
        for ranking in profile.categories:
            kind = "ranked" if ranking.ordered else "set"
            options = ", ".join(option.option for option in ranking.options)
            self.text(f"  {ranking.name} ({kind}): {options}")
        self.section("Template:")
        for section in profile.template:
            marker = "required" if section.required else "optional"
            self.text(f"  {section.name} [{marker}]")
        if not profile.contract.is_empty:
            self.section("Contract:")
            self.kv("  Provides", ", ".join(profile.contract.provides) or "-")
            self.kv("  Requires", ", ".join(profile.contract.requires) or "-")

    def _merged_section(self, section: MergedSection) -> None:
        source = ", ".join(section.contributors)
        if section.preference is not None:
            self.text(f"  {section.name}: {describe_preference(section.preference)}")
        else:
            self.text(f"  {section.name} (from {source})")
        if self.verbose:
            for fragment in section.fragments:
                if fragment.guidance:
                    self.text(f"    [{fragment.profile_id}] {fragment.guidance}")

    def _paint(self, text: str, code: str) -> str:
        if not self._color:
            return text
        return f"{code}{text}{_RESET}"


def describe_preference(preference: ResolvedPreference) -> str:
    """One-line summary of a resolved preference or its conflict."""

    if preference.is_conflict:
        names = " | ".join(option.option for option in preference.candidates)
        return f"CONFLICT ({names})"
    if preference.ordered and preference.choice is not None:
        return preference.choice.option
    return ", ".join(option.option for option in preference.selection)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer", "describe_preference"]
