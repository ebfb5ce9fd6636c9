"""
specialist-router: CLI smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for `python -m specialist_router` route/profiles/validate/config.
- Verify exit codes, deterministic JSON output, and structured log side effects.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import structlog

from specialist_router.main import ExitCode, cli_entrypoint
from specialist_router.registry import builtin_profiles, dump_profile, load_profile_text

if TYPE_CHECKING:
    from collections.abc import Iterator

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("ROUTER_"):
            monkeypatch.delenv(name)
    yield
    structlog.reset_defaults()


def _run_cli(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "-m", "specialist_router", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    return json.loads(capsys.readouterr().out)


def test_module_entrypoint_routes_a_backend_task(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "route", "add a REST endpoint with database migration", "--json"
    )

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["command"] == "route"
    assert payload["composition"]["active_profile_ids"] == ["backend"]
    assert payload["handoff"]["phase"] == "intake"
    assert payload["condition"] is None
    assert len(payload["digest"]) == 64


def test_route_text_output_lists_sections(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["route", "checkout", "--hint", "api", "--hint", "ui"]) == 0

    out = capsys.readouterr().out
    assert "backend" in out
    assert "frontend" in out
    assert "API Design" in out
    assert "Component Plan" in out


def test_route_drive_closes_a_collaborative_task(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(
        ["route", "checkout", "--hint", "api", "--hint", "ui", "--drive", "--json"]
    )

    assert exit_code == ExitCode.SUCCESS
    payload = _json_out(capsys)
    assert payload["composition"]["collaboration_required"] is True
    assert payload["handoff"]["phase"] == "closed"
    assert payload["handoff"]["version"] == 6


def test_ambiguous_route_exits_one_with_scores(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["route", "write a haiku about autumn", "--json"])

    captured = capsys.readouterr()
    assert exit_code == ExitCode.AMBIGUOUS_REQUEST
    payload = json.loads(captured.out)
    assert payload["ambiguous"] is True
    assert [score["profile_id"] for score in payload["classification"]["scores"]] == [
        "backend",
        "frontend",
    ]
    assert "error:" in captured.err


def test_strict_route_fails_on_preference_conflict(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["route", "checkout", "--hint", "api", "--hint", "ui", "--strict"])

    assert exit_code == ExitCode.PREFERENCE_CONFLICT
    assert "testing" in capsys.readouterr().err


def test_min_confidence_override_makes_weak_matches_ambiguous() -> None:
    assert cli_entrypoint(["route", "new api", "--json"]) == ExitCode.SUCCESS
    assert (
        cli_entrypoint(["route", "new api", "--min-confidence", "0.5", "--json"])
        == ExitCode.AMBIGUOUS_REQUEST
    )


@pytest.mark.parametrize(
    "argv",
    [
        ["route", "   "],
        ["route", "new api endpoint", "--prior-task", "task-123"],
        ["config", "--config", "missing.toml"],
        ["config", "--overlay", "nightly"],
        ["profiles", "show"],
    ],
)
def test_invalid_input_exits_with_config_error(argv: list[str]) -> None:
    assert cli_entrypoint(argv) == ExitCode.CONFIG_ERROR


def test_profiles_list_and_unknown_profile(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["profiles", "list", "--json"]) == 0
    payload = _json_out(capsys)
    assert [item["id"] for item in payload["profiles"]] == ["backend", "frontend"]

    assert cli_entrypoint(["profiles", "show", "mobile"]) == ExitCode.NOT_FOUND


def test_profiles_dump_round_trips(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["profiles", "dump", "frontend"]) == 0

    rendered = capsys.readouterr().out
    assert load_profile_text(rendered) == builtin_profiles()[1]


def test_profiles_dir_extends_the_catalog(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    catalog = tmp_path / "catalog"
    catalog.mkdir()
    (catalog / "mobile.yaml").write_text(
        "id: mobile\ndisplay_name: Mobile\ndomain_tags: [ios, android]\n", encoding="utf-8"
    )

    exit_code = cli_entrypoint(
        [
            "route",
            "ios and android release",
            "--profiles-dir",
            str(catalog),
            "--no-builtin",
            "--json",
        ]
    )

    assert exit_code == 0
    assert _json_out(capsys)["composition"]["active_profile_ids"] == ["mobile"]


def test_validate_reports_each_document(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    catalog = tmp_path / "catalog"
    catalog.mkdir()
    (catalog / "a_backend.yaml").write_text(dump_profile(builtin_profiles()[0]), "utf-8")
    (catalog / "b_broken.yaml").write_text("id: broken\ndomain_tags: [x]\n", "utf-8")

    exit_code = cli_entrypoint(["validate", str(catalog), "--json"])

    assert exit_code == ExitCode.CONFIG_ERROR
    payload = _json_out(capsys)
    assert payload["failed"] == 1
    assert [item["ok"] for item in payload["results"]] == [True, False]
    assert "display_name" in payload["results"][1]["error"]


def test_config_shows_overlay_values(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "router.toml").write_text("[engine]\nmax_workers = 2\n", encoding="utf-8")

    assert cli_entrypoint(["config", "--overlay", "strict", "--json"]) == 0

    payload = _json_out(capsys)
    assert payload["active_overlay"] == "strict"
    assert payload["config"]["classifier"]["min_confidence"] == 0.5
    assert payload["config"]["engine"]["max_workers"] == 2


def test_log_flag_writes_json_lines(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["route", "new api endpoint", "--log", "--json"]) == 0
    capsys.readouterr()

    log_files = list((tmp_path / ".router" / "logs").glob("ses-*/router.jsonl"))
    assert len(log_files) == 1
    records = [json.loads(line) for line in log_files[0].read_text("utf-8").splitlines()]
    messages = [record["message"] for record in records]
    assert "engine_task_submitted" in messages
    submitted = records[messages.index("engine_task_submitted")]
    assert submitted["task_id"].startswith("task-")
