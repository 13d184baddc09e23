"""
CLI-level tests: argument parsing, management commands and error reporting.

Most tests call ``main(argv)`` in-process; one runs ``python -m askme`` to
check the module entry point.
"""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

from askme.api.cli import main
from askme.config import load_settings
from askme.paths import editor_lock_path, mute_signal_path, settings_path
from askme.state.locks import lock_path_for
from askme.state.repository import SessionRepository


def test_no_arguments_prints_help(capsys):
    assert main([]) == 0
    assert "usage: ask-me" in capsys.readouterr().out


def test_bad_arguments_still_exit_zero(capsys):
    assert main(["editor", "bogus"]) == 0
    assert "invalid choice" in capsys.readouterr().err


def test_mute_unmute_and_status(capsys):
    assert main(["mute"]) == 0
    assert "✓ Global mute enabled" in capsys.readouterr().out
    assert mute_signal_path().exists()

    main(["mute"])
    assert "⚠ Already muted" in capsys.readouterr().out

    main(["mute", "--status"])
    status = capsys.readouterr().out
    assert "⚡ Mute: ENABLED" in status
    assert "Reason: Muted by user command" in status

    main(["unmute"])
    assert "✓ Global mute disabled" in capsys.readouterr().out
    assert not mute_signal_path().exists()

    main(["unmute"])
    assert "⚠ Not muted" in capsys.readouterr().out

    main(["mute", "--status"])
    assert "○ Mute: disabled" in capsys.readouterr().out


def test_pause_and_resume(tmp_path: Path, capsys):
    project = tmp_path / "proj"
    project.mkdir()

    main(["pause", "--dir", str(project)])
    assert "✓ AI agent paused" in capsys.readouterr().out
    assert (project / ".cursor" / ".pause-signal").exists()

    main(["pause", "--dir", str(project)])
    assert "⚠ Already paused" in capsys.readouterr().out

    main(["resume", "--dir", str(project)])
    assert "✓ AI agent resumed" in capsys.readouterr().out

    main(["resume", "--dir", str(project)])
    assert "⚠ Not paused" in capsys.readouterr().out


def test_editor_use_and_current(capsys):
    main(["editor", "use", "NVIM"])
    assert "✓ Editor set to preset 'nvim'" in capsys.readouterr().out
    assert load_settings().current_editor() == ("nvim", "+{line} {file}")

    main(["editor", "current"])
    assert "Command: nvim" in capsys.readouterr().out

    main(["editor", "list"])
    listing = capsys.readouterr().out
    assert " * nvim" in listing
    assert "vscode" in listing


def test_editor_use_unknown_preset(capsys):
    main(["editor", "use", "notepad"])
    assert "✗ Unknown preset: notepad" in capsys.readouterr().out
    assert load_settings().editor_preset == "vscode"


def test_editor_set_custom(capsys):
    main(["editor", "set", "myedit --wait", "--goto", "{file}@{line}"])
    assert "✓ Editor set to custom command" in capsys.readouterr().out
    assert load_settings().current_editor() == ("myedit --wait", "{file}@{line}")


def test_history_listing(tmp_path: Path, capsys):
    main(["history"])
    assert "No session history found." in capsys.readouterr().out

    repo = SessionRepository()
    cwd = tmp_path / "alpha"
    repo.write_latest(cwd, "## Session: 2026-10-19 10:00:00\n")
    project_id = repo.project_id(cwd)

    main(["history"])
    assert f"{project_id}  1 sessions" in capsys.readouterr().out

    main(["history", "--project", "ALPHA"])
    detail = capsys.readouterr().out
    assert f"{project_id}  (1 sessions)" in detail
    assert "latest" in detail

    main(["history", "--project", "nothing-like-this"])
    assert "No project matching 'nothing-like-this' found." in capsys.readouterr().out


def test_lock_status(live_foreign_pid: int, capsys):
    main(["lock-status"])
    assert "○ Editor: free" in capsys.readouterr().out

    editor_lock_path().parent.mkdir(parents=True, exist_ok=True)
    editor_lock_path().write_text(json.dumps({"pid": live_foreign_pid, "project": "busy-proj", "startTime": 1}))

    main(["lock-status"])
    out = capsys.readouterr().out
    assert "⏳ Editor: in use by busy-proj" in out
    assert f"PID: {live_foreign_pid}" in out


def test_file_lock_timeout_is_reported_not_raised(tmp_path: Path, live_foreign_pid: int, capsys):
    settings_path().parent.mkdir(parents=True, exist_ok=True)
    settings_path().write_text(json.dumps({"locks": {"file_lock_timeout": 0.2, "file_lock_retry": 0.02}}))
    project = tmp_path / "held"
    project.mkdir()
    latest = SessionRepository().latest_path(project)
    lock_path_for(latest).write_text(str(live_foreign_pid))

    code = main(["--cwd", str(project), "--title", "anyone there?"])

    captured = capsys.readouterr()
    assert code == 0
    assert captured.out == ""
    assert captured.err.startswith("Error: Could not acquire lock")
    assert str(lock_path_for(latest)) in captured.err


def test_module_entry_point_reports_mute_state(subprocess_env: dict):
    mute_signal_path().parent.mkdir(parents=True, exist_ok=True)
    mute_signal_path().write_text("")

    result = subprocess.run(
        [sys.executable, "-m", "askme", "mute", "--status"],
        env=subprocess_env,
        capture_output=True,
        text=True,
        encoding="utf-8",
        timeout=60,
    )

    assert result.returncode == 0
    assert "⚡ Mute: ENABLED" in result.stdout
