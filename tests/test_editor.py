"""Editor argv construction and process supervision."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from askme.editor import EditorLaunchError, build_editor_command, spawn_editor


def test_vscode_style_goto():
    argv = build_editor_command("code -r -w", "-g {file}:{line}", "/tmp/a b/latest.md", 12)
    assert argv == ["code", "-r", "-w", "-g", "/tmp/a b/latest.md:12"]


def test_terminal_style_goto():
    argv = build_editor_command("vim", "+{line} {file}", Path("/x/latest.md"), 3)
    assert argv == ["vim", "+3", "/x/latest.md"]


def test_file_appended_when_format_has_no_placeholder():
    argv = build_editor_command("nano", "+{line}", "/x/latest.md", 7)
    assert argv == ["nano", "+7", "/x/latest.md"]


def _python_editor(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake_editor.py"
    script.write_text(body)
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


def test_spawn_runs_editor_on_file(tmp_path: Path):
    doc = tmp_path / "latest.md"
    doc.write_text("question\n")
    command = _python_editor(
        tmp_path,
        "import sys\n"
        "path, line = sys.argv[1].rsplit(':', 1)\n"
        "open(path, 'a').write(f'answer at {line}\\n')\n",
    )

    result = spawn_editor(command, "{file}:{line}", doc, 9, timeout_seconds=30)

    assert result.exit_code == 0
    assert not result.timed_out
    assert result.duration_ms >= 0
    assert doc.read_text() == "question\nanswer at 9\n"


def test_spawn_kills_editor_after_timeout(tmp_path: Path):
    command = _python_editor(tmp_path, "import time\ntime.sleep(60)\n")

    result = spawn_editor(command, "{file}", tmp_path / "latest.md", 1, timeout_seconds=0.5)

    assert result.timed_out
    assert result.exit_code == -1
    assert result.duration_ms < 30_000


def test_missing_editor_is_reported(tmp_path: Path):
    with pytest.raises(EditorLaunchError) as excinfo:
        spawn_editor("definitely-not-an-editor-xyz -w", "{file}", tmp_path / "latest.md", 1, timeout_seconds=1)
    assert "definitely-not-an-editor-xyz" in str(excinfo.value)
    assert "not found" in str(excinfo.value)


def test_empty_command_is_rejected(tmp_path: Path):
    with pytest.raises(EditorLaunchError):
        spawn_editor("", "", tmp_path / "latest.md", 1, timeout_seconds=1)
