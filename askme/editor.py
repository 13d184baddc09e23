"""Launch the interactive editor and wait for it to close."""
from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path
from typing import List

from askme.state.logger import log_event
from askme.state.models import SpawnResult


class EditorLaunchError(RuntimeError):
    """Raised when the editor command is empty or cannot be started."""


def _split(command: str) -> List[str]:
    return shlex.split(command, posix=os.name != "nt")


def build_editor_command(command: str, goto_format: str, file: Path | str, line: int) -> List[str]:
    """Return argv for opening ``file`` at ``line``.

    ``goto_format`` is tokenized before substitution so paths with spaces stay
    one argument. If the format has no ``{file}`` placeholder the file is
    appended.
    """
    argv = _split(command)
    file_text = os.fspath(file)
    goto_tokens = _split(goto_format) if goto_format else []
    argv.extend(token.replace("{file}", file_text).replace("{line}", str(line)) for token in goto_tokens)
    if "{file}" not in (goto_format or ""):
        argv.append(file_text)
    return argv


def spawn_editor(
    command: str,
    goto_format: str,
    file: Path | str,
    line: int,
    timeout_seconds: float,
) -> SpawnResult:
    """Run the editor with inherited stdio; kill it after ``timeout_seconds``.

    Raises:
        EditorLaunchError: If the command is empty or its executable is missing
    """
    if not command or not command.strip():
        raise EditorLaunchError("Editor command is empty")
    argv = build_editor_command(command, goto_format, file, line)

    executable = shutil.which(argv[0])
    if executable is None:
        raise EditorLaunchError(
            f"Editor command '{argv[0]}' not found. Please ensure the editor is installed and in your PATH, "
            "or use 'ask-me editor use <name>' to switch editors."
        )
    argv[0] = executable

    start = time.monotonic()
    try:
        proc = subprocess.Popen(argv)
    except OSError as exc:
        raise EditorLaunchError(f"Failed to spawn editor: {exc}") from exc

    try:
        exit_code = proc.wait(timeout=timeout_seconds)
        timed_out = False
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
        exit_code = -1
        timed_out = True

    result = SpawnResult(
        exit_code=exit_code,
        duration_ms=int((time.monotonic() - start) * 1000),
        timed_out=timed_out,
    )
    log_event(
        event="editor_exited",
        component="editor",
        level="warn" if timed_out else "info",
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
        timed_out=result.timed_out,
    )
    return result
