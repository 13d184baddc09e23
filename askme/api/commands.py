"""Command handlers behind the ``ask-me`` CLI.

Every handler returns an exit code of 0: the calling agent treats any other
exit status as a hard failure of its tool call. The main flow writes exactly
one thing to stdout, either the human's answer or ``continue``; progress and
reminders go to stderr.
"""
from __future__ import annotations

import json
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from askme.config import EDITOR_PRESETS, Settings, edit_settings, get_preset, load_settings
from askme.editor import spawn_editor
from askme.state.editor_lock import EditorLock
from askme.state.logger import event_timer, log_event
from askme.state.models import AcquireResult, AcquireStatus, SpawnResult, ValidationResult
from askme.state.repository import SessionRepository
from askme.state.signals import mute_signal, pause_signal
from askme.paths import mute_signal_path
from askme import template

CONTINUE = "continue"

QUICK_EXIT_MESSAGE = "\nTo continue the workflow, run ask-me again and enter your response."
TIMEOUT_MESSAGE = "\nTo continue the workflow, the AI agent will call ask-me again."

SpawnFn = Callable[[str, str, Path, int, float], SpawnResult]


@dataclass(frozen=True)
class AskOptions:
    cwd: str
    title: str
    context: Optional[str] = None


def _err(message: str = "") -> None:
    print(message, file=sys.stderr)


# ===== MAIN FLOW ===== #
def validate_input(
    user_input: str,
    duration_ms: int,
    timeout_minutes: int,
    timed_out: bool = False,
) -> ValidationResult:
    """Decide whether the editor produced an answer, and which reminder to show if not."""
    if not template.is_input_empty(user_input):
        return ValidationResult(is_valid=True, is_empty=False, is_timeout=False)
    if timed_out or duration_ms >= timeout_minutes * 60 * 1000:
        return ValidationResult(is_valid=False, is_empty=True, is_timeout=True, message=TIMEOUT_MESSAGE)
    return ValidationResult(is_valid=False, is_empty=True, is_timeout=False, message=QUICK_EXIT_MESSAGE)


def repository_for(settings: Settings) -> SessionRepository:
    return SessionRepository(
        lock_timeout=settings.locks.file_lock_timeout,
        lock_retry=settings.locks.file_lock_retry,
        stale_after=settings.locks.stale_after,
    )


def editor_lock_for(settings: Settings) -> EditorLock:
    return EditorLock(
        timeout=settings.locks.editor_lock_timeout,
        poll_interval=settings.locks.editor_lock_poll,
        error_retry_interval=settings.locks.editor_error_retry,
    )


def _wait_muted(settings: Settings, sleep: Callable[[float], None]) -> None:
    info = mute_signal().info()
    _err(f"⚡ Muted mode - waiting {settings.timeout_minutes} min before auto-continue...")
    if info.timestamp:
        _err(f"  Muted since: {info.timestamp}")
    log_event(event="muted_skip", component="main", timeout_minutes=settings.timeout_minutes)
    sleep(settings.timeout_seconds)


def _wait_for_editor(lock: EditorLock, project: str, first: AcquireResult) -> AcquireResult:
    log_event(
        event="editor_lock_busy" if first.is_busy else "editor_lock_unavailable",
        component="main",
        level="info" if first.is_busy else "warn",
        project=project,
        holder_project=first.holder.project if first.holder else None,
        holder_pid=first.holder.pid if first.holder else None,
        error=first.error,
    )
    if first.status is AcquireStatus.BUSY and first.holder is not None:
        _err(f"⏳ Editor in use by: {first.holder.label}")
    else:
        _err(f"⚠ Could not take the editor lock: {first.error}")
    _err("  Waiting for editor to become available...")
    result = lock.acquire_blocking(project)
    if result.is_acquired:
        _err("✓ Editor acquired")
    else:
        _err("⚠ Timeout waiting for editor, auto-continuing...")
    return result


def handle_main_command(
    options: AskOptions,
    *,
    settings: Optional[Settings] = None,
    spawn: SpawnFn = spawn_editor,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    cwd = os.path.abspath(options.cwd)

    # Auto-resume: a new question means the human is back in the loop.
    pause_signal(cwd).clear()

    settings = settings or load_settings()
    if mute_signal().is_active():
        _wait_muted(settings, sleep)
        print(CONTINUE)
        return 0

    repo = repository_for(settings)
    repo.archive_if_stale(cwd)
    latest = repo.latest_path(cwd)
    project = repo.project_id(cwd)

    lock = editor_lock_for(settings)
    acquired = lock.try_acquire(project)
    if not acquired.is_acquired:
        acquired = _wait_for_editor(lock, project, acquired)
        if not acquired.is_acquired:
            print(CONTINUE)
            return 0

    try:
        with event_timer(event="ask", component="main", project=project) as finalize:
            input_line = repo.with_lock(latest, lambda: _append_session(repo, cwd, options))
            command, goto_format = settings.current_editor()
            spawned = spawn(command, goto_format, latest, input_line, settings.timeout_seconds)
            answer, validation = repo.with_lock(
                latest, lambda: _collect_answer(repo, cwd, spawned, settings.timeout_minutes)
            )
            finalize({"valid": validation.is_valid, "timed_out": spawned.timed_out})
    finally:
        lock.release()

    if validation.is_valid:
        print(answer)
    elif validation.message:
        _err(validation.message)
    return 0


def _append_session(repo: SessionRepository, cwd: str, options: AskOptions) -> int:
    existing = repo.read_latest(cwd)
    if existing:
        content, line = template.append_session_block(existing, options.title, options.context)
    else:
        content, line = template.generate_new_document(cwd, options.title, options.context)
    repo.write_latest(cwd, content)
    return line


def _collect_answer(
    repo: SessionRepository, cwd: str, spawned: SpawnResult, timeout_minutes: int
) -> Tuple[str, ValidationResult]:
    answer = template.extract_user_input(repo.read_latest(cwd))
    return answer, validate_input(answer, spawned.duration_ms, timeout_minutes, spawned.timed_out)


# ===== PAUSE / RESUME ===== #
def handle_pause_command(target_dir: str) -> int:
    flag = pause_signal(target_dir)
    print()
    if flag.is_active():
        print("⚠ Already paused")
        print(f"  Pause file exists: {flag.path}")
        print()
        print("To resume, run: ask-me resume")
        print()
        return 0
    flag.set("Paused by user command")
    print("✓ AI agent paused")
    print(f"  Created: {flag.path}")
    print()
    print("To resume, run: ask-me resume")
    print()
    return 0


def handle_resume_command(target_dir: str) -> int:
    flag = pause_signal(target_dir)
    print()
    if not flag.clear():
        print("⚠ Not paused")
        print("  No pause file found.")
        print()
        return 0
    print("✓ AI agent resumed")
    print(f"  Removed: {flag.path}")
    print()
    return 0


# ===== AGENT HOOKS ===== #
# Hook protocol: the agent pipes one JSON event to ``ask-me hooks`` and reads
# one JSON decision back. "before" events that touch the workspace are gated
# on the pause flag; "after" events need no answer.
GATED_EVENTS = frozenset({"beforeShellExecution", "beforeMCPExecution", "beforeReadFile"})
SILENT_EVENTS = frozenset(
    {"afterShellExecution", "afterMCPExecution", "afterFileEdit", "afterAgentThought", "afterAgentResponse", "stop"}
)
ALLOW = {"permission": "allow"}
PAUSED_USER_MESSAGE = "⏸️ Agent paused, waiting for user instructions..."


def _reply(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def _is_askme_call(command: Any) -> bool:
    # The agent must always be able to reach the human, paused or not.
    return isinstance(command, str) and ("ask-me" in command or "ask " in command)


def _hook_workspace(data: Dict[str, Any], fallback: str) -> str:
    roots = data.get("workspace_roots")
    if isinstance(roots, list) and roots and isinstance(roots[0], str) and roots[0]:
        return roots[0]
    return fallback


def handle_hooks_command(stdin_text: Optional[str], *, status: bool = False, cwd: Optional[str] = None) -> int:
    """Answer one agent hook event read from stdin, or report the pause state.

    Unreadable input is answered with ``allow`` so a broken hook never blocks
    the agent.
    """
    cwd = cwd or os.getcwd()
    if status:
        print("paused" if pause_signal(cwd).is_active() else "running")
        return 0

    try:
        data = json.loads(stdin_text or "")
    except json.JSONDecodeError:
        data = None
    if not isinstance(data, dict):
        _reply(ALLOW)
        return 0

    event = data.get("hook_event_name")
    if not isinstance(event, str):
        event = ""
    flag = pause_signal(_hook_workspace(data, cwd))

    if event in GATED_EVENTS:
        if _is_askme_call(data.get("command")) or not flag.is_active():
            _reply(ALLOW)
            return 0
        log_event(event="hook_denied", component="hooks", level="info", hook=event, path=flag.path)
        _reply(
            {
                "permission": "deny",
                "user_message": PAUSED_USER_MESSAGE,
                "agent_message": (
                    f"User paused execution ({event}). Call ask-me to wait for user input before continuing."
                ),
            }
        )
        return 0
    if event == "beforeSubmitPrompt":
        # The human typed a new prompt: they are back in control.
        flag.clear()
        _reply({"continue": True})
        return 0
    if event in SILENT_EVENTS:
        return 0
    _reply(ALLOW)
    return 0


# ===== MUTE ===== #
def handle_mute_command() -> int:
    flag = mute_signal()
    print()
    if flag.is_active():
        info = flag.info()
        print("⚠ Already muted")
        if info.timestamp:
            print(f"  Muted since: {info.timestamp}")
        print(f"  Signal file: {flag.path}")
        print()
        print("To unmute, run: ask-me unmute")
        print()
        return 0
    flag.set("Muted by user command")
    print("✓ Global mute enabled")
    print()
    print("What happens now:")
    print("  - ask-me will NOT open the editor")
    print('  - After timeout, outputs "continue" to stdout')
    print("  - AI agents will continue automatically")
    print()
    print(f"Signal file: {flag.path}")
    print()
    print("To unmute, run: ask-me unmute")
    print()
    return 0


def handle_unmute_command() -> int:
    flag = mute_signal()
    print()
    info = flag.info()
    if not flag.clear():
        print("⚠ Not muted")
        print("  No mute signal found.")
        print()
        return 0
    print("✓ Global mute disabled")
    if info.timestamp:
        print(f"  Was muted since: {info.timestamp}")
    print()
    print("Normal behavior restored:")
    print("  - ask-me will open the editor as usual")
    print("  - User input will be captured normally")
    print()
    return 0


def handle_mute_status_command() -> int:
    info = mute_signal().info()
    print()
    if info.active:
        print("⚡ Mute: ENABLED")
        if info.timestamp:
            print(f"  Since: {info.timestamp}")
        if info.reason:
            print(f"  Reason: {info.reason}")
        print(f"  Signal: {mute_signal_path()}")
        print()
        print("To unmute, run: ask-me unmute")
    else:
        print("○ Mute: disabled")
        print("  Normal mode - editor will open as usual")
        print()
        print("To mute, run: ask-me mute")
    print()
    return 0


# ===== HISTORY ===== #
def handle_history_command(project: Optional[str] = None, limit: int = 10) -> int:
    repo = SessionRepository()
    projects = repo.list_projects()
    print()
    if not projects:
        print("No session history found.")
        print()
        print(f"Session files are stored in: {repo.projects_dir}")
        print()
        return 0

    if project:
        needle = project.lower()
        matching = [p for p in projects if needle in p.name.lower()]
        if not matching:
            print(f"No project matching '{project}' found.")
            print()
            print("Available projects:")
            for p in projects:
                print(f"  - {p.name}")
            print()
            return 0
        for p in matching:
            print(f"{p.name}  ({p.session_count} sessions)")
            for doc in p.documents[:limit]:
                label = "latest" if doc.is_latest else doc.name[: -len(".md")]
                print(f"  {label:<12} {doc.session_count:>3} sessions  {doc.path}")
            print()
        return 0

    for p in projects[:limit]:
        touched = datetime.fromtimestamp(p.last_modified).strftime("%Y-%m-%d %H:%M")
        print(f"  {p.name}  {p.session_count} sessions, last {touched}")
    if len(projects) > limit:
        print(f"  ... and {len(projects) - limit} more")
    print()
    print("Show one project with: ask-me history --project <name>")
    print()
    return 0


# ===== EDITOR ===== #
def handle_editor_command(subcommand: str, value: Optional[str] = None, goto_format: Optional[str] = None) -> int:
    print()
    if subcommand == "list":
        current = load_settings().editor_preset
        for preset in EDITOR_PRESETS:
            marker = "*" if preset.name == current else " "
            print(f" {marker} {preset.name:<14} {preset.command:<22} {preset.description}")
    elif subcommand == "current":
        settings = load_settings()
        command, goto = settings.current_editor()
        print(f"Preset:  {settings.editor_preset or '(custom)'}")
        print(f"Command: {command}")
        print(f"Goto:    {goto}")
    elif subcommand == "use":
        if not value or get_preset(value) is None:
            print(f"✗ Unknown preset: {value}")
            print(f"  Available: {', '.join(p.name for p in EDITOR_PRESETS)}")
        else:
            with edit_settings() as settings:
                settings.use_preset(value)
            print(f"✓ Editor set to preset '{value.lower()}'")
    elif subcommand == "set":
        if not value or not value.strip():
            print("✗ Editor command must not be empty")
        else:
            with edit_settings() as settings:
                settings.set_custom_editor(value, goto_format)
            print(f"✓ Editor set to custom command: {value}")
    print()
    return 0


# ===== LOCK STATUS ===== #
def handle_lock_status_command() -> int:
    lock = EditorLock()
    holder = lock.holder_info()
    print()
    if holder is None:
        print("○ Editor: free")
    else:
        print(f"⏳ Editor: in use by {holder.label}")
        print(f"  PID: {holder.pid}")
        if holder.start_time:
            started = datetime.fromtimestamp(holder.start_time / 1000).strftime("%Y-%m-%d %H:%M:%S")
            print(f"  Since: {started}")
    print(f"  Lock file: {lock.path}")
    print()
    return 0
