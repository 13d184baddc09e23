"""``ask-me`` command line entry point."""
from __future__ import annotations

import argparse
import os
import sys
from typing import Sequence

from askme import __version__
from askme.api import commands
from askme.editor import EditorLaunchError
from askme.state.locks import LockTimeoutError
from askme.state.logger import log_event


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ask-me",
        description="Ask the human a question through their editor and print the answer.",
        epilog=(
            "Pause/Resume (per-project): 'ask-me pause' stops the agent, 'ask-me resume' lets it continue. "
            "Mute/Unmute (global): 'ask-me mute' skips the editor and prints \"continue\" after the timeout."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--cwd", type=str, default=None, help="Project directory (defaults to the current directory).")
    parser.add_argument("--title", type=str, default=None, help="Question shown to the human.")
    parser.add_argument("--context", type=str, default=None, help="Optional context shown under the title.")

    subparsers = parser.add_subparsers(dest="command")

    pause_parser = subparsers.add_parser("pause", help="Pause the AI agent working in a project.")
    pause_parser.add_argument("--dir", dest="target_dir", type=str, default=None, help="Project directory.")
    resume_parser = subparsers.add_parser("resume", help="Resume a paused project.")
    resume_parser.add_argument("--dir", dest="target_dir", type=str, default=None, help="Project directory.")

    mute_parser = subparsers.add_parser("mute", help="Skip the editor for all projects.")
    mute_parser.add_argument("--status", action="store_true", help="Show the current mute state only.")
    subparsers.add_parser("unmute", help="Restore normal editor behavior.")

    history_parser = subparsers.add_parser("history", help="List recorded sessions.")
    history_parser.add_argument("--project", type=str, default=None, help="Filter projects by substring.")
    history_parser.add_argument("--limit", type=int, default=10, help="Maximum entries to show.")

    editor_parser = subparsers.add_parser("editor", help="Show or change the editor.")
    editor_parser.add_argument("subcommand", choices=["list", "current", "use", "set"])
    editor_parser.add_argument("value", nargs="?", default=None, help="Preset name (use) or command (set).")
    editor_parser.add_argument("--goto", dest="goto_format", type=str, default=None, help="Goto format for 'set'.")

    subparsers.add_parser("lock-status", help="Show which project holds the editor.")

    hooks_parser = subparsers.add_parser("hooks", help="Answer agent hook events on stdin (pause gate).")
    hooks_parser.add_argument("--status", action="store_true", help="Print 'paused' or 'running' and exit.")

    return parser


def _read_stdin() -> str:
    try:
        return sys.stdin.read()
    except (OSError, UnicodeDecodeError):
        return ""


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace) -> int:
    if args.command == "pause":
        return commands.handle_pause_command(args.target_dir or os.getcwd())
    if args.command == "resume":
        return commands.handle_resume_command(args.target_dir or os.getcwd())
    if args.command == "mute":
        return commands.handle_mute_status_command() if args.status else commands.handle_mute_command()
    if args.command == "unmute":
        return commands.handle_unmute_command()
    if args.command == "history":
        return commands.handle_history_command(args.project, max(args.limit, 1))
    if args.command == "editor":
        return commands.handle_editor_command(args.subcommand, args.value, args.goto_format)
    if args.command == "hooks":
        return commands.handle_hooks_command(None if args.status else _read_stdin(), status=args.status)
    if args.command == "lock-status":
        return commands.handle_lock_status_command()

    if args.title is None:
        parser.print_help()
        return 0
    options = commands.AskOptions(cwd=args.cwd or os.getcwd(), title=args.title, context=args.context)
    return commands.handle_main_command(options)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point. Always exits 0 so the calling agent keeps going."""
    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit:
        # --help / --version / usage errors: argparse already printed
        return 0

    try:
        return _dispatch(parser, args)
    except (LockTimeoutError, EditorLaunchError, OSError) as exc:
        log_event(event="command_failed", component="cli", level="error", command=args.command or "main", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
