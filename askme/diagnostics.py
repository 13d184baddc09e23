"""``ask-me-inspect``: who holds what, and what the locks have been doing.

Prints the live coordination state (editor holder, global mute) followed by
the tail of the telemetry log and the lock incidents found in it.
"""
from __future__ import annotations

import argparse
import json
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Mapping, Sequence

from askme.state.editor_lock import EditorLock
from askme.state.logger import resolve_log_path
from askme.state.signals import mute_signal

LOCK_EVENTS = frozenset(
    {
        "stale_marker_reclaimed",
        "stale_marker_unremovable",
        "reclaim_guard_cleared",
        "lock_timeout",
        "editor_lock_timeout",
        "editor_lock_error",
    }
)

Event = Mapping[str, object]


def load_events(log_path: Path, limit: int = 50) -> List[Event]:
    """Parse the newest ``limit`` lines of the JSONL log (all lines if 0).

    Blank and unparseable lines are skipped.
    """
    try:
        handle = Path(log_path).open(encoding="utf-8")
    except FileNotFoundError:
        return []
    with handle:
        tail: Deque[str] = deque(handle, maxlen=limit or None)

    events: List[Event] = []
    for line in tail:
        if not line.strip():
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            events.append(parsed)
    return events


def summarize_lock_incidents(events: Sequence[Event]) -> List[Dict[str, object]]:
    """Stale reclaims, timeouts and errors, oldest first."""
    return [
        {
            "event": event.get("event"),
            "component": event.get("component"),
            "path": event.get("path"),
            "owner_pid": event.get("owner_pid"),
            "reason": event.get("reason") or event.get("error"),
            "ts": event.get("ts"),
        }
        for event in events
        if event.get("event") in LOCK_EVENTS
    ]


def _describe(event: Event) -> str:
    details = ", ".join(
        f"{key}={event[key]}" for key in ("component", "project", "path", "owner_pid") if key in event
    )
    line = f"[{event.get('ts', '?')}] {event.get('level', 'info')} {event.get('event')}"
    return f"{line} ({details})" if details else line


def _section(title: str, lines: Iterable[str], empty: str = "") -> None:
    print(title)
    rows = list(lines)
    for row in rows or ([empty] if empty else []):
        print(f"  {row}")
    print()


def _state_lines() -> List[str]:
    holder = EditorLock().holder_info()
    if holder is None:
        editor = "editor: free"
    else:
        editor = f"editor: in use by {holder.label} (pid {holder.pid})"
    mute = mute_signal().info()
    muted = "mute: on" if mute.active else "mute: off"
    if mute.timestamp:
        muted += f" since {mute.timestamp}"
    return [editor, muted]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ask-me-inspect",
        description="Inspect ask-me lock telemetry and current holders.",
    )
    parser.add_argument("--log-path", type=str, default=None, help="Telemetry log (defaults to <root>/askme.log).")
    parser.add_argument("--limit", type=int, default=20, help="Number of recent events to display.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(list(argv) if argv is not None else None)

    _section("Current state", _state_lines())

    log_path = Path(args.log_path).expanduser() if args.log_path else resolve_log_path()
    print(f"Telemetry log: {log_path}")
    events = load_events(log_path, limit=max(args.limit, 0))
    if not events:
        print("No telemetry entries found.")
        return 0
    print()

    _section("Recent events", map(_describe, events))
    _section(
        "Lock incidents",
        (
            " ".join(str(part) for part in (i["ts"], i["event"], i["path"] or "", i["reason"] or "")).rstrip()
            for i in summarize_lock_incidents(events)
        ),
        empty="None recorded.",
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
