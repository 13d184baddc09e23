"""Presence-based global signals (pause, mute).

A signal is active while its file exists. The file carries optional JSON
metadata ``{"timestamp", "reason", "pid"}``; the metadata is advisory, the
file's presence is authoritative. Signals never go stale on their own.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from askme.paths import mute_signal_path, pause_signal_path
from askme.state.logger import log_event
from askme.state.models import SignalInfo
from askme.state.persistence import atomic_write_json

MUTE_DEFAULT_REASON = "Muted by user"
PAUSE_DEFAULT_REASON = "Paused by user"


class SignalFlag:
    """A named boolean backed by the existence of ``path``."""

    def __init__(self, path: Path | str, *, name: str, default_reason: str) -> None:
        self.path = Path(path)
        self.name = name
        self.default_reason = default_reason

    def is_active(self) -> bool:
        return self.path.exists()

    def info(self) -> SignalInfo:
        """Return the signal state; unreadable metadata still reports active."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SignalInfo(active=False)
        except (OSError, UnicodeDecodeError):
            return SignalInfo(active=True)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return SignalInfo(active=True)
        if not isinstance(data, dict):
            return SignalInfo(active=True)

        pid = data.get("pid")
        timestamp = data.get("timestamp")
        reason = data.get("reason")
        return SignalInfo(
            active=True,
            timestamp=timestamp if isinstance(timestamp, str) else None,
            reason=reason if isinstance(reason, str) else None,
            pid=pid if isinstance(pid, int) and not isinstance(pid, bool) else None,
        )

    def set(self, reason: Optional[str] = None) -> SignalInfo:
        info = SignalInfo(
            active=True,
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            reason=reason or self.default_reason,
            pid=os.getpid(),
        )
        atomic_write_json(self.path, info.to_dict())
        log_event(event="signal_set", component="signals", signal=self.name, reason=info.reason)
        return info

    def clear(self) -> bool:
        """Remove the signal. Returns True if it was active."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log_event(event="signal_cleared", component="signals", signal=self.name)
        return True


def mute_signal() -> SignalFlag:
    """Global mute: the editor is skipped for every project."""
    return SignalFlag(mute_signal_path(), name="mute", default_reason=MUTE_DEFAULT_REASON)


def pause_signal(cwd: Path | str) -> SignalFlag:
    """Per-project pause, cleared automatically by the next main invocation."""
    return SignalFlag(pause_signal_path(cwd), name="pause", default_reason=PAUSE_DEFAULT_REASON)


__all__ = ["SignalFlag", "mute_signal", "pause_signal"]
