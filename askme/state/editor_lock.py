"""Single-flight lock over the interactive editor.

Only one editor session may be open system-wide, whatever project asked for
it. The marker lives at ``<root>/editor.lock`` and records who holds it::

    {"pid": 4242, "project": "home-me-repo", "startTime": 1760000000000}

Holder inspection doubles as stale recovery: a marker whose pid is dead, or
whose payload cannot be parsed, is purged and the editor reported free.
"""
from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Optional, Set

from askme.paths import editor_lock_path
from askme.state.liveness import is_process_alive
from askme.state.locks import create_marker, remove_marker, snapshot_marker
from askme.state.logger import log_event
from askme.state.models import AcquireResult, EditorLockHolder

DEFAULT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_ERROR_RETRY_INTERVAL = 0.1
HOLDER_LOOKS = 3

COMPONENT = "editor_lock"


class EditorLock:
    """Handle on the global editor lock.

    Args:
        path: Marker path; defaults to ``<root>/editor.lock`` at call time
        timeout: Default budget for ``acquire_blocking`` in seconds
        poll_interval: Sleep between attempts while the lock is busy
        error_retry_interval: Sleep after an ERROR outcome. Errors never end
            the wait early, only the timeout does. A repeated error is logged
            once until the cause changes or the lock is acquired.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        error_retry_interval: float = DEFAULT_ERROR_RETRY_INTERVAL,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.error_retry_interval = error_retry_interval
        self._last_error: Optional[str] = None
        self._unremovable_logged: Set[Path] = set()

    @property
    def path(self) -> Path:
        return self._path if self._path is not None else editor_lock_path()

    def holder_info(self) -> Optional[EditorLockHolder]:
        """Return the live holder, or None if the editor is free.

        Dead or unparseable markers are deleted as a side effect. If the
        marker keeps changing underneath us, gives up after a few looks and
        reports the editor free; the next create settles who owns it.
        """
        path = self.path
        for _ in range(HOLDER_LOOKS):
            snapshot = snapshot_marker(path)
            if snapshot is None:
                return None
            try:
                text: Optional[str] = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except (OSError, UnicodeDecodeError):
                text = None

            holder: Optional[EditorLockHolder] = None
            if text is not None:
                try:
                    holder = EditorLockHolder.from_dict(json.loads(text))
                except ValueError:
                    holder = None

            if holder is not None and is_process_alive(holder.pid):
                return holder

            try:
                removed = remove_marker(path, snapshot)
            except OSError as exc:
                if path not in self._unremovable_logged:
                    self._unremovable_logged.add(path)
                    log_event(
                        event="stale_marker_unremovable", component=COMPONENT, level="error", path=path, error=str(exc)
                    )
                return None
            if removed:
                log_event(
                    event="stale_marker_reclaimed",
                    component=COMPONENT,
                    level="warn",
                    path=path,
                    owner_pid=snapshot.pid,
                    owner_project=holder.project if holder else None,
                    reason="dead_process" if holder else "corrupt_payload",
                )
                return None
        return None

    def try_acquire(self, project: str) -> AcquireResult:
        """Attempt to take the editor without waiting.

        Returns ACQUIRED, BUSY (with the holder) or ERROR (with the cause).
        """
        try:
            holder = self.holder_info()
        except OSError as exc:
            return self._failed(f"Failed to inspect lock file {self.path}: {exc}")
        if holder is not None:
            return AcquireResult.busy(holder)

        record = EditorLockHolder(pid=os.getpid(), project=project, start_time=int(time.time() * 1000))
        payload = json.dumps(record.to_dict())
        path = self.path
        try:
            create_marker(path, payload)
        except FileExistsError:
            try:
                holder = self.holder_info()
                if holder is not None:
                    return AcquireResult.busy(holder)
                create_marker(path, payload)
            except FileExistsError:
                holder = self.holder_info()
                if holder is not None:
                    return AcquireResult.busy(holder)
                return self._failed(f"Failed to create lock file {path}: marker reappeared during retry")
            except OSError as exc:
                return self._failed(f"Failed to create lock file {path}: {exc}")
        except OSError as exc:
            return self._failed(f"Failed to create lock file {path}: {exc}")

        self._last_error = None
        log_event(event="editor_lock_acquired", component=COMPONENT, project=project, path=path)
        return AcquireResult.acquired()

    def acquire_blocking(self, project: str, timeout: float | None = None) -> AcquireResult:
        """Poll ``try_acquire`` until the editor is ours or ``timeout`` elapses.

        Returns ACQUIRED, or TIMEOUT carrying the last known holder.
        """
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        while True:
            result = self.try_acquire(project)
            if result.is_acquired:
                return result
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log_event(
                    event="editor_lock_timeout",
                    component=COMPONENT,
                    level="warn",
                    project=project,
                    timeout_s=budget,
                    holder_project=result.holder.project if result.holder else None,
                )
                return AcquireResult.timed_out(result.holder)
            delay = self.poll_interval if result.is_busy else self.error_retry_interval
            if delay > 0:
                time.sleep(min(delay, remaining))

    def release(self) -> bool:
        """Delete the marker if it records this process. Returns True if removed."""
        path = self.path
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return False
        except (OSError, UnicodeDecodeError, ValueError):
            return False
        if not isinstance(data, dict) or data.get("pid") != os.getpid():
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        log_event(event="editor_lock_released", component=COMPONENT, project=data.get("project"))
        return True

    def _failed(self, message: str) -> AcquireResult:
        if message != self._last_error:
            self._last_error = message
            log_event(event="editor_lock_error", component=COMPONENT, level="warn", error=message)
        return AcquireResult.failed(message)


__all__ = ["EditorLock"]
