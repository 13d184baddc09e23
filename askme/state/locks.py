"""Cooperative marker-file locks shared by every ask-me invocation.

A lock is a marker file whose existence denotes ownership. Markers are created
atomically (the payload is written to a temp file first and hard-linked into
place, so a marker is never observed half-written) and removed by the owner on
release.

A marker left behind by a crashed process is reclaimed by whoever notices it:
- a recorded pid that is no longer running makes the marker stale at any age
- a marker without a usable pid becomes stale once it is older than
  ``stale_after`` seconds (by mtime)

Reclaiming happens under a short-lived ``<marker>.reclaim`` guard: the
reclaimer re-inspects the marker while holding the guard and unlinks it only
if it is still the file that was judged stale. A marker is never moved, so a
fresh marker written by someone else stays in place.
"""
from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from contextlib import AbstractContextManager, contextmanager, suppress
from pathlib import Path
from types import TracebackType
from typing import Callable, Iterator, NamedTuple, Optional, Type, TypeVar

from askme.state.liveness import is_process_alive
from askme.state.logger import log_event

LOCK_SUFFIX = ".lock"
RECLAIM_SUFFIX = ".reclaim"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_INTERVAL = 0.1
DEFAULT_STALE_AFTER = 60.0

# Reclaim guard: how long to wait for it, how often to look, and when an
# ownerless guard counts as abandoned.
RECLAIM_WAIT = 1.0
RECLAIM_POLL = 0.005
RECLAIM_STALE_AFTER = 5.0

T = TypeVar("T")


class LockTimeoutError(TimeoutError):
    """Raised when a marker lock cannot be acquired within its budget."""

    def __init__(self, path: Path, timeout: float) -> None:
        self.path = Path(path)
        self.timeout = timeout
        super().__init__(f"Could not acquire lock {self.path} within {timeout:g}s")


class MarkerLostError(OSError):
    """Raised when a freshly created marker vanished before its payload landed."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"Marker {self.path} was removed while it was being written")


class MarkerSnapshot(NamedTuple):
    """Identity of a marker at the moment it was inspected."""

    inode: int
    mtime_ns: int
    pid: Optional[int]
    age: float


def _pid_from_text(text: str) -> Optional[int]:
    text = text.strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        pid = data.get("pid") if isinstance(data, dict) else None
    else:
        try:
            pid = int(text)
        except ValueError:
            return None
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        return None
    return pid


def read_marker_pid(path: Path) -> Optional[int]:
    """Return the owner pid recorded in a marker (plain text or JSON ``pid``).

    Raises:
        FileNotFoundError: If the marker does not exist
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except (OSError, UnicodeDecodeError):
        return None
    return _pid_from_text(text)


def snapshot_marker(path: Path) -> Optional[MarkerSnapshot]:
    """Capture a marker's identity, owner and age; None if it is gone."""
    try:
        stat = Path(path).stat()
        pid = read_marker_pid(path)
    except FileNotFoundError:
        return None
    age = max(time.time() - stat.st_mtime, 0.0)
    return MarkerSnapshot(stat.st_ino, stat.st_mtime_ns, pid, age)


def snapshot_is_stale(snapshot: MarkerSnapshot, *, stale_after: float) -> bool:
    if snapshot.pid is not None:
        return not is_process_alive(snapshot.pid)
    return snapshot.age > stale_after


def is_marker_stale(path: Path, *, stale_after: float = DEFAULT_STALE_AFTER) -> bool:
    """Return True if the marker at ``path`` may be reclaimed (or is already gone)."""
    snapshot = snapshot_marker(path)
    if snapshot is None:
        return True
    return snapshot_is_stale(snapshot, stale_after=stale_after)


def _create_exclusive(path: Path, payload: str) -> None:
    # The marker is visible (empty) before the payload is written, so an
    # inspector may purge it in between. Check it is still ours afterwards.
    fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        written = os.fstat(handle.fileno())
    try:
        current = os.stat(path)
    except FileNotFoundError:
        raise MarkerLostError(path) from None
    if (current.st_dev, current.st_ino) != (written.st_dev, written.st_ino):
        raise MarkerLostError(path)


def create_marker(path: Path, payload: str) -> None:
    """Atomically create ``path`` containing ``payload``.

    Raises:
        FileExistsError: If a marker already exists at ``path``
        MarkerLostError: If the marker was purged while being written
            (only possible on filesystems without hard links)
        OSError: For any other failure (permissions, missing volume, ...)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp_marker_", text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        try:
            os.link(temp_name, path)
        except FileExistsError:
            raise
        except OSError:
            # Filesystem without hard links: exclusive create, then write.
            _create_exclusive(path, payload)
    finally:
        with suppress(FileNotFoundError):
            os.unlink(temp_name)


def reclaim_guard_path(path: Path | str) -> Path:
    """Guard serializing reclaims of ``path``: ``<path>.reclaim``."""
    return Path(f"{os.fspath(path)}{RECLAIM_SUFFIX}")


def _clear_abandoned_guard(guard: Path) -> None:
    """Delete a guard whose owner died (or, if ownerless, that has aged out)."""
    snapshot = snapshot_marker(guard)
    if snapshot is None or not snapshot_is_stale(snapshot, stale_after=RECLAIM_STALE_AFTER):
        return
    tombstone = guard.with_name(f".{guard.name}.{uuid.uuid4().hex}.stale")
    try:
        os.rename(guard, tombstone)
    except FileNotFoundError:
        return
    try:
        stat = tombstone.stat()
        if (stat.st_ino, stat.st_mtime_ns) != (snapshot.inode, snapshot.mtime_ns):
            # A live reclaimer took the guard after we looked; hand it back.
            with suppress(FileExistsError):
                os.link(tombstone, guard)
            return
    finally:
        with suppress(FileNotFoundError):
            tombstone.unlink()
    log_event(event="reclaim_guard_cleared", component="locks", level="warn", path=guard, owner_pid=snapshot.pid)


@contextmanager
def _reclaim_guard(path: Path) -> Iterator[bool]:
    """Hold ``<path>.reclaim`` for the duration of the block.

    Yields False if the guard stayed busy for ``RECLAIM_WAIT`` seconds.
    """
    guard = reclaim_guard_path(path)
    deadline = time.monotonic() + RECLAIM_WAIT
    while True:
        try:
            create_marker(guard, str(os.getpid()))
            break
        except FileExistsError:
            _clear_abandoned_guard(guard)
        if time.monotonic() >= deadline:
            yield False
            return
        time.sleep(RECLAIM_POLL)
    try:
        yield True
    finally:
        with suppress(FileNotFoundError):
            if read_marker_pid(guard) == os.getpid():
                guard.unlink()


def remove_marker(path: Path, snapshot: MarkerSnapshot) -> bool:
    """Delete the marker at ``path`` only if it is still the file in ``snapshot``.

    The marker is re-inspected under the reclaim guard and unlinked only when
    its inode, mtime and recorded pid all match ``snapshot``. Returns True if
    the snapshotted marker was removed, False if it changed, vanished, or the
    guard could not be taken.
    """
    path = Path(path)
    with _reclaim_guard(path) as guarded:
        if not guarded:
            return False
        current = snapshot_marker(path)
        if current is None:
            return False
        if (current.inode, current.mtime_ns, current.pid) != (snapshot.inode, snapshot.mtime_ns, snapshot.pid):
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
    return True


def reclaim_if_stale(path: Path, *, stale_after: float, component: str = "locks") -> bool:
    """Remove the marker at ``path`` if it is stale. Returns True if the path is now free."""
    snapshot = snapshot_marker(path)
    if snapshot is None:
        return True
    if not snapshot_is_stale(snapshot, stale_after=stale_after):
        return False
    if not remove_marker(path, snapshot):
        return not path.exists()
    log_event(
        event="stale_marker_reclaimed",
        component=component,
        level="warn",
        path=path,
        owner_pid=snapshot.pid,
        age_s=round(snapshot.age, 3),
    )
    return True


class MarkerLock(AbstractContextManager["MarkerLock"]):
    """Exclusive marker-file lock with stale recovery.

    ``acquire`` polls until ``timeout`` seconds have elapsed, sleeping
    ``retry_interval`` between attempts. A stale marker is reclaimed and the
    create retried immediately, without sleeping.
    """

    def __init__(
        self,
        marker_path: Path | str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
        payload: Callable[[], str] | None = None,
        component: str = "locks",
    ) -> None:
        self._path = Path(marker_path)
        self._timeout = timeout
        self._retry_interval = retry_interval
        self._stale_after = stale_after
        self._payload = payload or (lambda: str(os.getpid()))
        self._component = component
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        """Make one acquisition attempt, reclaiming a stale marker on the way.

        Returns False on contention, including a marker purged mid-write;
        other I/O errors propagate.
        """
        if self._held:
            raise RuntimeError(f"Lock {self._path} is already held by this handle")
        try:
            create_marker(self._path, self._payload())
        except MarkerLostError:
            return False
        except FileExistsError:
            if not reclaim_if_stale(self._path, stale_after=self._stale_after, component=self._component):
                return False
            try:
                create_marker(self._path, self._payload())
            except (FileExistsError, MarkerLostError):
                return False
        self._held = True
        return True

    def acquire(self) -> "MarkerLock":
        deadline = time.monotonic() + self._timeout
        while True:
            if self.try_acquire():
                return self
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log_event(
                    event="lock_timeout",
                    component=self._component,
                    level="warn",
                    path=self._path,
                    timeout_s=self._timeout,
                    holder_pid=_safe_pid(self._path),
                )
                raise LockTimeoutError(self._path, self._timeout)
            time.sleep(min(self._retry_interval, remaining))

    def release(self) -> bool:
        """Remove the marker if this process still owns it.

        Returns True if a marker was removed. A marker that now belongs to a
        different pid is left alone.
        """
        if not self._held:
            return False
        self._held = False
        try:
            if read_marker_pid(self._path) != os.getpid():
                return False
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

    def __enter__(self) -> "MarkerLock":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def _safe_pid(path: Path) -> Optional[int]:
    try:
        return read_marker_pid(path)
    except FileNotFoundError:
        return None


def lock_path_for(path: Path | str) -> Path:
    """Marker path guarding ``path``: ``<path>.lock``."""
    return Path(f"{os.fspath(path)}{LOCK_SUFFIX}")


def acquire_lock(
    marker_path: Path | str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    stale_after: float = DEFAULT_STALE_AFTER,
) -> MarkerLock:
    """Acquire the marker at ``marker_path`` and return the held handle.

    Raises:
        LockTimeoutError: If the marker stays held past ``timeout``
    """
    return MarkerLock(
        marker_path,
        timeout=timeout,
        retry_interval=retry_interval,
        stale_after=stale_after,
    ).acquire()


def release_lock(handle: MarkerLock) -> bool:
    return handle.release()


def file_lock(
    path: Path | str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    stale_after: float = DEFAULT_STALE_AFTER,
) -> MarkerLock:
    """Lock serializing read-modify-write sections on ``path`` across processes."""
    return MarkerLock(
        lock_path_for(path),
        timeout=timeout,
        retry_interval=retry_interval,
        stale_after=stale_after,
        component="file_lock",
    )


def with_file_lock(
    path: Path | str,
    fn: Callable[[], T],
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    stale_after: float = DEFAULT_STALE_AFTER,
) -> T:
    """Run ``fn`` while holding the lock on ``path`` and return its result.

    The lock is released on every exit path, including exceptions from ``fn``.
    """
    with file_lock(path, timeout=timeout, retry_interval=retry_interval, stale_after=stale_after):
        return fn()


__all__ = [
    "DEFAULT_RETRY_INTERVAL",
    "DEFAULT_STALE_AFTER",
    "DEFAULT_TIMEOUT",
    "LockTimeoutError",
    "MarkerLock",
    "MarkerLostError",
    "MarkerSnapshot",
    "acquire_lock",
    "create_marker",
    "file_lock",
    "is_marker_stale",
    "lock_path_for",
    "read_marker_pid",
    "reclaim_guard_path",
    "reclaim_if_stale",
    "release_lock",
    "remove_marker",
    "snapshot_marker",
    "with_file_lock",
]
