"""Data models shared by the coordination layer.

Design principles:
- Frozen instances (frozen=True); results are values, never mutated in place
- to_dict/from_dict helpers where the model is persisted as JSON
- Acquisition outcomes are a tagged value (AcquireStatus + payload) so callers
  branch on the tag instead of catching exceptions
- Descriptive ValueError for payloads that cannot be trusted

Critical: from_dict is the only place untrusted marker content is parsed.
Callers treat its ValueError as "corrupt payload", which the lock layer maps
onto "stale".
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


class AcquireStatus(Enum):
    """Outcome tag of an editor lock acquisition attempt.

    Attributes:
        ACQUIRED: The caller now owns the lock
        BUSY: Another live process legitimately holds the lock
        ERROR: The marker could not be created for a reason other than contention
        TIMEOUT: Waiting for the lock exceeded the caller's budget
    """

    ACQUIRED = "acquired"
    BUSY = "busy"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class EditorLockHolder:
    """Who currently owns the single editor slot.

    Attributes:
        pid: Process id recorded in the marker
        project: Project label of the holder (normalized project id)
        start_time: Acquisition time in epoch milliseconds
    """

    pid: int
    project: Optional[str] = None
    start_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pid": self.pid, "project": self.project, "startTime": self.start_time}

    @classmethod
    def from_dict(cls, data: Any) -> "EditorLockHolder":
        """Reconstruct a holder from marker JSON.

        Raises:
            ValueError: If the payload is not an object with a positive integer pid
        """
        if not isinstance(data, dict):
            raise ValueError("Editor lock payload must be a JSON object")
        pid = data.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            raise ValueError(f"Editor lock payload has invalid pid: {pid!r}")
        project = data.get("project")
        start_time = data.get("startTime")
        if isinstance(start_time, bool) or not isinstance(start_time, (int, float)):
            start_time = None
        return cls(
            pid=pid,
            project=project if isinstance(project, str) else None,
            start_time=int(start_time) if start_time is not None else None,
        )

    @property
    def label(self) -> str:
        return self.project or "unknown project"


@dataclass(frozen=True)
class AcquireResult:
    """Tagged result of an editor lock attempt.

    ``holder`` is populated for BUSY (and TIMEOUT when the holder is known);
    ``error`` is populated for ERROR.
    """

    status: AcquireStatus
    holder: Optional[EditorLockHolder] = None
    error: Optional[str] = None

    @classmethod
    def acquired(cls) -> "AcquireResult":
        return cls(AcquireStatus.ACQUIRED)

    @classmethod
    def busy(cls, holder: EditorLockHolder) -> "AcquireResult":
        return cls(AcquireStatus.BUSY, holder=holder)

    @classmethod
    def failed(cls, error: str) -> "AcquireResult":
        return cls(AcquireStatus.ERROR, error=error)

    @classmethod
    def timed_out(cls, holder: Optional[EditorLockHolder] = None) -> "AcquireResult":
        return cls(AcquireStatus.TIMEOUT, holder=holder)

    @property
    def is_acquired(self) -> bool:
        return self.status is AcquireStatus.ACQUIRED

    @property
    def is_busy(self) -> bool:
        return self.status is AcquireStatus.BUSY


@dataclass(frozen=True)
class SignalInfo:
    """State of a presence-based signal flag.

    A flag whose payload cannot be read is still active; the metadata fields
    are simply left empty.
    """

    active: bool
    timestamp: Optional[str] = None
    reason: Optional[str] = None
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "reason": self.reason, "pid": self.pid}


@dataclass(frozen=True)
class SpawnResult:
    """Outcome of one interactive editor run."""

    exit_code: int
    duration_ms: int
    timed_out: bool = False


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    is_empty: bool
    is_timeout: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class SessionDocument:
    """One session document inside a project directory.

    Attributes:
        name: File name (``latest.md`` or ``YYYY-MM-DD.md``)
        path: Absolute path of the document
        modified_at: Last modification time (epoch seconds)
        is_latest: True for the mutable ``latest`` document
        session_count: Number of session blocks in the document
    """

    name: str
    path: Path
    modified_at: float
    is_latest: bool
    session_count: int


@dataclass(frozen=True)
class ProjectHistory:
    name: str
    path: Path
    documents: Tuple[SessionDocument, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.documents, tuple):
            object.__setattr__(self, "documents", tuple(self.documents))

    @property
    def last_modified(self) -> float:
        return max((doc.modified_at for doc in self.documents), default=0.0)

    @property
    def session_count(self) -> int:
        return sum(doc.session_count for doc in self.documents)
