"""Filesystem coordination for ask-me: locks, signals and session documents."""
from askme.state.editor_lock import EditorLock
from askme.state.liveness import is_process_alive
from askme.state.locks import (
    LockTimeoutError,
    MarkerLock,
    acquire_lock,
    file_lock,
    is_marker_stale,
    release_lock,
    with_file_lock,
)
from askme.state.logger import event_timer, log_event
from askme.state.models import (
    AcquireResult,
    AcquireStatus,
    EditorLockHolder,
    ProjectHistory,
    SessionDocument,
    SignalInfo,
    SpawnResult,
    ValidationResult,
)
from askme.state.repository import SessionRepository
from askme.state.signals import SignalFlag, mute_signal, pause_signal

__all__ = [
    "AcquireResult",
    "AcquireStatus",
    "EditorLock",
    "EditorLockHolder",
    "LockTimeoutError",
    "MarkerLock",
    "ProjectHistory",
    "SessionDocument",
    "SessionRepository",
    "SignalFlag",
    "SignalInfo",
    "SpawnResult",
    "ValidationResult",
    "acquire_lock",
    "event_timer",
    "file_lock",
    "is_marker_stale",
    "is_process_alive",
    "log_event",
    "mute_signal",
    "pause_signal",
    "release_lock",
    "with_file_lock",
]
