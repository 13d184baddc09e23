"""Structured JSONL telemetry for ask-me invocations.

Every lock decision worth debugging later (stale reclaims, timeouts, busy
editor, archival) lands here as one compact JSON object per line. The log is
configured from the environment on every write, so tests and wrappers can
redirect it without touching module state:

    ASKME_LOG_PATH         file to append to (default <root>/askme.log)
    ASKME_LOG_LEVEL        debug | info | warn | error (default info)
    ASKME_LOG_MAX_BYTES    rotate when the file reaches this size (0 disables)
    ASKME_LOG_MAX_BACKUPS  rotated generations to keep (askme.log.1 ...)
"""
from __future__ import annotations

import json
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, MutableMapping, NamedTuple, Optional

from askme.paths import askme_home

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}

LOG_FILENAME = "askme.log"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_BACKUPS = 3


class LogSettings(NamedTuple):
    path: Path
    min_level: int
    max_bytes: int
    max_backups: int


def _level_name(value: Optional[str]) -> str:
    lowered = (value or "").lower()
    if lowered == "warning":
        return "warn"
    return lowered if lowered in LEVELS else "info"


def _env_int(name: str, default: int, minimum: int) -> int:
    try:
        return max(int(os.environ[name]), minimum)
    except (KeyError, ValueError):
        return default


def resolve_log_path() -> Path:
    """Return the configured log path."""
    configured = os.getenv("ASKME_LOG_PATH")
    return Path(configured).expanduser() if configured else askme_home() / LOG_FILENAME


def current_settings() -> LogSettings:
    return LogSettings(
        path=resolve_log_path(),
        min_level=LEVELS[_level_name(os.getenv("ASKME_LOG_LEVEL"))],
        max_bytes=_env_int("ASKME_LOG_MAX_BYTES", DEFAULT_MAX_BYTES, 0),
        max_backups=_env_int("ASKME_LOG_MAX_BACKUPS", DEFAULT_MAX_BACKUPS, 1),
    )


def _rotate(settings: LogSettings) -> None:
    """Shift askme.log -> askme.log.1 -> ... once the size limit is hit."""
    if not settings.max_bytes:
        return
    try:
        if settings.path.stat().st_size < settings.max_bytes:
            return
    except FileNotFoundError:
        return

    def generation(n: int) -> Path:
        return settings.path.with_name(f"{settings.path.name}.{n}")

    generation(settings.max_backups).unlink(missing_ok=True)
    for n in range(settings.max_backups - 1, 0, -1):
        if generation(n).exists():
            generation(n).replace(generation(n + 1))
    settings.path.replace(generation(1))


def _entry(event: str, component: str, level: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "level": level,
        "component": component,
        "event": event,
        "pid": os.getpid(),
    }
    for key, value in fields.items():
        if value is None:
            continue
        if key == "latency_ms":
            try:
                value = round(float(value), 3)
            except (TypeError, ValueError):
                continue
        elif isinstance(value, Path):
            value = str(value)
        entry[key] = value
    return entry


def log_event(
    *,
    event: str,
    component: str,
    level: str = "info",
    **fields: Any,
) -> Dict[str, Any] | None:
    """Append one telemetry entry; None-valued fields are omitted.

    Returns the entry that was written, or None when it was filtered out or
    the log could not be written. Telemetry never fails the caller.
    """
    settings = current_settings()
    level = _level_name(level)
    if LEVELS[level] < settings.min_level:
        return None

    entry = _entry(event, component, level, fields)
    try:
        settings.path.parent.mkdir(parents=True, exist_ok=True)
        _rotate(settings)
        with settings.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, separators=(",", ":"), default=str) + "\n")
    except OSError:
        return None
    return entry


@contextmanager
def event_timer(
    *,
    event: str,
    component: str,
    level: str = "info",
    **base_fields: Any,
) -> Iterator[Callable[[MutableMapping[str, Any] | None], None]]:
    """Log ``event`` when the block exits, with ``latency_ms``.

    The yielded callable merges extra fields into the entry. If the block
    raises, the entry is logged at error level with the exception text and
    the exception propagates.
    """
    started = time.perf_counter()
    fields: Dict[str, Any] = dict(base_fields)

    def finalize(extra: MutableMapping[str, Any] | None = None) -> None:
        fields.update(extra or {})

    def emit(emit_level: str, **more: Any) -> None:
        fields.update(more)
        fields["latency_ms"] = (time.perf_counter() - started) * 1000
        log_event(event=event, component=component, level=emit_level, **fields)

    try:
        yield finalize
    except Exception as exc:
        emit("error", error=str(exc))
        raise
    emit(level)


__all__ = [
    "LogSettings",
    "current_settings",
    "event_timer",
    "log_event",
    "resolve_log_path",
]
