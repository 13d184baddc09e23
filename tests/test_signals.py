"""Pause and mute signal files."""

from __future__ import annotations

import json
import os
from pathlib import Path

from askme.paths import mute_signal_path
from askme.state.signals import MUTE_DEFAULT_REASON, SignalFlag, mute_signal, pause_signal


def test_mute_round_trip(askme_home: Path):
    flag = mute_signal()
    assert flag.path == mute_signal_path()
    assert not flag.is_active()

    written = flag.set()
    assert flag.is_active()
    assert written.reason == MUTE_DEFAULT_REASON

    info = flag.info()
    assert info.active
    assert info.pid == os.getpid()
    assert info.reason == MUTE_DEFAULT_REASON
    assert info.timestamp.endswith("Z")

    assert flag.clear() is True
    assert not flag.is_active()
    assert flag.clear() is False


def test_corrupt_metadata_still_counts_as_active(tmp_path: Path):
    path = tmp_path / "mute-signal"
    path.write_text("{garbage")
    flag = SignalFlag(path, name="mute", default_reason="x")

    info = flag.info()

    assert flag.is_active()
    assert info.active
    assert info.timestamp is None
    assert info.reason is None
    assert info.pid is None


def test_signal_never_expires_with_dead_writer(tmp_path: Path, dead_pid: int):
    path = tmp_path / "mute-signal"
    path.write_text(json.dumps({"timestamp": "2020-01-01T00:00:00.000Z", "reason": "old", "pid": dead_pid}))
    past = 0
    os.utime(path, (past, past))

    flag = SignalFlag(path, name="mute", default_reason="x")

    assert flag.is_active()
    assert flag.info().reason == "old"


def test_pause_signal_is_scoped_to_project(tmp_path: Path):
    one = tmp_path / "one"
    two = tmp_path / "two"
    one.mkdir()
    two.mkdir()

    pause_signal(one).set("testing")

    assert pause_signal(one).is_active()
    assert not pause_signal(two).is_active()
    assert (one / ".cursor" / ".pause-signal").exists()
    assert pause_signal(one).info().reason == "testing"


def test_set_writes_json_metadata(tmp_path: Path):
    path = tmp_path / "nested" / "flag"
    SignalFlag(path, name="custom", default_reason="because").set()

    data = json.loads(path.read_text())
    assert set(data) == {"timestamp", "reason", "pid"}
    assert data["reason"] == "because"
