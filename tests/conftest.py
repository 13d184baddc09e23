"""Shared fixtures: every test gets its own ask-me root and telemetry log."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def askme_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ASKME_HOME and the telemetry log at a throwaway directory."""
    home = tmp_path / "askme-home"
    monkeypatch.setenv("ASKME_HOME", str(home))
    monkeypatch.setenv("ASKME_LOG_PATH", str(home / "askme.log"))
    monkeypatch.delenv("ASKME_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def dead_pid() -> int:
    """Pid of a process that has already exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


@pytest.fixture
def live_foreign_pid() -> int:
    """Pid of a process that is alive and is not the test process."""
    return os.getppid()


@pytest.fixture
def subprocess_env(askme_home: Path) -> dict:
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH", "")]))
    env["PYTHONIOENCODING"] = "utf-8"
    return env


@pytest.fixture(autouse=True)
def no_installed_editors(monkeypatch: pytest.MonkeyPatch) -> None:
    """First-run settings fall back to the default preset regardless of the host PATH."""
    from askme import config

    monkeypatch.setattr(config, "detect_best_editor", lambda: None)
