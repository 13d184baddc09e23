"""Filesystem layout for ask-me state.

Everything lives under a per-user root (``~/.ask-me`` unless ``ASKME_HOME``
points elsewhere). Project-scoped files are keyed by a token derived from the
absolute working directory.
"""
from __future__ import annotations

import os
import re
import sys
from pathlib import Path

ROOT_ENV_VAR = "ASKME_HOME"
ROOT_DIR_NAME = ".ask-me"
PROJECTS_DIR_NAME = "projects"
SETTINGS_FILENAME = "settings.json"
EDITOR_LOCK_FILENAME = "editor.lock"
MUTE_SIGNAL_FILENAME = "mute-signal"
PAUSE_MARKER_DIR = ".cursor"
PAUSE_SIGNAL_FILENAME = ".pause-signal"
DEFAULT_PROJECT_ID = "default"

_SEPARATORS = re.compile(r"[\\/]+")
_DASH_RUNS = re.compile(r"-{2,}")


def askme_home() -> Path:
    env = os.environ.get(ROOT_ENV_VAR, "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ROOT_DIR_NAME).resolve()


def ensure_home() -> Path:
    home = askme_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def case_insensitive_fs() -> bool:
    return sys.platform == "win32"


def normalize_project_id(cwd: Path | str, *, fold_case: bool | None = None) -> str:
    """Map a working directory onto a filesystem-safe project token.

    ``/home/a/b`` and ``/home/a/b/`` map to ``home-a-b``; ``C:\\Work\\x`` maps
    to ``c-work-x`` on Windows. An input that normalizes to nothing (the
    filesystem root) maps to ``default``.
    """
    absolute = os.path.abspath(os.fspath(cwd))
    if fold_case is None:
        fold_case = case_insensitive_fs()
    if fold_case:
        absolute = absolute.lower()

    token = _SEPARATORS.sub("-", absolute).replace(":", "")
    token = _DASH_RUNS.sub("-", token).strip("-")
    return token or DEFAULT_PROJECT_ID


def projects_dir() -> Path:
    return askme_home() / PROJECTS_DIR_NAME


def settings_path() -> Path:
    return askme_home() / SETTINGS_FILENAME


def editor_lock_path() -> Path:
    return askme_home() / EDITOR_LOCK_FILENAME


def mute_signal_path() -> Path:
    return askme_home() / MUTE_SIGNAL_FILENAME


def pause_signal_path(cwd: Path | str) -> Path:
    """Pause flag lives inside the project tree, not under the user root."""
    return Path(os.path.abspath(os.fspath(cwd))) / PAUSE_MARKER_DIR / PAUSE_SIGNAL_FILENAME
