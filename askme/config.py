"""User settings (``<root>/settings.json``) and editor presets."""
from __future__ import annotations

import json
import shutil
from contextlib import contextmanager, suppress
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from askme.paths import ensure_home, settings_path
from askme.state.locks import file_lock
from askme.state.logger import log_event
from askme.state.persistence import atomic_write_json

DEFAULT_TIMEOUT_MINUTES = 4
MIN_TIMEOUT_MINUTES = 1
MAX_TIMEOUT_MINUTES = 60


@dataclass(frozen=True)
class EditorPreset:
    name: str
    command: str
    goto_format: str
    description: str


EDITOR_PRESETS: Tuple[EditorPreset, ...] = (
    EditorPreset("vscode", "code -r -w", "-g {file}:{line}", "Visual Studio Code (default)"),
    EditorPreset("cursor", "cursor -r -w", "-g {file}:{line}", "Cursor AI Editor"),
    EditorPreset("code-insiders", "code-insiders -r -w", "-g {file}:{line}", "VS Code Insiders"),
    EditorPreset("zed", "zed -r -w", "{file}:{line}", "Zed Editor"),
    EditorPreset("sublime", "subl -w", "{file}:{line}", "Sublime Text"),
    EditorPreset("vim", "vim", "+{line} {file}", "Vim (terminal)"),
    EditorPreset("nvim", "nvim", "+{line} {file}", "Neovim (terminal)"),
    EditorPreset("nano", "nano", "+{line} {file}", "GNU nano (terminal)"),
    EditorPreset("emacs", "emacs", "+{line} {file}", "GNU Emacs"),
)

DEFAULT_PRESET = EDITOR_PRESETS[0]


def get_preset(name: str) -> Optional[EditorPreset]:
    lowered = (name or "").strip().lower()
    for preset in EDITOR_PRESETS:
        if preset.name == lowered:
            return preset
    return None


def preset_names() -> List[str]:
    return [preset.name for preset in EDITOR_PRESETS]


# First-run preference order: AI editors, then GUI editors, then terminal ones.
DETECTION_ORDER = ("cursor", "vscode", "zed", "sublime", "nvim", "vim")


def detect_best_editor(which: Callable[[str], Optional[str]] = shutil.which) -> Optional[EditorPreset]:
    """First preset in ``DETECTION_ORDER`` whose executable is on PATH."""
    for name in DETECTION_ORDER:
        preset = get_preset(name)
        if preset is not None and which(preset.command.split()[0]):
            return preset
    return None


def _non_negative(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return default
    return float(value)


@dataclass
class LockSettings:
    """Polling and staleness knobs for both lock kinds (seconds).

    ``editor_error_retry`` is the wait after an ERROR outcome while waiting
    for the editor; 0 retries immediately. The wait stays bounded by
    ``editor_lock_timeout``.
    """

    file_lock_timeout: float = 30.0
    file_lock_retry: float = 0.1
    stale_after: float = 60.0
    editor_lock_timeout: float = 300.0
    editor_lock_poll: float = 0.5
    editor_error_retry: float = 0.1

    @classmethod
    def from_dict(cls, d: Any) -> "LockSettings":
        if not isinstance(d, dict):
            return cls()
        defaults = cls()
        return cls(**{f.name: _non_negative(d.get(f.name), getattr(defaults, f.name)) for f in fields(cls)})


@dataclass
class Settings:
    editor_command: str = DEFAULT_PRESET.command
    editor_preset: Optional[str] = DEFAULT_PRESET.name
    goto_format: str = DEFAULT_PRESET.goto_format
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    locks: LockSettings = field(default_factory=LockSettings)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Settings":
        """Build settings from JSON, replacing each invalid field with its default."""
        defaults = cls()
        command = d.get("editor_command")
        preset = d.get("editor_preset", defaults.editor_preset)
        goto = d.get("goto_format")
        timeout = d.get("timeout_minutes")
        if isinstance(preset, str) and get_preset(preset) is None:
            preset = defaults.editor_preset
        if isinstance(timeout, bool) or not isinstance(timeout, int) or not (
            MIN_TIMEOUT_MINUTES <= timeout <= MAX_TIMEOUT_MINUTES
        ):
            timeout = defaults.timeout_minutes
        return cls(
            editor_command=command if isinstance(command, str) and command.strip() else defaults.editor_command,
            editor_preset=preset.lower() if isinstance(preset, str) else None,
            goto_format=goto if isinstance(goto, str) and goto.strip() else defaults.goto_format,
            timeout_minutes=timeout,
            locks=LockSettings.from_dict(d.get("locks")),
        )

    def to_dict(self) -> Dict[str, Any]: return asdict(self)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0

    def current_editor(self) -> Tuple[str, str]:
        """Effective ``(command, goto_format)``: preset, then custom command, then default."""
        if self.editor_preset:
            preset = get_preset(self.editor_preset)
            if preset is not None:
                return preset.command, preset.goto_format
        if self.editor_command:
            return self.editor_command, self.goto_format or DEFAULT_PRESET.goto_format
        return DEFAULT_PRESET.command, DEFAULT_PRESET.goto_format

    def use_preset(self, name: str) -> bool:
        preset = get_preset(name)
        if preset is None:
            return False
        self.editor_preset = preset.name
        self.editor_command = preset.command
        self.goto_format = preset.goto_format
        return True

    def set_custom_editor(self, command: str, goto_format: Optional[str] = None) -> None:
        self.editor_preset = None
        self.editor_command = command
        if goto_format:
            self.goto_format = goto_format


def load_settings() -> Settings:
    ensure_home()
    path = settings_path()
    if not path.exists():
        # First run: pick whichever supported editor is installed
        initial = Settings()
        detected = detect_best_editor()
        if detected is not None:
            initial.use_preset(detected.name)
        atomic_write_json(path, initial.to_dict())
        log_event(event="settings_created", component="config", editor_preset=initial.editor_preset)
        return initial
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        # Corrupt file: back it up once and start fresh
        backup = path.with_suffix(".bad.json")
        with suppress(OSError): path.replace(backup)
        fresh = Settings()
        atomic_write_json(path, fresh.to_dict())
        return fresh
    if not isinstance(data, dict):
        return Settings()
    return Settings.from_dict(data)


def save_settings(settings: Settings) -> None:
    atomic_write_json(settings_path(), settings.to_dict())


@contextmanager
def edit_settings() -> Iterator[Settings]:
    # Acquire lock, reload (so we operate on latest), yield, then save atomically
    path = settings_path()
    ensure_home()
    with file_lock(path):
        settings = load_settings()
        yield settings
        save_settings(settings)


__all__ = [
    "DEFAULT_TIMEOUT_MINUTES",
    "DETECTION_ORDER",
    "EDITOR_PRESETS",
    "EditorPreset",
    "LockSettings",
    "Settings",
    "detect_best_editor",
    "edit_settings",
    "get_preset",
    "load_settings",
    "preset_names",
    "save_settings",
]
