"""Settings persistence and editor presets."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from askme import config
from askme.config import detect_best_editor
from askme.paths import settings_path


def _on_path(*commands: str):
    return lambda name: f"/usr/bin/{name}" if name in commands else None


def test_first_load_writes_defaults(askme_home: Path):
    settings = config.load_settings()

    assert settings.editor_preset == "vscode"
    assert settings.current_editor() == ("code -r -w", "-g {file}:{line}")
    assert settings.timeout_minutes == 4
    assert settings.timeout_seconds == 240.0
    assert settings.locks.editor_error_retry > 0
    assert json.loads(settings_path().read_text())["editor_preset"] == "vscode"


def test_first_load_picks_the_installed_editor(askme_home: Path, monkeypatch):
    monkeypatch.setattr(config, "detect_best_editor", lambda: detect_best_editor(_on_path("nvim", "nano")))

    settings = config.load_settings()

    assert settings.editor_preset == "nvim"
    assert settings.current_editor() == ("nvim", "+{line} {file}")
    assert json.loads(settings_path().read_text())["editor_preset"] == "nvim"


def test_detection_is_only_consulted_on_first_run(askme_home: Path, monkeypatch):
    config.load_settings()
    monkeypatch.setattr(config, "detect_best_editor", lambda: detect_best_editor(_on_path("vim")))

    assert config.load_settings().editor_preset == "vscode"


@pytest.mark.parametrize(
    "installed, expected",
    [
        (("code", "cursor", "vim"), "cursor"),
        (("code", "subl"), "vscode"),
        (("subl", "vim"), "sublime"),
        (("emacs",), None),
        ((), None),
    ],
)
def test_detect_best_editor_follows_preference_order(installed, expected):
    preset = detect_best_editor(_on_path(*installed))

    assert (preset.name if preset else None) == expected


def test_corrupt_settings_are_backed_up(askme_home: Path):
    askme_home.mkdir(parents=True, exist_ok=True)
    settings_path().write_text("{oops")

    settings = config.load_settings()

    assert settings == config.Settings()
    assert (askme_home / "settings.bad.json").read_text() == "{oops"
    assert json.loads(settings_path().read_text())["timeout_minutes"] == 4


@pytest.mark.parametrize("timeout", [0, 61, "5", True, None])
def test_invalid_timeout_falls_back(timeout):
    assert config.Settings.from_dict({"timeout_minutes": timeout}).timeout_minutes == 4


def test_valid_fields_are_kept():
    settings = config.Settings.from_dict(
        {
            "editor_command": "myedit --wait",
            "editor_preset": None,
            "goto_format": "{file}#{line}",
            "timeout_minutes": 10,
            "locks": {"file_lock_timeout": 5, "editor_lock_poll": "fast", "stale_after": -1},
        }
    )

    assert settings.current_editor() == ("myedit --wait", "{file}#{line}")
    assert settings.timeout_minutes == 10
    assert settings.locks.file_lock_timeout == 5.0
    assert settings.locks.editor_lock_poll == 0.5
    assert settings.locks.stale_after == 60.0


def test_unknown_preset_falls_back_to_default():
    assert config.Settings.from_dict({"editor_preset": "notepad"}).editor_preset == "vscode"


def test_preset_lookup_is_case_insensitive():
    assert config.get_preset("  NVim ").name == "nvim"
    assert config.get_preset("notepad") is None
    assert "zed" in config.preset_names()


def test_edit_settings_persists_changes(askme_home: Path):
    with config.edit_settings() as settings:
        assert settings.use_preset("vim")

    reloaded = config.load_settings()
    assert reloaded.editor_preset == "vim"
    assert reloaded.current_editor() == ("vim", "+{line} {file}")
    assert not Path(f"{settings_path()}.lock").exists()


def test_custom_editor_clears_preset(askme_home: Path):
    with config.edit_settings() as settings:
        settings.set_custom_editor("subl -n -w", "{file}:{line}")

    reloaded = config.load_settings()
    assert reloaded.editor_preset is None
    assert reloaded.current_editor() == ("subl -n -w", "{file}:{line}")


def test_use_unknown_preset_changes_nothing():
    settings = config.Settings()
    assert settings.use_preset("notepad") is False
    assert settings.editor_preset == "vscode"
