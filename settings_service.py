from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from models import BatchSettings

SETTINGS_FILE_NAME = "settings.json"
SETTINGS_VERSION = 1
APP_DIR_NAME = "Drawbatch"


def _resolve_settings_dir() -> Path:
    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / APP_DIR_NAME
        return Path.home() / "AppData" / "Roaming" / APP_DIR_NAME

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / APP_DIR_NAME.lower()
    return Path.home() / ".config" / APP_DIR_NAME.lower()


def get_settings_path() -> Path:
    return _resolve_settings_dir() / SETTINGS_FILE_NAME


def _read_payload(settings_path: Path) -> dict[str, Any]:
    if not settings_path.is_file():
        return {}

    try:
        payload = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}

    if not isinstance(payload, dict):
        return {}

    raw_settings = payload.get("settings")
    if isinstance(raw_settings, dict):
        return raw_settings

    # Settings written by hand may skip the envelope.
    return {
        key: value
        for key, value in payload.items()
        if key not in {"version", "updated_at"}
    }


def load_app_settings(
    defaults: dict[str, Any] | None = None,
    settings_path: Path | None = None,
) -> dict[str, Any]:
    result: dict[str, Any] = dict(defaults or {})
    result.update(_read_payload(settings_path or get_settings_path()))
    return result


def load_batch_settings(
    overrides: dict[str, Any] | None = None,
    settings_path: Path | None = None,
) -> BatchSettings:
    values = load_app_settings(BatchSettings().to_mapping(), settings_path)
    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value
    return BatchSettings.from_mapping(values)


def save_app_settings(settings: dict[str, Any], settings_path: Path | None = None) -> bool:
    settings_path = settings_path or get_settings_path()
    try:
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": SETTINGS_VERSION,
            "settings": settings,
        }
        settings_path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        return True
    except OSError:
        return False


def save_batch_settings(settings: BatchSettings, settings_path: Path | None = None) -> bool:
    return save_app_settings(settings.to_mapping(), settings_path)
