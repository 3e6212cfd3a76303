from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

log = logging.getLogger("askimage.config")

# Persisted key names.
FIRST_TIME_SETUP = "first_time_setup_completed"
API_BASE_URL = "api_base_url"
API_KEY_ENCODED = "api_key_encoded"
DEFAULT_MODEL = "default_model"
SETTINGS_VERSION = "settings_version"

SETTINGS_KEYS = frozenset({FIRST_TIME_SETUP, API_BASE_URL, API_KEY_ENCODED, DEFAULT_MODEL, SETTINGS_VERSION})
# Cleared by reset_settings(); the version stamp survives.
MUTABLE_KEYS = (API_BASE_URL, API_KEY_ENCODED, DEFAULT_MODEL, FIRST_TIME_SETUP)

DEFAULT_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL_NAME = "gemini-2.5-flash"
CURRENT_SETTINGS_VERSION = "3.0"

CONFIG_PATH = Path(
    os.environ.get("ASKIMAGE_CONFIG", str(Path.home() / ".config" / "askimage" / "settings.yml"))
)


class ConfigStore:
    """Key/value settings persisted as YAML.

    Reads are served from an in-memory copy loaded on first access; every
    write goes straight to disk through an atomic replace, so callers never
    observe a half-written file. No policy lives here: values are stored as
    given and validation belongs to the caller.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or CONFIG_PATH
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            raw: object = None
            if self.path.exists():
                try:
                    raw = yaml.safe_load(self.path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    log.warning("Settings file %s is not valid YAML; ignoring it: %s", self.path, exc)
            self._data = {k: v for k, v in raw.items() if k in SETTINGS_KEYS} if isinstance(raw, dict) else {}
        return self._data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(yaml.safe_dump(self._load(), sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.path)

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in SETTINGS_KEYS:
            raise KeyError(f"Unknown setting: {key}")

    def get(self, key: str, default: Any = None) -> Any:
        self._check_key(key)
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._check_key(key)
        self._load()[key] = value
        self._save()

    def delete(self, key: str) -> None:
        self._check_key(key)
        data = self._load()
        if key in data:
            del data[key]
            self._save()

    def snapshot(self) -> dict[str, Any]:
        return dict(self._load())


def is_first_time_setup(store: ConfigStore) -> bool:
    return not store.get(FIRST_TIME_SETUP, False)


def mark_first_time_setup_completed(store: ConfigStore) -> None:
    store.set(FIRST_TIME_SETUP, True)
    store.set(SETTINGS_VERSION, CURRENT_SETTINGS_VERSION)


def get_default_model(store: ConfigStore) -> str:
    return str(store.get(DEFAULT_MODEL) or DEFAULT_MODEL_NAME)


def set_default_model(store: ConfigStore, model: str) -> bool:
    if not isinstance(model, str) or not model.strip():
        return False
    store.set(DEFAULT_MODEL, model.strip())
    log.info("Default model updated: %s", model.strip())
    return True


def reset_settings(store: ConfigStore) -> None:
    for key in MUTABLE_KEYS:
        store.delete(key)
    log.info("All settings reset")
