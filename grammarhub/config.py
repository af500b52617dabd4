"""Persisted settings management."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict

from .models import Settings

logger = logging.getLogger(__name__)

STORE_PATH = (Path.home() / ".grammarhub" / "store.json").expanduser()
SETTINGS_KEY = "grammarhub_settings"

# Field name on disk for every Settings attribute.
_RECORD_KEYS = {
    "endpoint": "endpoint",
    "storage_key": "storageKey",
    "bucket_name": "bucketName",
    "ai_api_key": "aiApiKey",
    "transcription_backend": "transcriptionBackend",
    "whisper_model": "whisperModel",
    "transcription_model": "transcriptionModel",
    "analysis_model": "analysisModel",
    "language": "language",
}


class ConfigError(RuntimeError):
    """Raised when settings cannot be saved or updated."""


def settings_to_record(settings: Settings) -> Dict[str, Any]:
    return {_RECORD_KEYS[key]: value for key, value in asdict(settings).items()}


def settings_from_record(record: Dict[str, Any]) -> Settings:
    values = {
        attr: record[key]
        for attr, key in _RECORD_KEYS.items()
        if isinstance(record.get(key), str)
    }
    return Settings(**values)


def _read_store() -> Dict[str, Any]:
    if not STORE_PATH.exists():
        return {}
    try:
        store = json.loads(STORE_PATH.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings store %s: %s", STORE_PATH, exc)
        return {}
    return store if isinstance(store, dict) else {}


def _write_store(store: Dict[str, Any]) -> None:
    tmp_name = None
    try:
        STORE_PATH.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=STORE_PATH.parent, prefix=".store-", suffix=".json")
        with os.fdopen(fd, "w") as fh:
            json.dump(store, fh, indent=2)
        os.replace(tmp_name, STORE_PATH)
    except OSError as exc:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        raise ConfigError(f"Failed to save settings: {exc}") from exc


def load_settings() -> Settings:
    """Return the stored settings, falling back to defaults when unavailable."""

    raw = _read_store().get(SETTINGS_KEY)
    if raw is None:
        return Settings()
    try:
        record = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError as exc:
        logger.warning("Stored settings are not valid JSON, using defaults: %s", exc)
        return Settings()
    if not isinstance(record, dict):
        logger.warning("Stored settings have an unexpected shape, using defaults")
        return Settings()

    settings = settings_from_record(record)
    if "aiApiKey" not in record:
        logger.info("Upgrading legacy settings record without an AI API key")
        try:
            save_settings(settings)
        except ConfigError as exc:
            logger.warning("Could not persist upgraded settings, keeping them in memory: %s", exc)
    return settings


def save_settings(settings: Settings) -> None:
    store = _read_store()
    store[SETTINGS_KEY] = json.dumps(settings_to_record(settings))
    _write_store(store)


def update_settings(**kwargs: Any) -> Settings:
    settings = load_settings()
    known = {f.name for f in fields(Settings)}
    for key, value in kwargs.items():
        if key not in known:
            raise ConfigError(f"Unknown configuration key: {key}")
        setattr(settings, key, value)
    save_settings(settings)
    return settings
