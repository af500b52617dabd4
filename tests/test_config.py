import json

from grammarhub import config
from grammarhub.models import Settings


def _stored_record(store_path):
    store = json.loads(store_path.read_text())
    return json.loads(store[config.SETTINGS_KEY])


def test_load_default_settings_when_missing(isolated_store):
    settings = config.load_settings()
    assert isinstance(settings, Settings)
    assert settings.bucket_name == "audio-uploads"
    assert settings.ai_api_key == ""
    assert not isolated_store.exists()


def test_save_and_load_settings(isolated_store):
    settings = Settings(endpoint="https://demo.supabase.co", storage_key="anon", ai_api_key="sk-1")
    config.save_settings(settings)

    loaded = config.load_settings()
    assert loaded.endpoint == "https://demo.supabase.co"
    assert loaded.storage_key == "anon"
    assert loaded.ai_api_key == "sk-1"

    record = _stored_record(isolated_store)
    assert record["storageKey"] == "anon"
    assert record["bucketName"] == "audio-uploads"
    assert record["aiApiKey"] == "sk-1"


def test_unparseable_store_falls_back_to_defaults(isolated_store):
    isolated_store.write_text("{not json")
    assert config.load_settings() == Settings()


def test_unparseable_record_falls_back_to_defaults(isolated_store):
    isolated_store.write_text(json.dumps({config.SETTINGS_KEY: "{oops"}))
    assert config.load_settings() == Settings()


def test_legacy_record_is_upgraded_in_place(isolated_store):
    legacy = {"endpoint": "https://old.supabase.co", "storageKey": "anon", "bucketName": "lessons"}
    isolated_store.write_text(json.dumps({config.SETTINGS_KEY: json.dumps(legacy)}))

    settings = config.load_settings()
    assert settings.endpoint == "https://old.supabase.co"
    assert settings.bucket_name == "lessons"
    assert settings.ai_api_key == ""
    assert _stored_record(isolated_store)["aiApiKey"] == ""


def test_legacy_upgrade_survives_a_read_only_store(isolated_store, monkeypatch):
    legacy = {"endpoint": "https://old.supabase.co", "storageKey": "anon"}
    isolated_store.write_text(json.dumps({config.SETTINGS_KEY: json.dumps(legacy)}))

    def refuse(path, *args, **kwargs):
        raise PermissionError(13, "Read-only file system", str(path))

    monkeypatch.setattr(config.os, "replace", refuse)

    settings = config.load_settings()
    assert settings.endpoint == "https://old.supabase.co"
    assert settings.ai_api_key == ""
    assert "aiApiKey" not in _stored_record(isolated_store)
    assert list(isolated_store.parent.glob(".store-*")) == []


def test_save_keeps_unrelated_store_keys(isolated_store):
    isolated_store.write_text(json.dumps({"theme": "dark"}))
    config.save_settings(Settings(endpoint="https://demo.supabase.co"))

    store = json.loads(isolated_store.read_text())
    assert store["theme"] == "dark"
    assert config.SETTINGS_KEY in store


def test_update_settings_validates_keys(isolated_store):
    config.update_settings(transcription_backend="remote")
    loaded = config.load_settings()
    assert loaded.transcription_backend == "remote"

    try:
        config.update_settings(unknown="value")
    except config.ConfigError:
        pass
    else:
        raise AssertionError("Expected ConfigError for invalid key")
