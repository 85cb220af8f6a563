import json

import pytest

from highway_charging.storage import SettingsStore


def test_api_key_roundtrip(tmp_path):
    store = SettingsStore(tmp_path / "nested" / "settings.json")
    assert store.load_api_key() is None
    store.save_api_key("  secret-key  ")
    assert store.load_api_key() == "secret-key"
    assert json.loads(store.path.read_text(encoding="utf-8"))["api_key"] == "secret-key"
    store.clear_api_key()
    assert store.load_api_key() is None


def test_env_key_is_fallback(tmp_path):
    store = SettingsStore(tmp_path / "settings.json", env_api_key="env-key")
    assert store.load_api_key() == "env-key"
    store.save_api_key("file-key")
    assert store.load_api_key() == "file-key"
    store.clear_api_key()
    assert store.load_api_key() is None


def test_empty_key_rejected(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    with pytest.raises(ValueError):
        store.save_api_key("   ")


def test_theme(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    assert store.load_theme() == "dark"
    store.save_theme("light")
    assert store.load_theme() == "light"
    with pytest.raises(ValueError):
        store.save_theme("neon")


def test_unreadable_file_is_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    store = SettingsStore(path)
    assert store.load_api_key() is None
    assert store.delete("api_key") is False


def test_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("HIGHWAY_EV_SETTINGS_FILE", str(tmp_path / "s.json"))
    monkeypatch.setenv("HIGHWAY_EV_API_KEY", "from-env")
    store = SettingsStore.from_env()
    assert store.path == tmp_path / "s.json"
    assert store.load_api_key() == "from-env"
