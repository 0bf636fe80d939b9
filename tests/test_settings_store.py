import json

from client.famy.store.settings_store import SettingsStore


def test_settings_store_roundtrip(tmp_path):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    assert store.get().api_host == ""
    assert store.get().upload_recordings is True

    store.update(api_host=" https://example.com ", user_id="u1", session_id="s9", upload_recordings="no")
    data = json.loads(path.read_text())
    assert data["api_host"] == "https://example.com"
    assert data["upload_recordings"] is False

    store2 = SettingsStore(path)
    assert store2.get().user_id == "u1"
    assert store2.get().session_id == "s9"
    assert store2.get().upload_recordings is False


def test_unknown_keys_are_ignored(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    settings = store.update(theme="dark", user_id="u2")
    assert settings.user_id == "u2"
    assert not hasattr(settings, "theme")


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json")
    store = SettingsStore(path)
    assert store.get().session_id == ""
    assert store.get().upload_recordings is True
