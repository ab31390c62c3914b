# tests/test_config.py
import pytest

from siem.config import Settings, load_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = load_settings()
    assert settings == Settings()
    assert settings.insert_delay_seconds == 0.1
    assert settings.dedup_window_hours == 24.0


def test_yaml_file_then_environment(monkeypatch, tmp_path):
    config = tmp_path / "custom.yaml"
    config.write_text(
        "insert_delay_seconds: 0\n"
        "dedup_window_hours: 12\n"
        "log_level: DEBUG\n"
        "unknown_key: ignored\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("WATCHTOWER_CONFIG", str(config))
    monkeypatch.setenv("WATCHTOWER_DEDUP_WINDOW_HOURS", "6")

    settings = load_settings()
    assert settings.insert_delay_seconds == 0.0
    assert settings.dedup_window_hours == 6.0
    assert settings.log_level == "DEBUG"


def test_invalid_value(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WATCHTOWER_MAX_LOG_FILE_BYTES", "lots")
    with pytest.raises(ValueError):
        load_settings()


def test_config_must_be_mapping(monkeypatch, tmp_path):
    config = tmp_path / "list.yaml"
    config.write_text("- a\n- b\n", encoding="utf-8")
    monkeypatch.setenv("WATCHTOWER_CONFIG", str(config))
    with pytest.raises(ValueError):
        load_settings()
