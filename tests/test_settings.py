from __future__ import annotations

import pytest
import yaml

from harpertv.settings import DEFAULT_ENGINE_SETTINGS, Settings


def test_defaults_without_a_file() -> None:
    settings = Settings()
    assert settings.value("volume") == 100
    assert settings.value("last_channel_index") == 0
    assert settings.value("missing", "fallback") == "fallback"
    assert settings.engine_settings() == DEFAULT_ENGINE_SETTINGS
    assert settings.engine_value("vo") == "libmpv"
    assert settings.engine_value("cache") is True


def test_missing_file_keeps_defaults(tmp_path) -> None:
    settings = Settings(tmp_path / "settings.yaml")
    assert settings.value("volume") == 100


def test_save_and_load_round_trip(tmp_path) -> None:
    path = tmp_path / "conf" / "settings.yaml"
    settings = Settings(path)
    settings.set_value("volume", 35)
    settings.set_value("theme", "dark")
    settings.set_engine_value("hwdec", "no")
    settings.set_engine_value("demuxer-max-bytes", "64MiB")
    settings.save()

    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert document["app"]["volume"] == 35
    assert document["engine"]["hwdec"] == "no"

    reloaded = Settings(path)
    assert reloaded.value("volume") == 35
    assert reloaded.value("theme") == "dark"
    assert reloaded.engine_value("hwdec") == "no"
    assert reloaded.engine_value("demuxer-max-bytes") == "64MiB"
    assert reloaded.engine_value("cache-secs") == 10


def test_partial_engine_section_is_merged_with_defaults(tmp_path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("engine:\n  hwdec: vaapi\n", encoding="utf-8")
    settings = Settings(path)
    assert settings.engine_value("hwdec") == "vaapi"
    assert settings.engine_value("user-agent") == "HarperTV/1.0"
    assert settings.value("volume") == 100


def test_invalid_file_falls_back_to_defaults(tmp_path, caplog) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("app:\n  volume: loud\n", encoding="utf-8")
    settings = Settings(path)
    assert settings.value("volume") == 100
    assert "Ignoring invalid settings" in caplog.text


def test_volume_is_clamped() -> None:
    settings = Settings()
    settings.set_value("volume", 250)
    assert settings.value("volume") == 100
    with pytest.raises(ValueError):
        settings.set_value("volume", "loud")


def test_observers_receive_changed_section() -> None:
    settings = Settings()
    sections: list = []
    token = settings.subscribe(sections.append)

    settings.set_value("volume", 20)
    settings.set_engine_value("hwdec", "no")
    settings.update_engine({})
    settings.reset_to_defaults()
    settings.unsubscribe(token)
    settings.set_value("volume", 30)

    assert sections == ["app", "engine", "app", "engine"]


def test_engine_values_must_be_scalars() -> None:
    settings = Settings()
    with pytest.raises(ValueError):
        settings.update_engine({"vf": ["crop"]})  # type: ignore[dict-item]
    assert "vf" not in settings.engine_settings()


def test_reset_restores_defaults() -> None:
    settings = Settings()
    settings.set_value("volume", 10)
    settings.set_engine_value("cache", False)
    settings.reset_to_defaults()
    assert settings.value("volume") == 100
    assert settings.engine_value("cache") is True


def test_null_app_value_falls_back_to_defaults(tmp_path, caplog) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("app:\n  volume: null\n  last_channel_index: [1]\n", encoding="utf-8")
    settings = Settings(path)
    assert settings.value("volume") == 100
    assert settings.value("last_channel_index") == 0
    assert "Ignoring invalid settings" in caplog.text


def test_set_value_rejects_non_numbers() -> None:
    settings = Settings()
    for bad in (None, [1], "loud"):
        with pytest.raises(ValueError):
            settings.set_value("volume", bad)
        with pytest.raises(ValueError):
            settings.set_value("last_channel_index", bad)
    assert settings.value("volume") == 100
