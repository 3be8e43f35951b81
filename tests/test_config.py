"""Tests for settings loading."""

import pytest

from synclavier_kbi1_mcp.config import DEFAULT_DEVICE_NAME, Settings, load_settings
from synclavier_kbi1_mcp.protocol.framing import FramingMode


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.toml", environ={})
    assert settings == Settings()
    assert settings.device_name == DEFAULT_DEVICE_NAME
    assert settings.liveness_timeout == 5
    assert settings.framing is FramingMode.DROP
    assert not settings.demo_animation


def test_file_values(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        'device_name = "KBI-1 (2)"\n'
        "tick_interval = 0.5\n"
        'framing = "buffer"\n'
        "demo_animation = true\n"
    )
    settings = load_settings(path, environ={})
    assert settings.device_name == "KBI-1 (2)"
    assert settings.tick_interval == 0.5
    assert settings.framing is FramingMode.BUFFER
    assert settings.demo_animation


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("liveness_timeout = 3\n")
    settings = load_settings(
        path, environ={"KBI1_LIVENESS_TIMEOUT": "8", "KBI1_DEMO_ANIMATION": "yes"}
    )
    assert settings.liveness_timeout == 8
    assert settings.demo_animation


def test_overrides_win_and_none_is_ignored(tmp_path):
    settings = load_settings(
        tmp_path / "missing.toml",
        environ={"KBI1_DEVICE_NAME": "from env"},
        device_name=None,
        demo_animation=True,
    )
    assert settings.device_name == "from env"
    assert settings.demo_animation


def test_unknown_file_key_rejected(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("baud_rate = 31250\n")
    with pytest.raises(ValueError, match="baud_rate"):
        load_settings(path, environ={})


def test_unknown_override_rejected(tmp_path):
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.toml", environ={}, channel=3)


def test_invalid_framing_rejected(tmp_path):
    with pytest.raises(ValueError, match="framing"):
        load_settings(tmp_path / "missing.toml", environ={"KBI1_FRAMING": "stream"})


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        Settings(tick_interval=0)
    with pytest.raises(ValueError):
        Settings(liveness_timeout=0)


def test_to_dict():
    assert Settings(framing=FramingMode.BUFFER).to_dict()["framing"] == "buffer"
