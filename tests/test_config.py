"""Tests for configuration loading and the security helpers."""

import pytest

from storyreel.core.config import Config
from storyreel.core.exceptions import ConfigurationError, SecurityError
from storyreel.core.security import (
    guess_audio_content_type,
    redact_api_key,
    sanitize_filename,
    sanitize_prompt,
    validate_audio_upload,
)


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


# =============================================================================
# Configuration
# =============================================================================


def test_defaults():
    config = Config()

    assert config.services.get("video").endpoint_id == "wan-2-2-t2v-720"
    assert config.services.get("video").poll_interval == 5.0
    assert config.services.get("video").max_poll_attempts is None
    assert config.services.get("image").max_poll_attempts == 60
    assert config.storyboard.allowed_durations == [5, 8]


def test_load_interpolates_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("RUNPOD_API_KEY", "rpa_fromenv")
    monkeypatch.delenv("MEDIA_API_URL", raising=False)
    path = write(tmp_path, """
services:
  api_key: ${RUNPOD_API_KEY}
  video:
    poll_interval: 1.5
media:
  base_url: ${MEDIA_API_URL:-http://muxer.local:4000}
""")

    config = Config.load(path)

    assert config.services.api_key == "rpa_fromenv"
    assert config.media.base_url == "http://muxer.local:4000"
    video = config.services.get("video")
    assert video.poll_interval == 1.5
    # Partial overrides keep the remaining defaults
    assert video.endpoint_id == "wan-2-2-t2v-720"
    assert config.services.get("tts").endpoint_id == "lew07dpd05v8gd"


def test_api_keys_fall_back_to_environment(monkeypatch):
    monkeypatch.setenv("RUNPOD_API_KEY", "rpa_env")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-envkey123456")
    monkeypatch.setenv("MEDIA_API_URL", "https://abc.ngrok.app")

    config = Config.from_dict({})

    assert config.services.api_key == "rpa_env"
    assert config.llm.api_key == "sk-envkey123456"
    assert config.media.base_url == "https://abc.ngrok.app"


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        Config.load(tmp_path / "nope.yaml")


def test_invalid_yaml_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        Config.load(write(tmp_path, "services: [unclosed"))


@pytest.mark.parametrize(
    "data",
    [
        {"video": {"size": "4096*2160"}},
        {"storyboard": {"allowed_durations": []}},
        {"storyboard": {"min_scenes": 0}},
        {"services": {"video": {"poll_interval": -1}}},
        {"services": {"video": {"max_poll_attempts": 0}}},
        {"services": {"video": {"endpoint_id": ""}}},
        {"services": {"video": {"unknown_option": 1}}},
        {"llm": {"unknown_option": 1}},
    ],
)
def test_invalid_values_raise(data):
    with pytest.raises(ConfigurationError):
        Config.from_dict(data)


def test_to_dict_omits_api_keys():
    config = Config.from_dict({"services": {"api_key": "rpa_secret"}, "llm": {"api_key": "sk-secret"}})
    data = config.to_dict()

    assert "api_key" not in data["services"]
    assert "api_key" not in data["llm"]
    assert data["services"]["endpoints"]["video"]["endpoint_id"] == "wan-2-2-t2v-720"


# =============================================================================
# Security Helpers
# =============================================================================


def test_redact_api_key():
    text = "Authorization: Bearer rpa_ABC123 failed; key sk-proj-abcdefghijkl"
    redacted = redact_api_key(text)

    assert "rpa_ABC123" not in redacted
    assert "sk-proj-abcdefghijkl" not in redacted


def test_sanitize_prompt_strips_markers():
    assert sanitize_prompt("<|im_start|>A rider\x00 at dawn") == "A rider at dawn"
    assert len(sanitize_prompt("x" * 5000)) == 4000


def test_sanitize_filename():
    assert "/" not in sanitize_filename("../../etc/passwd")


def test_validate_audio_upload():
    validate_audio_upload(1024, "audio/mpeg")

    with pytest.raises(SecurityError):
        validate_audio_upload(1024, "image/png")
    with pytest.raises(SecurityError):
        validate_audio_upload(11 * 1024 * 1024, "audio/mpeg", max_size_mb=10)


def test_guess_audio_content_type():
    assert guess_audio_content_type("voice.MP3") == "audio/mpeg"
    assert guess_audio_content_type("voice.txt") is None
