import pytest
from pydantic import ValidationError

from live_coach.config import LiveCoachConfig, redact_secret


class TestLiveCoachConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LIVE_COACH_API_KEY", raising=False)
        config = LiveCoachConfig()
        assert config.token_ttl_seconds == 300
        assert config.sample_rate == 16000
        assert config.block_size == 2048
        assert config.auth_mode == "url-token"
        assert config.retry_max_attempts == 5
        assert "you know" in config.filler_words

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LIVE_COACH_API_KEY", "VALIDKEY")
        monkeypatch.setenv("LIVE_COACH_AUTH_MODE", "auth-message")
        monkeypatch.setenv("LIVE_COACH_AUDIO_ENCODING", "json-base64")
        config = LiveCoachConfig()
        assert config.resolve_api_key() == "VALIDKEY"
        assert config.auth_mode == "auth-message"
        assert config.audio_encoding == "json-base64"

    @pytest.mark.parametrize("ttl", [59, 3601])
    def test_token_ttl_bounds(self, ttl):
        with pytest.raises(ValidationError):
            LiveCoachConfig(token_ttl_seconds=ttl)

    def test_unknown_auth_mode(self):
        with pytest.raises(ValidationError):
            LiveCoachConfig(auth_mode="cookie")

    def test_api_key_from_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LIVE_COACH_API_KEY", raising=False)
        key_file = tmp_path / "assemblyai"
        key_file.write_text("FILEKEY\n")
        config = LiveCoachConfig(api_key_file=str(key_file))
        assert config.resolve_api_key() == "FILEKEY"

    def test_inline_key_wins_over_file(self, tmp_path):
        key_file = tmp_path / "assemblyai"
        key_file.write_text("FILEKEY")
        config = LiveCoachConfig(api_key="INLINE", api_key_file=str(key_file))
        assert config.resolve_api_key() == "INLINE"

    def test_missing_key_file(self, monkeypatch):
        monkeypatch.delenv("LIVE_COACH_API_KEY", raising=False)
        config = LiveCoachConfig(api_key_file="/nonexistent/key")
        assert config.resolve_api_key() == ""


class TestRedactSecret:
    def test_long_secret(self):
        assert redact_secret("0123456789abcdef") == "0123...cdef"

    def test_short_secret_fully_hidden(self):
        assert redact_secret("abc") == "***"
