"""Tests for the YAML configuration loader."""

import pytest
import yaml

from voice2action.config import DEFAULTS, VoiceCommandConfig


@pytest.fixture
def config_file(tmp_path):
    def write(content):
        path = tmp_path / "voice2action.yaml"
        path.write_text(content if isinstance(content, str) else yaml.safe_dump(content))
        return path
    return write


@pytest.mark.unit
class TestVoiceCommandConfig:

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = VoiceCommandConfig()

        assert config.config_file is None
        assert config.get("parsing.timeout_seconds") == 15.0
        assert config.get("transcription.pool_size") == 5

    def test_file_in_working_directory_is_picked_up(self, tmp_path, monkeypatch, config_file):
        config_file({"parsing": {"max_retries": 4}})
        monkeypatch.chdir(tmp_path)

        assert VoiceCommandConfig().get("parsing.max_retries") == 4

    def test_file_values_merge_over_defaults(self, config_file):
        path = config_file({"transcription": {"pool_size": 2}, "openai": {"chat_model": "gpt-4o"}})
        config = VoiceCommandConfig(str(path))

        assert config.get("transcription.pool_size") == 2
        assert config.get("transcription.max_retries") == 2
        assert config.get("openai.chat_model") == "gpt-4o"
        assert config.get("openai.transcription_model") == "whisper-1"
        assert DEFAULTS["transcription"]["pool_size"] == 5

    def test_empty_file_gives_defaults(self, config_file):
        config = VoiceCommandConfig(str(config_file("")))
        assert config.get("context.cache_ttl_seconds") == 300
        assert config.get("transcription.stream_vad.enabled") is True
        assert config.get("transcription.stream_vad.silence_seconds") == 1.5

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            VoiceCommandConfig(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, config_file):
        with pytest.raises(ValueError):
            VoiceCommandConfig(str(config_file("parsing: [unclosed")))

    def test_non_mapping(self, config_file):
        with pytest.raises(ValueError):
            VoiceCommandConfig(str(config_file("- just\n- a list\n")))

    def test_log_path_is_relative_to_config_file(self, tmp_path, config_file):
        config = VoiceCommandConfig(str(config_file({"logging": {"file_path": "logs/app.log"}})))
        assert config.get("logging.file_path") == str(tmp_path / "logs" / "app.log")

    def test_absolute_log_path_is_kept(self, tmp_path, config_file):
        absolute = str(tmp_path / "elsewhere.log")
        config = VoiceCommandConfig(str(config_file({"logging": {"file_path": absolute}})))
        assert config.get("logging.file_path") == absolute

    def test_get_missing_key_returns_default(self, config_file):
        config = VoiceCommandConfig(str(config_file({})))
        assert config.get("parsing.nope", "fallback") == "fallback"
        assert config.get("parsing.timeout_seconds.deeper") is None

    def test_set_creates_intermediate_sections(self, config_file):
        config = VoiceCommandConfig(str(config_file({})))
        config.set("executor.endpoint.url", "http://localhost")
        assert config.get("executor.endpoint.url") == "http://localhost"


@pytest.mark.unit
class TestApiKey:

    def test_key_from_file(self, config_file, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = VoiceCommandConfig(str(config_file({"openai": {"api_key": "sk-file"}})))
        assert config.get_openai_api_key() == "sk-file"

    def test_key_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = VoiceCommandConfig(str(config_file({})))
        assert config.get_openai_api_key() == "sk-env"

    def test_missing_key(self, config_file, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = VoiceCommandConfig(str(config_file({})))
        with pytest.raises(ValueError):
            config.get_openai_api_key()
