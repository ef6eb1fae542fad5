"""Tests for Settings."""

import pytest

from longscribe import ConfigurationError, Settings
from longscribe.config import DEFAULT_MAX_CHUNK_BYTES


class TestSettingsFromEnv:
    def test_defaults_from_empty_environment(self):
        settings = Settings.from_env({})
        assert settings.transcription_backend == "assemblyai"
        assert settings.chunk_length_seconds == 600
        assert settings.max_chunk_bytes == DEFAULT_MAX_CHUNK_BYTES
        assert settings.assemblyai_api_key is None
        assert settings.openai_api_key is None
        assert settings.reset_chunk_length_per_chunk is False
        assert settings.transcription_timeout == 1800

    def test_reads_keys_and_overrides(self):
        settings = Settings.from_env(
            {
                "ASSEMBLYAI_API_KEY": "aai-key",
                "OPENAI_API_KEY": "sk-key",
                "LONGSCRIBE_BACKEND": "Whisper",
                "LONGSCRIBE_CHUNK_LENGTH": "120",
                "LONGSCRIBE_MAX_CHUNK_MB": "11",
                "LONGSCRIBE_RESET_CHUNK_LENGTH": "yes",
                "LONGSCRIBE_SLICE_RETRIES": "2",
                "ASSEMBLYAI_BASE_URL": "https://example.test/",
            }
        )
        assert settings.assemblyai_api_key == "aai-key"
        assert settings.openai_api_key == "sk-key"
        assert settings.transcription_backend == "whisper"
        assert settings.chunk_length_seconds == 120.0
        assert settings.max_chunk_bytes == 10 * 1024 * 1024
        assert settings.reset_chunk_length_per_chunk is True
        assert settings.slice_retries == 2
        assert settings.assemblyai_base_url == "https://example.test"

    def test_empty_key_is_treated_as_missing(self):
        assert Settings.from_env({"OPENAI_API_KEY": ""}).openai_api_key is None

    def test_non_numeric_value_raises(self):
        with pytest.raises(ConfigurationError, match="LONGSCRIBE_CHUNK_LENGTH"):
            Settings.from_env({"LONGSCRIBE_CHUNK_LENGTH": "ten minutes"})


class TestSettingsValidation:
    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown transcription backend"):
            Settings(transcription_backend="carrier-pigeon")

    def test_chunk_length_must_exceed_floor(self):
        with pytest.raises(ConfigurationError):
            Settings(chunk_length_seconds=1)

    def test_shrink_factor_range(self):
        with pytest.raises(ConfigurationError):
            Settings(shrink_factor=1.0)

    def test_with_overrides_ignores_none(self):
        settings = Settings().with_overrides(transcription_backend=None, chunk_length_seconds=90)
        assert settings.transcription_backend == "assemblyai"
        assert settings.chunk_length_seconds == 90

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError):
            Settings().with_overrides(transcription_backend="nope")
