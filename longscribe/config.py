"""Runtime settings for longscribe.

Settings are resolved once at process entry with ``Settings.from_env()`` and
passed explicitly to the pipeline; nothing in the package reads the
environment on its own.
"""

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from longscribe.errors import ConfigurationError

# Default configuration
DEFAULT_CHUNK_LENGTH = 600  # seconds (10 minutes)
DEFAULT_MAX_CHUNK_MB = 25  # upload limit of the transcription service
DEFAULT_MAX_CHUNK_BYTES = (DEFAULT_MAX_CHUNK_MB - 1) * 1024 * 1024
DEFAULT_SHRINK_FACTOR = 0.9
DEFAULT_MIN_CHUNK_SECONDS = 1.0
DEFAULT_TRANSCRIPTION_TIMEOUT = 30 * 60  # seconds
DEFAULT_POLL_INTERVAL = 3.0  # seconds
DEFAULT_INPUT_DIR = "input"
DEFAULT_OUTPUT_DIR = "output"
TEMP_DIR_PREFIX = "audio_chunks_"

BACKEND_ASSEMBLYAI = "assemblyai"
BACKEND_WHISPER = "whisper"
BACKENDS = (BACKEND_ASSEMBLYAI, BACKEND_WHISPER)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Everything the pipeline needs to know about its environment."""

    assemblyai_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    transcription_backend: str = BACKEND_ASSEMBLYAI
    chunk_length_seconds: float = DEFAULT_CHUNK_LENGTH
    max_chunk_bytes: int = DEFAULT_MAX_CHUNK_BYTES
    shrink_factor: float = DEFAULT_SHRINK_FACTOR
    min_chunk_seconds: float = DEFAULT_MIN_CHUNK_SECONDS
    reset_chunk_length_per_chunk: bool = False
    slice_retries: int = 0
    chunk_format: Optional[str] = None
    input_dir: str = DEFAULT_INPUT_DIR
    output_dir: str = DEFAULT_OUTPUT_DIR
    temp_root: Optional[str] = None
    transcription_timeout: float = DEFAULT_TRANSCRIPTION_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: float = 60.0
    assemblyai_base_url: str = "https://api.assemblyai.com"
    whisper_model: str = "whisper-1"
    summary_model: str = "gpt-4o-mini"
    summary_max_tokens: int = 2048
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    job_retention_hours: float = 2.0

    def __post_init__(self):
        if self.transcription_backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown transcription backend '{self.transcription_backend}'. "
                f"Expected one of: {', '.join(BACKENDS)}"
            )
        if self.chunk_length_seconds <= self.min_chunk_seconds:
            raise ConfigurationError(
                f"Chunk length must be greater than {self.min_chunk_seconds} seconds"
            )
        if self.max_chunk_bytes <= 0:
            raise ConfigurationError("Maximum chunk size must be positive")
        if not 0 < self.shrink_factor < 1:
            raise ConfigurationError("Shrink factor must be between 0 and 1")
        if self.slice_retries < 0:
            raise ConfigurationError("Slice retries cannot be negative")
        if self.transcription_timeout <= 0 or self.poll_interval <= 0:
            raise ConfigurationError("Polling interval and timeout must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            A validated Settings instance

        Raises:
            ConfigurationError: If a variable holds an unusable value
        """
        env = os.environ if environ is None else environ

        max_chunk_mb = _number(env, "LONGSCRIBE_MAX_CHUNK_MB", float, None)
        max_chunk_bytes = (
            int((max_chunk_mb - 1) * 1024 * 1024)
            if max_chunk_mb is not None
            else DEFAULT_MAX_CHUNK_BYTES
        )

        return cls(
            assemblyai_api_key=env.get("ASSEMBLYAI_API_KEY") or None,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            transcription_backend=env.get("LONGSCRIBE_BACKEND", BACKEND_ASSEMBLYAI).lower(),
            chunk_length_seconds=_number(
                env, "LONGSCRIBE_CHUNK_LENGTH", float, DEFAULT_CHUNK_LENGTH
            ),
            max_chunk_bytes=max_chunk_bytes,
            reset_chunk_length_per_chunk=(
                env.get("LONGSCRIBE_RESET_CHUNK_LENGTH", "false").lower() in _TRUE_VALUES
            ),
            slice_retries=_number(env, "LONGSCRIBE_SLICE_RETRIES", int, 0),
            chunk_format=env.get("LONGSCRIBE_CHUNK_FORMAT") or None,
            input_dir=env.get("LONGSCRIBE_INPUT_DIR", DEFAULT_INPUT_DIR),
            output_dir=env.get("LONGSCRIBE_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
            temp_root=env.get("LONGSCRIBE_TEMP_DIR") or None,
            transcription_timeout=_number(
                env,
                "LONGSCRIBE_TRANSCRIPTION_TIMEOUT",
                float,
                DEFAULT_TRANSCRIPTION_TIMEOUT,
            ),
            poll_interval=_number(
                env, "LONGSCRIBE_POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL
            ),
            assemblyai_base_url=env.get(
                "ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com"
            ).rstrip("/"),
            whisper_model=env.get("LONGSCRIBE_WHISPER_MODEL", "whisper-1"),
            summary_model=env.get("LONGSCRIBE_SUMMARY_MODEL", "gpt-4o-mini"),
            ffmpeg_binary=env.get("FFMPEG_BINARY", "ffmpeg"),
            ffprobe_binary=env.get("FFPROBE_BINARY", "ffprobe"),
            job_retention_hours=_number(
                env, "LONGSCRIBE_JOB_RETENTION_HOURS", float, 2.0
            ),
        )

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the given fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _number(env: Mapping[str, str], name: str, kind, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from None
