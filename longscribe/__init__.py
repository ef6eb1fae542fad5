"""
longscribe core module.

Transcribes arbitrarily long audio files by splitting them into chunks that
fit the transcription service's upload limit, transcribing the chunks one by
one in order and joining the results. It contains no CLI or HTTP code.

Example usage:
    from longscribe import Settings, PipelineOptions, run_pipeline

    settings = Settings.from_env()
    result = run_pipeline("meeting.mp3", settings, PipelineOptions(skip_summary=True))
    print(result.transcript_path, result.failure_count)
"""

from longscribe.chunk_store import ChunkStore, CleanupReport
from longscribe.config import (
    DEFAULT_CHUNK_LENGTH,
    DEFAULT_MAX_CHUNK_BYTES,
    DEFAULT_SHRINK_FACTOR,
    Settings,
)
from longscribe.errors import (
    ChunkPlanningError,
    ChunkSizeError,
    ConfigurationError,
    LongscribeError,
    ProbeError,
    SliceError,
    SplitError,
)
from longscribe.models import AudioSource, ChunkArtifact, ChunkSpec
from longscribe.pipeline import (
    CancellationToken,
    PipelineOptions,
    PipelineResult,
    PipelineState,
    TranscriptionPipeline,
    assemble_transcript,
    build_pipeline,
    run_pipeline,
)
from longscribe.probe import format_duration, get_audio_duration, probe_audio
from longscribe.splitter import AdaptiveSplitter, FFmpegSlicer, SplitState, split_audio
from longscribe.summarize import Summarizer, build_summarizer, summarize_transcript_file
from longscribe.transcription import (
    AssemblyAITranscriber,
    FragmentStatus,
    TranscriptFragment,
    TranscriptStatus,
    WhisperTranscriber,
    build_transcriber,
)

__all__ = [
    # Configuration
    "Settings",
    "DEFAULT_CHUNK_LENGTH",
    "DEFAULT_MAX_CHUNK_BYTES",
    "DEFAULT_SHRINK_FACTOR",
    # Data classes
    "AudioSource",
    "ChunkSpec",
    "ChunkArtifact",
    "TranscriptFragment",
    "FragmentStatus",
    "TranscriptStatus",
    "PipelineOptions",
    "PipelineResult",
    "PipelineState",
    "CleanupReport",
    # Errors
    "LongscribeError",
    "ConfigurationError",
    "ProbeError",
    "SplitError",
    "ChunkPlanningError",
    "ChunkSizeError",
    "SliceError",
    # Main entry points
    "TranscriptionPipeline",
    "CancellationToken",
    "build_pipeline",
    "run_pipeline",
    "summarize_transcript_file",
    # Lower-level building blocks
    "ChunkStore",
    "AdaptiveSplitter",
    "FFmpegSlicer",
    "SplitState",
    "split_audio",
    "AssemblyAITranscriber",
    "WhisperTranscriber",
    "build_transcriber",
    "Summarizer",
    "build_summarizer",
    "assemble_transcript",
    "probe_audio",
    "get_audio_duration",
    "format_duration",
]
