"""Pipeline controller: probe, split, transcribe, assemble, summarize, clean up.

A run moves through these states::

    PROBING -> SPLITTING -> TRANSCRIBING -> ASSEMBLING -> SUMMARIZING -> CLEANUP -> DONE

Probing and splitting failures end the run in FAILED because no transcript
is possible without chunks. Transcription never fails the run: chunks that
could not be transcribed are counted and left out of the transcript.
Cleanup of the chunk files runs whatever state the run reached.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, Optional

from longscribe.chunk_store import ChunkStore, CleanupReport
from longscribe.config import Settings
from longscribe.errors import ProbeError, SplitError
from longscribe.models import AudioSource, ChunkArtifact
from longscribe.probe import format_duration, get_audio_duration, probe_audio
from longscribe.splitter import AdaptiveSplitter, FFmpegSlicer, Slicer
from longscribe.summarize import Summarizer, build_summarizer
from longscribe.transcription import (
    Transcriber,
    TranscriptFragment,
    build_transcriber,
)

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n\n"
TRANSCRIPT_SUFFIX = "_transcript"
SUMMARY_SUFFIX = "_summary"


class PipelineState(Enum):
    PROBING = "probing"
    SPLITTING = "splitting"
    TRANSCRIBING = "transcribing"
    ASSEMBLING = "assembling"
    SUMMARIZING = "summarizing"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PipelineOptions:
    """Per-run switches.

    ``continue_on_chunk_failure`` is always honoured as true: a failed chunk
    is logged and skipped.
    """

    use_output_dir: bool = False
    skip_summary: bool = False
    keep_temp_files: bool = False
    delay_between_chunks_ms: Optional[int] = None
    continue_on_chunk_failure: bool = True
    output_dir: Optional[str] = None
    chunk_length_seconds: Optional[float] = None


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one pipeline run."""

    transcript_path: Optional[Path] = None
    summary_path: Optional[Path] = None
    failure_count: int = 0
    error: Optional[str] = None
    state: PipelineState = PipelineState.DONE
    chunk_count: int = 0
    success_count: int = 0
    cancelled: bool = False
    cleanup: Optional[CleanupReport] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CancellationToken:
    """Thread-safe flag checked by the pipeline between chunks."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _RunProgress:
    source: Optional[AudioSource] = None
    artifacts: list[ChunkArtifact] = field(default_factory=list)
    fragments: list[TranscriptFragment] = field(default_factory=list)
    transcript_path: Optional[Path] = None
    summary_path: Optional[Path] = None
    error: Optional[str] = None
    cancelled: bool = False


def assemble_transcript(fragments: Iterable[TranscriptFragment]) -> str:
    """Join successful fragment texts in the order given, each followed by a blank line."""
    return "".join(f"{fragment.text}{CHUNK_SEPARATOR}" for fragment in fragments if fragment.succeeded)


class TranscriptionPipeline:
    """Turn one long audio file into a transcript and optional summary.

    Args:
        settings: Resolved settings
        transcriber: Backend used for every chunk
        summarizer: Optional summarizer; without one no summary is written
        prober: Callable returning an AudioSource for a path (defaults to
            ffprobe)
        slicer: Slicing primitive (defaults to ffmpeg)
        measure: Callable measuring a chunk's encoded duration; defaults to
            ffprobe when the default prober is used, otherwise chunks keep
            their planned duration
        sleep: Used for the delay between chunks
        progress_callback: Optional callback function for progress messages
    """

    def __init__(
        self,
        settings: Settings,
        transcriber: Transcriber,
        summarizer: Optional[Summarizer] = None,
        prober: Optional[Callable[[str], AudioSource]] = None,
        slicer: Optional[Slicer] = None,
        measure: Optional[Callable[[str], float]] = None,
        sleep: Callable[[float], None] = time.sleep,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self.transcriber = transcriber
        self.summarizer = summarizer
        if prober is None:
            prober = partial(probe_audio, ffprobe_binary=settings.ffprobe_binary)
            if measure is None:
                measure = partial(get_audio_duration, ffprobe_binary=settings.ffprobe_binary)
        self.prober = prober
        self.measure = measure
        self.slicer = slicer or FFmpegSlicer(settings.ffmpeg_binary, settings.chunk_format)
        self._sleep = sleep
        self.progress_callback = progress_callback
        self.state: Optional[PipelineState] = None

    def _log(self, msg: str, level: int = logging.INFO) -> None:
        logger.log(level, msg)
        if self.progress_callback:
            self.progress_callback(msg)

    def _enter(self, state: PipelineState) -> None:
        self.state = state
        logger.debug("Pipeline state -> %s", state.value)

    def run(
        self,
        audio_path: str,
        options: Optional[PipelineOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Run the whole pipeline for one audio file.

        Args:
            audio_path: Path to the audio file
            options: Per-run switches
            cancel_token: Optional token checked before each chunk is submitted

        Returns:
            PipelineResult describing what was produced
        """
        options = options or PipelineOptions()
        store = ChunkStore(root=self.settings.temp_root)
        progress = _RunProgress()

        try:
            self._execute(audio_path, options, cancel_token, store, progress)
        except (ProbeError, SplitError) as e:
            self._enter(PipelineState.FAILED)
            progress.error = str(e)
            self._log(f"An error occurred during processing: {e}", logging.ERROR)
        finally:
            if self.state in (PipelineState.FAILED, PipelineState.CANCELLED):
                terminal = self.state
            else:
                terminal = PipelineState.DONE
            cleanup = self._cleanup(store, options)
            self._enter(terminal)

        fragments = progress.fragments
        success_count = sum(1 for f in fragments if f.succeeded)
        return PipelineResult(
            transcript_path=progress.transcript_path,
            summary_path=progress.summary_path,
            failure_count=len(fragments) - success_count,
            error=progress.error,
            state=self.state,
            chunk_count=len(progress.artifacts),
            success_count=success_count,
            cancelled=progress.cancelled,
            cleanup=cleanup,
        )

    def _execute(
        self,
        audio_path: str,
        options: PipelineOptions,
        cancel_token: Optional[CancellationToken],
        store: ChunkStore,
        progress: _RunProgress,
    ) -> None:
        self._enter(PipelineState.PROBING)
        source = self.prober(audio_path)
        progress.source = source
        self._log(f"Audio loaded successfully. Duration: {format_duration(source.duration)}")

        output_dir = self._output_dir(source, options)
        self._log(f"Output files will be saved to: {output_dir}")

        self._enter(PipelineState.SPLITTING)
        try:
            store.open()
        except OSError as e:
            raise SplitError(f"Could not create temporary directory: {e}") from e
        splitter = AdaptiveSplitter(
            self.slicer,
            store,
            max_bytes=self.settings.max_chunk_bytes,
            shrink_factor=self.settings.shrink_factor,
            min_chunk_seconds=self.settings.min_chunk_seconds,
            reset_per_chunk=self.settings.reset_chunk_length_per_chunk,
            slice_retries=self.settings.slice_retries,
            output_format=self.settings.chunk_format,
            measure=self.measure,
            progress_callback=self.progress_callback,
        )
        chunk_length = options.chunk_length_seconds or self.settings.chunk_length_seconds
        progress.artifacts = splitter.split(str(source.path), source.duration, chunk_length)
        if not progress.artifacts:
            raise SplitError("Audio splitting produced no chunks.")
        self._log(f"Created {len(progress.artifacts)} chunks.")

        self._enter(PipelineState.TRANSCRIBING)
        progress.cancelled = self._transcribe_all(
            progress.artifacts, progress.fragments, options, cancel_token
        )
        if progress.cancelled:
            self._enter(PipelineState.CANCELLED)
            self._log("Run cancelled. No output files were written.", logging.WARNING)
            return

        succeeded = sum(1 for f in progress.fragments if f.succeeded)
        self._log(
            f"Transcription finished ({succeeded} successful, "
            f"{len(progress.fragments) - succeeded} failed)"
        )
        if succeeded == 0:
            self._log("No chunk was transcribed. Transcript file not saved.", logging.WARNING)
            return

        self._enter(PipelineState.ASSEMBLING)
        transcript = assemble_transcript(progress.fragments)
        if not transcript.strip():
            self._log("No transcription text was generated. Transcript file not saved.", logging.WARNING)
            return
        transcript_path = output_dir / f"{source.base_name}{TRANSCRIPT_SUFFIX}.txt"
        progress.transcript_path = self._write(transcript_path, transcript, "transcript")

        if options.skip_summary:
            self._log("Skipping summarization as requested.")
            return
        if self.summarizer is None:
            self._log("No summarizer configured. Skipping summarization.")
            return

        self._enter(PipelineState.SUMMARIZING)
        summary = self.summarizer.summarize(transcript)
        if not summary:
            self._log("Summarization failed or produced no output.", logging.WARNING)
            return
        summary_path = output_dir / f"{source.base_name}{SUMMARY_SUFFIX}.txt"
        progress.summary_path = self._write(summary_path, summary, "summary")

    def _transcribe_all(
        self,
        artifacts: list[ChunkArtifact],
        fragments: list[TranscriptFragment],
        options: PipelineOptions,
        cancel_token: Optional[CancellationToken],
    ) -> bool:
        """Transcribe chunks one at a time in index order; return True if cancelled."""
        queue = deque(artifacts)
        total = len(artifacts)
        while queue:
            if cancel_token is not None and cancel_token.cancelled:
                self._log(f"Cancellation requested; {len(queue)} chunks not submitted.", logging.WARNING)
                return True

            artifact = queue.popleft()
            self._log(f"Processing chunk {artifact.index + 1}/{total} ({artifact.path.name})")
            try:
                fragment = self.transcriber.transcribe(artifact)
            except Exception as e:
                logger.exception("Transcriber raised for chunk %d", artifact.index)
                fragment = TranscriptFragment.failed(artifact.index, str(e))
            fragments.append(fragment)

            if not fragment.succeeded:
                self._log(
                    f"Transcription failed for chunk {artifact.index + 1} "
                    f"({fragment.status.value}: {fragment.reason}). Skipping.",
                    logging.WARNING,
                )

            if options.delay_between_chunks_ms and queue:
                self._sleep(options.delay_between_chunks_ms / 1000)
        return False

    def _output_dir(self, source: AudioSource, options: PipelineOptions) -> Path:
        if options.output_dir:
            target = Path(options.output_dir)
        elif options.use_output_dir:
            target = Path(self.settings.output_dir)
        else:
            return source.path.parent
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._log(
                f"Could not create output directory {target}: {e}. "
                "Saving next to the audio file instead.",
                logging.WARNING,
            )
            return source.path.parent
        return target.resolve()

    def _write(self, path: Path, text: str, label: str) -> Optional[Path]:
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            self._log(f"Error saving {label} to {path}: {e}", logging.ERROR)
            return None
        self._log(f"Full {label} saved to: {path}")
        return path

    def _cleanup(self, store: ChunkStore, options: PipelineOptions) -> Optional[CleanupReport]:
        if store.directory is None:
            return None
        if options.keep_temp_files:
            self._log(f"Skipping cleanup as requested. Temporary files remain in: {store.directory}")
            return None
        self._enter(PipelineState.CLEANUP)
        return store.release()


def build_pipeline(
    settings: Settings,
    assemblyai_api_key: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> TranscriptionPipeline:
    """Wire a pipeline with the backends selected in settings.

    Raises:
        ConfigurationError: If the transcription backend has no API key
    """
    transcriber = build_transcriber(settings, assemblyai_api_key, openai_api_key)
    summarizer = build_summarizer(
        openai_api_key or settings.openai_api_key,
        model=settings.summary_model,
        max_tokens=settings.summary_max_tokens,
    )
    return TranscriptionPipeline(
        settings,
        transcriber,
        summarizer,
        progress_callback=progress_callback,
    )


def run_pipeline(
    audio_path: str,
    settings: Settings,
    options: Optional[PipelineOptions] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> PipelineResult:
    """Transcribe (and summarize) one audio file with backends from settings."""
    pipeline = build_pipeline(settings, progress_callback=progress_callback)
    return pipeline.run(audio_path, options)
