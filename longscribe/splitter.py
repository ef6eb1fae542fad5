"""Adaptive audio splitting.

Chunks must stay under a byte limit imposed by the transcription upload, but
the encoded size of a span is not predictable from its duration alone
(variable bitrate). The splitter therefore slices at the target length and,
whenever the result is too large, discards it and tries again with a 10%
shorter length at the same offset. A shrunk length carries over to the
following chunks unless ``reset_per_chunk`` is set.

Each attempt moves through a small state machine::

    ATTEMPTING -> ACCEPTED  -> ATTEMPTING (next chunk)
               -> SHRINKING -> ATTEMPTING (same offset)
                            -> ABORTED
"""

import logging
import math
import os
import subprocess
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from longscribe.chunk_store import ChunkStore
from longscribe.config import (
    DEFAULT_MAX_CHUNK_BYTES,
    DEFAULT_MIN_CHUNK_SECONDS,
    DEFAULT_SHRINK_FACTOR,
)
from longscribe.errors import ChunkPlanningError, ChunkSizeError, ProbeError, SliceError
from longscribe.models import ChunkArtifact, ChunkSpec

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024


class Slicer(Protocol):
    def __call__(self, source: str, start: float, duration: float, output_path: str) -> None:
        ...


class SplitState(Enum):
    ATTEMPTING = "attempting"
    ACCEPTED = "accepted"
    SHRINKING = "shrinking"
    ABORTED = "aborted"


class FFmpegSlicer:
    """Materialize a time range of an audio file with ffmpeg.

    With no ``output_format`` the audio stream is copied as-is, which is fast
    and keeps the source container. With ``output_format="mp3"`` the range is
    re-encoded with libmp3lame. Video streams are always dropped.
    """

    def __init__(self, ffmpeg_binary: str = "ffmpeg", output_format: Optional[str] = None):
        self.ffmpeg_binary = ffmpeg_binary
        self.output_format = output_format

    def build_command(self, source: str, start: float, duration: float, output_path: str) -> list[str]:
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-i",
            source,
            "-ss",
            str(start),
            "-t",
            str(duration),
            "-vn",
        ]
        if self.output_format == "mp3":
            cmd += ["-acodec", "libmp3lame", "-ar", "44100", "-ac", "2"]
        else:
            cmd += ["-c:a", "copy"]
        cmd.append(output_path)
        return cmd

    def __call__(self, source: str, start: float, duration: float, output_path: str) -> None:
        cmd = self.build_command(source, start, duration, output_path)
        try:
            result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise SliceError(f"Could not run {self.ffmpeg_binary}: {e}") from e

        if result.returncode != 0:
            # Clean up the partial output if ffmpeg failed
            try:
                os.unlink(output_path)
            except OSError:
                pass
            raise SliceError(
                f"ffmpeg failed to extract audio from {start:.2f}s "
                f"to {start + duration:.2f}s. "
                f"Error: {result.stderr.decode('utf-8', errors='ignore').strip()}"
            )


class AdaptiveSplitter:
    """Split an audio file into size-bounded chunks inside a ChunkStore."""

    def __init__(
        self,
        slicer: Slicer,
        store: ChunkStore,
        max_bytes: int = DEFAULT_MAX_CHUNK_BYTES,
        shrink_factor: float = DEFAULT_SHRINK_FACTOR,
        min_chunk_seconds: float = DEFAULT_MIN_CHUNK_SECONDS,
        reset_per_chunk: bool = False,
        slice_retries: int = 0,
        output_format: Optional[str] = None,
        measure: Optional[Callable[[str], float]] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.slicer = slicer
        self.store = store
        self.max_bytes = max_bytes
        self.shrink_factor = shrink_factor
        self.min_chunk_seconds = min_chunk_seconds
        self.reset_per_chunk = reset_per_chunk
        self.slice_retries = slice_retries
        self.output_format = output_format
        self.measure = measure
        self.progress_callback = progress_callback

    def _log(self, msg: str, level: int = logging.INFO) -> None:
        logger.log(level, msg)
        if self.progress_callback:
            self.progress_callback(msg)

    def split(
        self,
        path: str,
        total_duration: float,
        target_chunk_seconds: float,
        max_bytes: Optional[int] = None,
    ) -> list[ChunkArtifact]:
        """Split ``path`` into chunks that tile ``[0, total_duration)``.

        Args:
            path: Source audio file
            total_duration: Probed duration of the source in seconds
            target_chunk_seconds: Preferred chunk length in seconds
            max_bytes: Exclusive size limit per chunk (defaults to the
                splitter's own limit)

        Returns:
            Chunk artifacts with indices 0..N-1 in temporal order

        Raises:
            ChunkPlanningError: If a chunk span would not be positive
            ChunkSizeError: If the chunk length shrinks to the floor
            SliceError: If the slicer fails (after any configured retries)
        """
        max_bytes = self.max_bytes if max_bytes is None else max_bytes
        if target_chunk_seconds <= self.min_chunk_seconds:
            raise ChunkPlanningError(
                f"Target chunk length {target_chunk_seconds}s must exceed "
                f"the {self.min_chunk_seconds}s floor"
            )

        extension = (self.output_format or Path(path).suffix.lstrip(".") or "mp3").lower()
        chunks: list[ChunkArtifact] = []
        start = 0.0
        index = 0
        chunk_length = target_chunk_seconds
        state = SplitState.ATTEMPTING
        end = 0.0
        spec = None
        chunk_path = None
        size = 0

        while start < total_duration:
            if state is SplitState.ATTEMPTING:
                end = min(start + chunk_length, total_duration)
                span = end - start
                if span <= 0:
                    self._abort(f"Cannot create a positive length chunk at offset {start:.2f}s")
                    raise ChunkPlanningError(
                        f"Cannot create a positive length chunk at offset {start:.2f}s"
                    )
                spec = ChunkSpec(index=index, start=start, duration=span)
                chunk_path = self.store.allocate(index, extension)
                self._log(
                    f"Exporting chunk {index} (start: {start:.2f}s, "
                    f"duration: {span:.2f}s) to {chunk_path}..."
                )
                self._slice(path, spec, chunk_path)
                size = self._size_of(chunk_path)
                self._log(f"Chunk {index} exported. Size: {size / MEGABYTE:.2f} MB")
                state = SplitState.ACCEPTED if size < max_bytes else SplitState.SHRINKING

            elif state is SplitState.ACCEPTED:
                chunks.append(
                    ChunkArtifact(
                        spec=spec,
                        path=chunk_path,
                        byte_size=size,
                        encoded_duration=self._encoded_duration(chunk_path, spec),
                    )
                )
                start = end
                index += 1
                if self.reset_per_chunk:
                    chunk_length = target_chunk_seconds
                state = SplitState.ATTEMPTING

            elif state is SplitState.SHRINKING:
                self._log(
                    f"Chunk {index} size ({size / MEGABYTE:.2f} MB) is too large "
                    f"(limit {max_bytes / MEGABYTE:.2f} MB). Reducing chunk duration.",
                    logging.WARNING,
                )
                self._discard(chunk_path)
                chunk_length = math.floor(min(chunk_length, spec.duration) * self.shrink_factor)
                if chunk_length <= self.min_chunk_seconds:
                    self._abort("Chunk length became too small after reductions. Cannot proceed.")
                    raise ChunkSizeError(
                        f"Chunk {index} at {start:.2f}s cannot fit under "
                        f"{max_bytes} bytes with any length above "
                        f"{self.min_chunk_seconds}s"
                    )
                state = SplitState.ATTEMPTING

        return chunks

    def _abort(self, msg: str) -> None:
        logger.debug("Split state -> %s", SplitState.ABORTED.value)
        self._log(f"Error: {msg}", logging.ERROR)

    def _slice(self, source: str, spec: ChunkSpec, chunk_path: Path) -> None:
        attempts = self.slice_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.slicer(source, spec.start, spec.duration, str(chunk_path))
                return
            except SliceError as e:
                self._discard(chunk_path)
                if attempt >= attempts:
                    self._abort(f"Failed to export chunk {spec.index}: {e}")
                    raise
                self._log(
                    f"Error exporting chunk {spec.index}: {e}. "
                    f"Retrying ({attempt}/{self.slice_retries})...",
                    logging.WARNING,
                )

    def _size_of(self, chunk_path: Path) -> int:
        try:
            return chunk_path.stat().st_size
        except OSError as e:
            self._discard(chunk_path)
            self._abort(f"Error accessing chunk file {chunk_path} after export: {e}")
            raise SliceError(f"Slicer produced no file at {chunk_path}") from e

    def _discard(self, chunk_path: Path) -> None:
        try:
            chunk_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            # Stays recorded in the store so release can retry it
            logger.error("Failed to delete chunk %s: %s", chunk_path, e)
            return
        self.store.forget(chunk_path)

    def _encoded_duration(self, chunk_path: Path, spec: ChunkSpec) -> float:
        if self.measure is None:
            return spec.duration
        try:
            return self.measure(str(chunk_path))
        except ProbeError as e:
            logger.warning("Could not measure chunk %d, using planned duration: %s", spec.index, e)
            return spec.duration


def split_audio(
    filepath: str,
    total_duration: float,
    store: ChunkStore,
    chunk_length: float,
    max_bytes: int = DEFAULT_MAX_CHUNK_BYTES,
    slicer: Optional[Slicer] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> list[ChunkArtifact]:
    """Split an audio file into chunks using ffmpeg.

    Args:
        filepath: Path to the audio file
        total_duration: Duration of the audio file in seconds
        store: Open ChunkStore that receives the chunk files
        chunk_length: Target length of each chunk in seconds
        max_bytes: Exclusive size limit per chunk
        slicer: Slicing primitive (defaults to FFmpegSlicer)
        progress_callback: Optional callback function for progress messages

    Returns:
        List of chunk artifacts in temporal order
    """
    splitter = AdaptiveSplitter(
        slicer or FFmpegSlicer(),
        store,
        max_bytes=max_bytes,
        progress_callback=progress_callback,
    )
    return splitter.split(filepath, total_duration, chunk_length)
