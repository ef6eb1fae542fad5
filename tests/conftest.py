"""Shared fakes for the test suite."""

import os
import tempfile
from pathlib import Path

import pytest

# Keep the HTTP API's job files and database out of the working tree
_API_SCRATCH = tempfile.mkdtemp(prefix="longscribe_api_tests_")
os.environ.setdefault("LONGSCRIBE_JOBS_DIR", os.path.join(_API_SCRATCH, "jobs"))
os.environ.setdefault(
    "LONGSCRIBE_DATABASE_URL", f"sqlite:///{os.path.join(_API_SCRATCH, 'jobs.db')}"
)

from longscribe import (  # noqa: E402
    AudioSource,
    FragmentStatus,
    ProbeError,
    Settings,
    SliceError,
    TranscriptFragment,
)


class FakeSlicer:
    """Writes chunk files whose size grows linearly with their duration."""

    def __init__(self, bytes_per_second=1000, fail_on_calls=()):
        self.bytes_per_second = bytes_per_second
        self.fail_on_calls = set(fail_on_calls)
        self.calls = []

    def __call__(self, source, start, duration, output_path):
        self.calls.append((start, duration))
        if len(self.calls) in self.fail_on_calls:
            # Leave a partial file behind like a crashed encoder would
            Path(output_path).write_bytes(b"partial")
            raise SliceError(f"simulated failure at {start}s")
        Path(output_path).write_bytes(b"\0" * int(self.bytes_per_second * duration))

    @property
    def durations(self):
        return [duration for _, duration in self.calls]


class ScriptedTranscriber:
    """Returns canned fragments; outcomes map chunk index to text or a status."""

    def __init__(self, outcomes=None, on_call=None):
        self.outcomes = outcomes or {}
        self.on_call = on_call
        self.calls = []

    def transcribe(self, artifact):
        assert artifact.path.exists(), "chunk file must exist while it is transcribed"
        self.calls.append(artifact.index)
        if self.on_call:
            self.on_call(artifact)
        outcome = self.outcomes.get(artifact.index, f"text {artifact.index}")
        if isinstance(outcome, FragmentStatus):
            return TranscriptFragment(
                index=artifact.index, text="", status=outcome, reason="scripted"
            )
        return TranscriptFragment(
            index=artifact.index, text=outcome, status=FragmentStatus.SUCCESS
        )


def make_prober(duration, audio_format="mp3"):
    def prober(path):
        resolved = Path(path).resolve()
        if not resolved.exists():
            raise ProbeError(f"Audio file not found: {path}")
        return AudioSource(path=resolved, duration=duration, format=audio_format)

    return prober


@pytest.fixture
def scratch_root(tmp_path):
    return tmp_path / "scratch"


@pytest.fixture
def settings(scratch_root):
    return Settings(
        temp_root=str(scratch_root),
        chunk_length_seconds=600,
        max_chunk_bytes=10**9,
        output_dir=str(scratch_root.parent / "output"),
    )


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "meeting.mp3"
    path.write_bytes(b"not really audio")
    return path
