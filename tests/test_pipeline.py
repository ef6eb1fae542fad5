"""Tests for the pipeline controller with every external tool faked."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeSlicer, ScriptedTranscriber, make_prober
from longscribe import (
    CancellationToken,
    FragmentStatus,
    PipelineOptions,
    PipelineState,
    Settings,
    TranscriptionPipeline,
    build_pipeline,
)
from longscribe.summarize import Summarizer
from longscribe.transcription import AssemblyAITranscriber


def make_pipeline(settings, transcriber=None, summarizer=None, duration=1500, slicer=None, **kwargs):
    return TranscriptionPipeline(
        settings,
        transcriber or ScriptedTranscriber(),
        summarizer,
        prober=make_prober(duration),
        slicer=slicer or FakeSlicer(),
        **kwargs,
    )


def leftover_scratch(scratch_root):
    return list(scratch_root.iterdir()) if scratch_root.exists() else []


@pytest.fixture
def summarizer():
    summarizer = MagicMock(spec=Summarizer)
    summarizer.summarize.return_value = "Summary text"
    return summarizer


class TestHappyPath:
    def test_transcript_and_summary_written(self, settings, audio_file, summarizer, scratch_root):
        transcriber = ScriptedTranscriber()
        result = make_pipeline(settings, transcriber, summarizer).run(str(audio_file))

        folder = audio_file.resolve().parent
        assert result.ok
        assert result.state is PipelineState.DONE
        assert result.chunk_count == 3
        assert result.success_count == 3
        assert result.failure_count == 0
        assert transcriber.calls == [0, 1, 2]
        assert result.transcript_path == folder / "meeting_transcript.txt"
        assert result.transcript_path.read_text(encoding="utf-8") == "text 0\n\ntext 1\n\ntext 2\n\n"
        assert result.summary_path == folder / "meeting_summary.txt"
        assert result.summary_path.read_text(encoding="utf-8") == "Summary text"
        summarizer.summarize.assert_called_once_with("text 0\n\ntext 1\n\ntext 2\n\n")

    def test_chunk_files_removed_after_run(self, settings, audio_file, scratch_root):
        result = make_pipeline(settings).run(str(audio_file))

        assert result.cleanup.removed == 3
        assert result.cleanup.directory_removed
        assert leftover_scratch(scratch_root) == []

    def test_chunks_are_transcribed_in_order_while_on_disk(self, settings, audio_file):
        seen = []

        def check(artifact):
            seen.append((artifact.index, artifact.spec.start))

        make_pipeline(settings, ScriptedTranscriber(on_call=check), duration=2000).run(str(audio_file))
        assert seen == [(0, 0), (1, 600), (2, 1200), (3, 1800)]

    def test_transcript_order_ignores_chunk_latency(self, settings, audio_file):
        clock = {"now": 0.0}
        latencies = {0: 30.0, 1: 20.0, 2: 10.0}
        finished = []

        def slow_down(artifact):
            clock["now"] += latencies[artifact.index]
            finished.append((artifact.index, clock["now"]))

        transcriber = ScriptedTranscriber(on_call=slow_down)
        result = make_pipeline(settings, transcriber).run(str(audio_file))

        assert transcriber.calls == [0, 1, 2]
        # Each chunk starts only after the previous one finished
        assert finished == [(0, 30.0), (1, 50.0), (2, 60.0)]
        assert result.transcript_path.read_text(encoding="utf-8") == "text 0\n\ntext 1\n\ntext 2\n\n"

    def test_progress_messages(self, settings, audio_file):
        messages = []
        make_pipeline(settings, progress_callback=messages.append).run(str(audio_file))

        assert any("Duration: 00:25:00.000" in m for m in messages)
        assert any("Created 3 chunks." in m for m in messages)
        assert any("Processing chunk 3/3" in m for m in messages)

    def test_chunk_length_option(self, settings, audio_file):
        slicer = FakeSlicer()
        make_pipeline(settings, slicer=slicer).run(
            str(audio_file), PipelineOptions(chunk_length_seconds=500)
        )
        assert slicer.durations == [500, 500, 500]


class TestChunkFailures:
    def test_failed_chunk_is_omitted(self, settings, audio_file, summarizer):
        transcriber = ScriptedTranscriber({1: FragmentStatus.FAILED})
        result = make_pipeline(settings, transcriber, summarizer).run(str(audio_file))

        assert result.ok
        assert result.failure_count == 1
        assert result.success_count == 2
        assert transcriber.calls == [0, 1, 2]
        assert result.transcript_path.read_text(encoding="utf-8") == "text 0\n\ntext 2\n\n"

    def test_incomplete_chunk_counts_as_failure(self, settings, audio_file):
        transcriber = ScriptedTranscriber({0: FragmentStatus.INCOMPLETE})
        result = make_pipeline(settings, transcriber).run(str(audio_file))

        assert result.failure_count == 1
        assert result.transcript_path.read_text(encoding="utf-8") == "text 1\n\ntext 2\n\n"

    def test_transcriber_exception_is_contained(self, settings, audio_file):
        def explode(artifact):
            if artifact.index == 0:
                raise RuntimeError("backend bug")

        result = make_pipeline(settings, ScriptedTranscriber(on_call=explode)).run(str(audio_file))

        assert result.ok
        assert result.failure_count == 1
        assert result.transcript_path.read_text(encoding="utf-8") == "text 1\n\ntext 2\n\n"

    def test_every_chunk_failing_writes_no_transcript(self, settings, audio_file, summarizer, scratch_root):
        transcriber = ScriptedTranscriber({i: FragmentStatus.FAILED for i in range(3)})
        result = make_pipeline(settings, transcriber, summarizer).run(str(audio_file))

        assert result.ok
        assert result.state is PipelineState.DONE
        assert result.failure_count == 3
        assert result.transcript_path is None
        assert result.summary_path is None
        assert not (audio_file.parent / "meeting_transcript.txt").exists()
        summarizer.summarize.assert_not_called()
        assert leftover_scratch(scratch_root) == []


class TestFatalErrors:
    def test_missing_audio_file(self, settings, tmp_path, scratch_root):
        transcriber = ScriptedTranscriber()
        result = make_pipeline(settings, transcriber).run(str(tmp_path / "missing.mp3"))

        assert not result.ok
        assert result.state is PipelineState.FAILED
        assert "not found" in result.error
        assert result.cleanup is None
        assert transcriber.calls == []
        assert leftover_scratch(scratch_root) == []

    def test_chunk_too_large_at_floor(self, settings, audio_file, scratch_root):
        transcriber = ScriptedTranscriber()
        settings = Settings(temp_root=settings.temp_root, max_chunk_bytes=1)
        result = make_pipeline(settings, transcriber).run(str(audio_file))

        assert result.state is PipelineState.FAILED
        assert result.error
        assert transcriber.calls == []
        assert result.transcript_path is None
        assert leftover_scratch(scratch_root) == []

    def test_unusable_temp_root(self, audio_file, tmp_path):
        blocker = tmp_path / "scratch_is_a_file"
        blocker.write_text("x")
        transcriber = ScriptedTranscriber()
        result = make_pipeline(Settings(temp_root=str(blocker)), transcriber).run(str(audio_file))

        assert result.state is PipelineState.FAILED
        assert "temporary directory" in result.error
        assert result.cleanup is None
        assert transcriber.calls == []

    def test_slice_failure_cleans_up_earlier_chunks(self, settings, audio_file, scratch_root):
        transcriber = ScriptedTranscriber()
        result = make_pipeline(settings, transcriber, slicer=FakeSlicer(fail_on_calls={3})).run(
            str(audio_file)
        )

        assert result.state is PipelineState.FAILED
        assert "simulated failure" in result.error
        assert transcriber.calls == []
        assert result.cleanup.removed == 2
        assert leftover_scratch(scratch_root) == []


class TestCancellation:
    def test_cancel_between_chunks(self, settings, audio_file, summarizer, scratch_root):
        token = CancellationToken()
        transcriber = ScriptedTranscriber(on_call=lambda artifact: token.cancel())
        result = make_pipeline(settings, transcriber, summarizer).run(
            str(audio_file), cancel_token=token
        )

        assert result.cancelled
        assert result.state is PipelineState.CANCELLED
        assert transcriber.calls == [0]
        assert result.transcript_path is None
        assert not (audio_file.parent / "meeting_transcript.txt").exists()
        summarizer.summarize.assert_not_called()
        assert leftover_scratch(scratch_root) == []

    def test_cancel_before_first_chunk(self, settings, audio_file):
        token = CancellationToken()
        token.cancel()
        transcriber = ScriptedTranscriber()
        result = make_pipeline(settings, transcriber).run(str(audio_file), cancel_token=token)

        assert result.cancelled
        assert transcriber.calls == []


class TestOptions:
    def test_delay_between_chunks_not_after_last(self, settings, audio_file):
        sleep = MagicMock()
        make_pipeline(settings, sleep=sleep).run(
            str(audio_file), PipelineOptions(delay_between_chunks_ms=250)
        )
        assert sleep.call_count == 2
        sleep.assert_called_with(0.25)

    def test_no_delay_by_default(self, settings, audio_file):
        sleep = MagicMock()
        make_pipeline(settings, sleep=sleep).run(str(audio_file))
        sleep.assert_not_called()

    def test_skip_summary(self, settings, audio_file, summarizer):
        result = make_pipeline(settings, summarizer=summarizer).run(
            str(audio_file), PipelineOptions(skip_summary=True)
        )
        assert result.transcript_path is not None
        assert result.summary_path is None
        summarizer.summarize.assert_not_called()

    def test_failed_summary_keeps_transcript(self, settings, audio_file, summarizer):
        summarizer.summarize.return_value = None
        result = make_pipeline(settings, summarizer=summarizer).run(str(audio_file))

        assert result.ok
        assert result.transcript_path.exists()
        assert result.summary_path is None

    def test_keep_temp_files(self, settings, audio_file, scratch_root):
        result = make_pipeline(settings).run(str(audio_file), PipelineOptions(keep_temp_files=True))

        assert result.cleanup is None
        (directory,) = leftover_scratch(scratch_root)
        assert sorted(p.name for p in directory.iterdir()) == [
            "temp_chunk_0.mp3",
            "temp_chunk_1.mp3",
            "temp_chunk_2.mp3",
        ]

    def test_use_output_dir(self, settings, audio_file):
        result = make_pipeline(settings).run(str(audio_file), PipelineOptions(use_output_dir=True))
        assert result.transcript_path.parent.name == "output"
        assert result.transcript_path.exists()

    def test_explicit_output_dir(self, settings, audio_file, tmp_path):
        target = tmp_path / "jobs" / "42"
        result = make_pipeline(settings).run(str(audio_file), PipelineOptions(output_dir=str(target)))
        assert result.transcript_path == target.resolve() / "meeting_transcript.txt"

    def test_unusable_output_dir_falls_back_to_audio_folder(self, settings, audio_file, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file")
        result = make_pipeline(settings).run(str(audio_file), PipelineOptions(output_dir=str(blocker)))
        assert result.transcript_path == audio_file.resolve().parent / "meeting_transcript.txt"


class TestForeignFiles:
    def test_unexpected_file_in_scratch_dir_survives(self, settings, audio_file):
        strangers = []

        def drop_stranger(artifact):
            if artifact.index == 0:
                stranger = artifact.path.parent / "user_notes.txt"
                stranger.write_text("do not delete")
                strangers.append(stranger)

        result = make_pipeline(settings, ScriptedTranscriber(on_call=drop_stranger)).run(
            str(audio_file)
        )

        assert result.cleanup.removed == 3
        assert result.cleanup.skipped == 1
        assert not result.cleanup.directory_removed
        assert strangers[0].read_text() == "do not delete"


class TestBuildPipeline:
    def test_wires_backends_from_settings(self):
        pipeline = build_pipeline(Settings(assemblyai_api_key="aai", openai_api_key="sk"))
        assert isinstance(pipeline.transcriber, AssemblyAITranscriber)
        assert isinstance(pipeline.summarizer, Summarizer)

    def test_without_openai_key_there_is_no_summarizer(self):
        pipeline = build_pipeline(Settings(assemblyai_api_key="aai"))
        assert pipeline.summarizer is None

    def test_header_keys_override_settings(self):
        pipeline = build_pipeline(Settings(), assemblyai_api_key="aai", openai_api_key="sk")
        assert pipeline.transcriber.session.headers["authorization"] == "aai"
        assert pipeline.summarizer is not None
