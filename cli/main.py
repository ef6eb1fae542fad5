"""CLI for long audio transcription using the longscribe core module."""
import argparse
import logging
import os
import sys
from glob import glob

from dotenv import load_dotenv

from longscribe import (
    ConfigurationError,
    PipelineOptions,
    Settings,
    build_pipeline,
    build_summarizer,
    summarize_transcript_file,
)
from longscribe.config import BACKENDS
from longscribe.summarize import FOCUSED_SYSTEM_PROMPT

logger = logging.getLogger("longscribe.cli")

AUDIO_PATTERNS = (
    "*.m4a",
    "*.mp3",
    "*.mp4",
    "*.wav",
    "*.aac",
    "*.flac",
    "*.amr",
    "*.mov",
    "*.ogg",
    "*.webm",
)


def find_audio_files(input_dir):
    """Find audio files in the input directory, sorted by name."""
    audio_files = []
    for pattern in AUDIO_PATTERNS:
        audio_files.extend(glob(os.path.join(input_dir, pattern)))
    return sorted(audio_files)


def find_transcripts(output_dir):
    """Find existing transcript files, newest first."""
    transcripts = glob(os.path.join(output_dir, "*_transcript.txt"))
    return sorted(transcripts, key=os.path.getmtime, reverse=True)


def configure_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="longscribe",
        description="Transcribe long audio files in size-limited chunks and summarize them.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug logging instead of progress lines"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe audio files")
    transcribe.add_argument(
        "audio_files",
        nargs="*",
        help="Audio files to process (.mp3, .m4a, .wav, .flac, ...). "
        "Defaults to every audio file in the input directory.",
    )
    transcribe.add_argument(
        "-o", "--output", action="store_true", help="Save results to the output directory"
    )
    transcribe.add_argument(
        "-s", "--skip-summary", action="store_true", help="Skip the summarization step"
    )
    transcribe.add_argument(
        "-k", "--keep-temp", action="store_true", help="Keep temporary chunk files after processing"
    )
    transcribe.add_argument(
        "-d", "--delay", type=int, metavar="MS", help="Delay between chunks in milliseconds"
    )
    transcribe.add_argument("--backend", choices=BACKENDS, help="Transcription backend to use")
    transcribe.add_argument(
        "--chunk-length", type=float, metavar="SECONDS", help="Target chunk length in seconds"
    )
    transcribe.add_argument(
        "--focus", action="store_true", help="Also write a focused summary of each transcript"
    )
    transcribe.add_argument(
        "-c", "--custom-prompt", help="Custom analysis prompt for the focused summary"
    )

    summarize = subparsers.add_parser(
        "summarize", help="Write focused summaries of existing transcripts"
    )
    summarize.add_argument("transcripts", nargs="+", help="Transcript text files")
    summarize.add_argument(
        "-o", "--output", action="store_true", help="Save results to the output directory"
    )
    summarize.add_argument(
        "-c", "--custom-prompt", help="Custom analysis prompt to use instead of the default"
    )

    subparsers.add_parser("transcripts", help="List existing transcripts in the output directory")
    return parser


def focused_summarizer(settings):
    return build_summarizer(
        settings.openai_api_key,
        model=settings.summary_model,
        max_tokens=settings.summary_max_tokens,
        system_prompt=FOCUSED_SYSTEM_PROMPT,
    )


def cmd_transcribe(args, settings, progress):
    settings = settings.with_overrides(transcription_backend=args.backend)
    pipeline = build_pipeline(settings, progress_callback=progress)
    focus = focused_summarizer(settings) if args.focus else None
    if args.focus and focus is None:
        print("Warning: OPENAI_API_KEY is not set; focused summaries are disabled.")

    audio_files = args.audio_files or find_audio_files(settings.input_dir)
    if not audio_files:
        print("No audio files found to process.")
        return 0

    options = PipelineOptions(
        use_output_dir=args.output,
        skip_summary=args.skip_summary,
        keep_temp_files=args.keep_temp,
        delay_between_chunks_ms=args.delay,
        chunk_length_seconds=args.chunk_length,
    )

    exit_code = 0
    for audio_file in audio_files:
        print(f"Processing: {audio_file}")
        result = pipeline.run(audio_file, options)
        if not result.ok:
            print(f"Error: {result.error}")
            exit_code = 1
            continue

        print(
            f"Transcribed {result.success_count}/{result.chunk_count} chunks "
            f"({result.failure_count} failed)."
        )
        if result.transcript_path:
            print(f"Transcript: {result.transcript_path}")
        if result.summary_path:
            print(f"Summary: {result.summary_path}")
        if focus and result.transcript_path:
            focused = summarize_transcript_file(
                str(result.transcript_path), focus, prompt=args.custom_prompt
            )
            if focused:
                print(f"Focused summary: {focused}")
    print("All done!")
    return exit_code


def cmd_summarize(args, settings):
    summarizer = focused_summarizer(settings)
    if summarizer is None:
        print("Error: OPENAI_API_KEY environment variable is not set.")
        return 1

    output_dir = settings.output_dir if args.output else None
    exit_code = 0
    for transcript in args.transcripts:
        print(f"Summarizing: {transcript}")
        try:
            summary_path = summarize_transcript_file(
                transcript, summarizer, output_dir=output_dir, prompt=args.custom_prompt
            )
        except FileNotFoundError as e:
            print(f"Error: {e}")
            exit_code = 1
            continue
        if summary_path is None:
            print("Focused summarization failed. Summary file not saved.")
            exit_code = 1
        else:
            print(f"Focused summary: {summary_path}")
    return exit_code


def cmd_transcripts(args, settings):
    transcripts = find_transcripts(settings.output_dir)
    if not transcripts:
        print(f"No transcripts found in {settings.output_dir}.")
        return 0
    for transcript in transcripts:
        print(transcript)
    return 0


def main(argv=None):
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    progress = None if args.verbose else print

    try:
        settings = Settings.from_env()
        if args.command == "transcribe":
            return cmd_transcribe(args, settings, progress)
        if args.command == "summarize":
            return cmd_summarize(args, settings)
        return cmd_transcripts(args, settings)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
