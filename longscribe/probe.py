"""Duration probing with ffprobe."""

import json
import logging
import os
import subprocess
from pathlib import Path

from longscribe.errors import ProbeError
from longscribe.models import AudioSource

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "mp3"


def get_audio_duration(filepath: str, ffprobe_binary: str = "ffprobe") -> float:
    """Get duration of audio file in seconds using ffprobe.

    Args:
        filepath: Path to the audio file
        ffprobe_binary: Name or path of the ffprobe executable

    Returns:
        Duration in seconds

    Raises:
        ProbeError: If the file is unreadable, not decodable as audio,
            or ffprobe is unavailable
    """
    if not os.path.isfile(filepath):
        raise ProbeError(f"Audio file not found: {filepath}")

    try:
        result = subprocess.run(
            [
                ffprobe_binary,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "json",
                filepath,
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        raise ProbeError(
            f"Could not run {ffprobe_binary}: {e}. "
            "Ensure ffmpeg (and ffprobe) is installed and on your PATH."
        ) from e

    if result.returncode != 0:
        raise ProbeError(
            f"ffprobe failed for {filepath}. Error: {result.stderr.strip()}"
        )

    try:
        duration = float(json.loads(result.stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError) as e:
        raise ProbeError(f"ffprobe reported no duration for {filepath}") from e

    if duration <= 0:
        raise ProbeError(f"Audio file has no playable duration: {filepath}")
    return duration


def probe_audio(filepath: str, ffprobe_binary: str = "ffprobe") -> AudioSource:
    """Probe an audio file and describe it as an AudioSource."""
    path = Path(filepath).resolve()
    duration = get_audio_duration(str(path), ffprobe_binary)

    audio_format = path.suffix.lstrip(".").lower()
    if not audio_format:
        logger.warning(
            "Could not determine file extension of %s. Assuming '%s'.",
            path,
            DEFAULT_FORMAT,
        )
        audio_format = DEFAULT_FORMAT

    return AudioSource(path=path, duration=duration, format=audio_format)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to HH:MM:SS.mmm format."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    milliseconds = int((seconds % 1) * 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{milliseconds:03d}"
