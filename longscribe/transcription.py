"""Transcription backends.

Every backend turns one chunk file into a TranscriptFragment. Backend and
transport problems are reported through the fragment's status and never
raised, so a single bad chunk cannot stop a run.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

import openai
import requests
from openai import OpenAI

from longscribe.config import BACKEND_ASSEMBLYAI, BACKEND_WHISPER, Settings
from longscribe.errors import ConfigurationError
from longscribe.models import ChunkArtifact

logger = logging.getLogger(__name__)


class TranscriptStatus(Enum):
    """Job states reported by a polling transcription backend."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw) -> "TranscriptStatus":
        """Map a backend status string onto the enum; anything new is UNKNOWN."""
        if isinstance(raw, str):
            for status in cls:
                if status is not cls.UNKNOWN and status.value == raw.strip().lower():
                    return status
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self not in (TranscriptStatus.QUEUED, TranscriptStatus.PROCESSING)


class FragmentStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class TranscriptFragment:
    """Transcribed text for one chunk."""

    index: int
    text: str
    status: FragmentStatus
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is FragmentStatus.SUCCESS

    @classmethod
    def failed(cls, index: int, reason: str) -> "TranscriptFragment":
        return cls(index=index, text="", status=FragmentStatus.FAILED, reason=reason)


class Transcriber(Protocol):
    def transcribe(self, artifact: ChunkArtifact) -> TranscriptFragment:
        ...


class AssemblyAITranscriber:
    """Upload a chunk to AssemblyAI and wait for the transcript.

    The job is polled until it reaches a terminal state or ``timeout``
    seconds pass, whichever comes first.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.assemblyai.com",
        poll_interval: float = 3.0,
        timeout: float = 30 * 60,
        request_timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"authorization": api_key})
        self._sleep = sleep
        self._clock = clock

    def transcribe(self, artifact: ChunkArtifact) -> TranscriptFragment:
        name = artifact.path.name
        logger.info("Submitting %s to AssemblyAI...", name)
        try:
            upload_url = self._upload(artifact)
            job = self._post_json("/v2/transcript", {"audio_url": upload_url})
            payload = self._await_completion(job["id"], job)
        except _PollTimeout:
            logger.error(
                "AssemblyAI transcription of %s did not finish within %.0f seconds",
                name,
                self.timeout,
            )
            return TranscriptFragment.failed(
                artifact.index, f"timed out after {self.timeout:.0f}s"
            )
        except (requests.RequestException, OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Error during AssemblyAI transcription for %s: %s", name, e)
            return TranscriptFragment.failed(artifact.index, str(e))

        status = TranscriptStatus.parse(payload.get("status"))
        if status is TranscriptStatus.COMPLETED:
            logger.info("Transcription successful for %s", name)
            return TranscriptFragment(
                index=artifact.index,
                text=payload.get("text") or "",
                status=FragmentStatus.SUCCESS,
            )
        if status is TranscriptStatus.ERROR:
            reason = payload.get("error") or "unknown error"
            logger.error("AssemblyAI transcription error for %s: %s", name, reason)
            return TranscriptFragment.failed(artifact.index, reason)

        logger.warning(
            "AssemblyAI returned unexpected status '%s' for %s", payload.get("status"), name
        )
        return TranscriptFragment(
            index=artifact.index,
            text="",
            status=FragmentStatus.INCOMPLETE,
            reason=f"unexpected status: {payload.get('status')}",
        )

    def _upload(self, artifact: ChunkArtifact) -> str:
        with open(artifact.path, "rb") as audio_file:
            response = self.session.post(
                f"{self.base_url}/v2/upload",
                data=audio_file,
                timeout=self.request_timeout,
            )
        return self._decode(response)["upload_url"]

    def _post_json(self, path: str, body: dict) -> dict:
        response = self.session.post(
            f"{self.base_url}{path}", json=body, timeout=self.request_timeout
        )
        return self._decode(response)

    def _get_json(self, path: str) -> dict:
        response = self.session.get(f"{self.base_url}{path}", timeout=self.request_timeout)
        return self._decode(response)

    @staticmethod
    def _decode(response) -> dict:
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Malformed AssemblyAI response: expected an object, got {type(payload).__name__}")
        return payload

    def _await_completion(self, transcript_id: str, payload: dict) -> dict:
        deadline = self._clock() + self.timeout
        while not TranscriptStatus.parse(payload.get("status")).is_terminal:
            if self._clock() >= deadline:
                raise _PollTimeout()
            self._sleep(self.poll_interval)
            payload = self._get_json(f"/v2/transcript/{transcript_id}")
            logger.debug("Transcript %s status: %s", transcript_id, payload.get("status"))
        return payload


class _PollTimeout(Exception):
    pass


class WhisperTranscriber:
    """Transcribe chunks with the OpenAI transcription endpoint.

    The endpoint answers synchronously, so a returned transcript is always
    complete.
    """

    def __init__(self, openai_client: OpenAI, model: str = "whisper-1", language: Optional[str] = None):
        self.client = openai_client
        self.model = model
        self.language = language

    def transcribe(self, artifact: ChunkArtifact) -> TranscriptFragment:
        logger.info("Transcribing %s with OpenAI (%s)...", artifact.path.name, self.model)
        try:
            with open(artifact.path, "rb") as audio_file:
                kwargs = {"model": self.model, "file": audio_file}
                if self.language:
                    kwargs["language"] = self.language
                transcript = self.client.audio.transcriptions.create(**kwargs)
        except (openai.OpenAIError, OSError) as e:
            logger.error("OpenAI transcription failed for %s: %s", artifact.path.name, e)
            return TranscriptFragment.failed(artifact.index, str(e))

        return TranscriptFragment(
            index=artifact.index,
            text=transcript.text or "",
            status=FragmentStatus.SUCCESS,
        )


def build_transcriber(
    settings: Settings,
    assemblyai_api_key: Optional[str] = None,
    openai_api_key: Optional[str] = None,
) -> Transcriber:
    """Create the transcription backend selected in settings.

    Explicit keys take precedence over the keys in settings.

    Raises:
        ConfigurationError: If the selected backend has no API key
    """
    if settings.transcription_backend == BACKEND_ASSEMBLYAI:
        api_key = assemblyai_api_key or settings.assemblyai_api_key
        if not api_key:
            raise ConfigurationError(
                "ASSEMBLYAI_API_KEY is required for the assemblyai backend"
            )
        return AssemblyAITranscriber(
            api_key,
            base_url=settings.assemblyai_base_url,
            poll_interval=settings.poll_interval,
            timeout=settings.transcription_timeout,
            request_timeout=settings.request_timeout,
        )

    if settings.transcription_backend == BACKEND_WHISPER:
        api_key = openai_api_key or settings.openai_api_key
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the whisper backend")
        return WhisperTranscriber(OpenAI(api_key=api_key), model=settings.whisper_model)

    raise ConfigurationError(f"Unknown transcription backend: {settings.transcription_backend}")
