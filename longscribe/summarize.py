"""Transcript summarization with an OpenAI chat model."""

import logging
import re
from pathlib import Path
from typing import Optional

import openai
from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant designed to summarize long transcripts "
    "accurately and concisely."
)
DEFAULT_SUMMARY_PROMPT = "Please provide a concise summary of the following transcript:"

FOCUSED_SYSTEM_PROMPT = (
    "You are a helpful analysis assistant. Analyze the provided transcript "
    "based on the user's specific questions."
)
DEFAULT_FOCUS_PROMPT = (
    "Analyze the following transcript. What are the main themes, decisions "
    "and recommendations discussed? What risks or open questions should the "
    "reader watch out for based on the transcript's content? Provide a "
    "concise summary based on these points."
)

TRANSCRIPT_SUFFIX = "_transcript"
FOCUSED_SUMMARY_SUFFIX = "_focused_summary"


class Summarizer:
    """Summarize text with a single chat completion."""

    def __init__(
        self,
        client: OpenAI,
        model: str = "gpt-4o-mini",
        max_tokens: int = 2048,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    def summarize(self, text: str, prompt: Optional[str] = None) -> Optional[str]:
        """Summarize ``text``.

        Args:
            text: Transcript to summarize
            prompt: Instruction placed before the transcript (defaults to a
                plain summary request)

        Returns:
            The summary, or None if there was nothing to summarize or the
            request failed
        """
        if not text or not text.strip():
            logger.info("No text provided for summarization.")
            return None

        prompt = prompt or DEFAULT_SUMMARY_PROMPT
        logger.info("Summarizing the transcript (%d characters)...", len(text))
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {
                        "role": "user",
                        "content": f"{prompt}\n\n--BEGIN TRANSCRIPT--\n{text}\n--END TRANSCRIPT--",
                    },
                ],
            )
        except openai.OpenAIError as e:
            logger.error("An error occurred during summarization: %s", e)
            return None

        if not response.choices:
            logger.warning("No choices returned in the summary response.")
            return None
        summary = (response.choices[0].message.content or "").strip()
        if not summary:
            logger.warning("Summary response contained no text.")
            return None
        return summary


def summarize_transcript_file(
    transcript_path: str,
    summarizer: Summarizer,
    output_dir: Optional[str] = None,
    prompt: Optional[str] = None,
) -> Optional[Path]:
    """Write a focused summary of an existing transcript file.

    The summary is saved as ``<base>_focused_summary.txt`` where ``<base>`` is
    the transcript's name without its ``_transcript`` suffix.

    Args:
        transcript_path: Path to the transcript text file
        summarizer: Summarizer to use (its system prompt applies)
        output_dir: Directory for the summary (defaults to the transcript's)
        prompt: Custom analysis prompt (defaults to DEFAULT_FOCUS_PROMPT)

    Returns:
        Path to the written summary, or None if summarization or writing failed

    Raises:
        FileNotFoundError: If the transcript does not exist
    """
    path = Path(transcript_path).resolve()
    if not path.is_file():
        raise FileNotFoundError(f"Transcript file not found at {path}")

    text = path.read_text(encoding="utf-8")
    logger.info("Read %d characters from %s", len(text), path)

    base = re.sub(f"{TRANSCRIPT_SUFFIX}$", "", path.stem)
    target_dir = Path(output_dir) if output_dir else path.parent
    summary_path = target_dir / f"{base}{FOCUSED_SUMMARY_SUFFIX}.txt"

    summary = summarizer.summarize(text, prompt or DEFAULT_FOCUS_PROMPT)
    if summary is None:
        logger.warning("Focused summarization failed or produced no output. Summary file not saved.")
        return None

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        summary_path.write_text(summary, encoding="utf-8")
    except OSError as e:
        logger.error("Error saving focused summary to %s: %s", summary_path, e)
        return None
    logger.info("Focused summary saved to: %s", summary_path)
    return summary_path


def build_summarizer(
    api_key: Optional[str],
    model: str = "gpt-4o-mini",
    max_tokens: int = 2048,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> Optional[Summarizer]:
    """Create a Summarizer, or return None when no API key is available."""
    if not api_key:
        logger.info("OPENAI_API_KEY not set; summaries are disabled.")
        return None
    return Summarizer(OpenAI(api_key=api_key), model=model, max_tokens=max_tokens, system_prompt=system_prompt)
