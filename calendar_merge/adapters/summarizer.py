"""Summarizer adapters for merged events.

Implements SummarizerProtocol with a deterministic mock, an OpenAI-backed
client and a caching wrapper.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Final

import yaml
from openai import APIError, OpenAI
from openai import RateLimitError as OpenAIRateLimitError

from calendar_merge.config.logging_config import get_logger
from calendar_merge.config.settings import Settings
from calendar_merge.domain.exceptions import (
    LLMAPIError,
    RepositoryError,
    SummarizationError,
)
from calendar_merge.domain.merge_constants import (
    SUMMARY_CACHE_KEY_PREFIX,
    SUMMARY_MAX_CHARS,
)
from calendar_merge.domain.models import Event, Participant
from calendar_merge.domain.protocols import SummarizerProtocol, SummaryCacheProtocol

logger = get_logger(__name__)

DEFAULT_PROMPT_PATH: Final[Path] = Path("config/prompts/summary.yaml")
_TIME_FORMAT: Final[str] = "%Y-%m-%d %H:%M UTC"


@dataclass(frozen=True)
class PromptFileData:
    """Loaded prompt payload with metadata."""

    content: str
    version: str
    path: Path


def load_prompt_from_file(file_path: str | Path) -> PromptFileData:
    """Load a ``version`` + ``system`` prompt from YAML.

    Relative paths are resolved against the working directory first, then the
    repository root.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the YAML prompt file has invalid structure
    """
    raw_path = Path(file_path).expanduser()
    path = raw_path if raw_path.is_absolute() else (Path.cwd() / raw_path).resolve()

    if not path.exists():
        repo_root = Path(__file__).resolve().parents[2]
        alt_path = (repo_root / raw_path).resolve()
        if not alt_path.exists():
            raise FileNotFoundError(f"Prompt file not found: {file_path}")
        path = alt_path

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError(f"Prompt YAML must be a mapping: {path}")

    version = parsed.get("version")
    if not isinstance(version, str):
        raise ValueError(f"Prompt YAML missing 'version' string: {path}")

    system_prompt = parsed.get("system")
    if not isinstance(system_prompt, str):
        raise ValueError(f"Prompt YAML missing 'system' string: {path}")

    return PromptFileData(content=system_prompt, version=version, path=path)


def _display_name(participant: Participant | None) -> str:
    if participant is None:
        return "Unknown"
    return participant.name or participant.email or participant.id


def build_summary_prompt(events: Sequence[Event]) -> str:
    """Describe each merged event for the model."""
    details = []
    for event in events:
        invitees = ", ".join(_display_name(invitee) for invitee in event.invitees)
        details.append(
            f"- Title: {event.title}\n"
            f"  Description: {event.description or 'N/A'}\n"
            f"  Creator: {_display_name(event.creator)}\n"
            f"  Time: {event.start_time.strftime(_TIME_FORMAT)} to "
            f"{event.end_time.strftime(_TIME_FORMAT)}\n"
            f"  Status: {event.status.value}\n"
            f"  Invitees: {invitees or 'None'}"
        )

    return (
        f"Summarize these {len(events)} overlapping events that have been merged "
        f"into a single meeting (max {SUMMARY_MAX_CHARS} chars):\n"
        + "\n\n".join(details)
    )


def summary_cache_key(events: Sequence[Event]) -> str:
    """Key independent of event order: ``event-summary:<sorted ids>``."""
    return f"{SUMMARY_CACHE_KEY_PREFIX}:" + "-".join(sorted(event.id for event in events))


class MockSummarizer:
    """Deterministic summarizer used when no model is configured."""

    def summarize(self, events: Sequence[Event]) -> str:
        titles = " + ".join(event.title for event in events)
        return f"Merged {len(events)} overlapping events: {titles}."


class OpenAISummarizer:
    """OpenAI chat-completions summarizer."""

    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        timeout: int = 30,
        max_retries: int = 2,
        prompt_file: str | Path = DEFAULT_PROMPT_PATH,
        client: OpenAI | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: OpenAI API key
            model: Model name
            temperature: Sampling temperature
            timeout: Request timeout in seconds
            max_retries: Retries after the first failed call
            prompt_file: YAML file with the system prompt
            client: Pre-built OpenAI client (tests)
            sleep: Backoff sleep function (tests)
        """
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature
        self.max_retries = max_retries
        self._sleep = sleep

        prompt = load_prompt_from_file(prompt_file)
        self.system_prompt = prompt.content
        self.prompt_version = prompt.version

    def _complete(self, prompt: str) -> str:
        start_time = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIRateLimitError as e:
            raise LLMAPIError(f"Rate limit exceeded: {e}") from e
        except APIError as e:
            raise LLMAPIError(f"OpenAI API error: {e}") from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content if response.choices else None
        logger.info(
            "llm_summary_call_completed",
            model=self.model,
            latency_ms=latency_ms,
            prompt_version=self.prompt_version,
        )
        return (content or "").strip()

    def summarize(self, events: Sequence[Event]) -> str:
        """Summarize with retry on API errors.

        Raises:
            SummarizationError: Empty response or retries exhausted
        """
        prompt = build_summary_prompt(events)
        logger.debug("llm_summary_prompt", prompt=prompt)

        for attempt in range(self.max_retries + 1):
            try:
                summary = self._complete(prompt)
            except LLMAPIError as e:
                if attempt >= self.max_retries:
                    raise SummarizationError(
                        f"Failed after {self.max_retries + 1} attempts: {e}"
                    ) from e
                delay = 2 * (attempt + 1)
                logger.warning(
                    "llm_summary_retry",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_seconds=delay,
                    error=str(e),
                )
                self._sleep(delay)
                continue

            if not summary:
                raise SummarizationError("Model returned an empty summary")
            return summary

        raise SummarizationError("Summarizer made no attempt")


class CachingSummarizer:
    """Caches another summarizer's output by merged event ids.

    Cache failures are logged and never block summarization.
    """

    def __init__(
        self,
        inner: SummarizerProtocol,
        cache: SummaryCacheProtocol,
        ttl_seconds: int,
    ) -> None:
        self._inner = inner
        self._cache = cache
        self._max_age = timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None

    def summarize(self, events: Sequence[Event]) -> str:
        cache_key = summary_cache_key(events)

        try:
            cached = self._cache.get_cached_summary(cache_key, max_age=self._max_age)
        except RepositoryError as e:
            logger.warning("summary_cache_read_failed", cache_key=cache_key, error=str(e))
            cached = None

        if cached:
            logger.info("summary_cache_hit", cache_key=cache_key)
            return cached

        summary = self._inner.summarize(events)

        try:
            self._cache.save_cached_summary(cache_key, summary)
        except RepositoryError as e:
            logger.warning("summary_cache_write_failed", cache_key=cache_key, error=str(e))

        return summary


def create_summarizer(
    settings: Settings, cache: SummaryCacheProtocol | None = None
) -> SummarizerProtocol:
    """Build the summarizer described by settings.

    Falls back to the mock when OpenAI is disabled or no API key is set.
    """
    summarizer: SummarizerProtocol
    if settings.openai_enabled and settings.openai_api_key is not None:
        summarizer = OpenAISummarizer(
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
        logger.info("summarizer_openai_selected", model=settings.llm_model)
    else:
        if not settings.summarizer_use_mock:
            logger.warning("summarizer_api_key_missing_using_mock")
        summarizer = MockSummarizer()
        logger.info("summarizer_mock_selected")

    if cache is not None and settings.summary_cache_enabled:
        summarizer = CachingSummarizer(
            summarizer, cache, ttl_seconds=settings.summary_cache_ttl_seconds
        )

    return summarizer
