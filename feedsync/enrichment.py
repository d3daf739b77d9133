"""Text enrichment through the OpenAI chat completions API.

Rewrites product descriptions and picks the best matching category or
delivery time from a candidate list. Every operation returns an
EnrichmentResult; fallbacks are the caller's decision.
"""

import logging
from typing import Callable, Optional, Sequence

import openai

from feedsync.config import (
    DEFAULT_OPENAI_MODEL,
    DESCRIPTION_MAX_TOKENS,
    ENRICHMENT_BACKOFF,
    MATCH_MAX_TOKENS,
    REQUEST_TIMEOUT,
)
from feedsync.errors import RateLimitExceeded, UpstreamAPIError
from feedsync.logging_config import get_logger, log_sync_event
from feedsync.models import EnrichmentResult
from feedsync.shutdown import interruptible_sleep, shutdown_requested

__all__ = ["EnrichmentClient", "match_candidate"]

logger = get_logger("enrichment")


def match_candidate(answer: str, candidates: Sequence[str]) -> Optional[str]:
    """Map an LLM answer onto one of the exact candidate strings.

    Surrounding quotes, list markers and a trailing period are ignored, and
    a case-insensitive match is accepted. Returns None if nothing matches.
    """
    cleaned = answer.strip().strip("\"'`").strip()
    if cleaned.startswith("- "):
        cleaned = cleaned[2:].strip()
    cleaned = cleaned.rstrip(".").strip()
    if not cleaned:
        return None

    if cleaned in candidates:
        return cleaned
    lowered = cleaned.casefold()
    for candidate in candidates:
        if candidate.casefold() == lowered:
            return candidate
    return None


def _build_description_prompt(title: str, description: str) -> str:
    return (
        "Bitte schreibe eine deutsche Produktbeschreibung, "
        "ohne den Produkt-Titel zu wiederholen. "
        "Nutze nur diese vorhandenen Texte:\n\n"
        f"Beschreibung:\n{description}\n\n"
        f"Produktname:\n{title}\n\n"
        "Schreibe sie conversion-stark, ansprechend und positiv in deutscher Sprache."
    )


def _build_category_prompt(
    title: str, description: str, category_hint: str, candidates: Sequence[str]
) -> str:
    category_list = "\n".join(f"- {name}" for name in candidates)
    return (
        "We have a product with:\n"
        f"- Title: {title}\n"
        f"- Description: {description}\n"
        f"- Feed-suggested category: {category_hint}\n\n"
        f"We have the following existing categories:\n{category_list}\n\n"
        "Which ONE category best fits this product? "
        "Reply with the exact name from the list above and nothing else. "
        "If none fits, reply with NONE."
    )


def _build_delivery_time_prompt(delivery_time_text: str, candidates: Sequence[str]) -> str:
    dt_list = "\n".join(f"- {name}" for name in candidates)
    return (
        f"We have a product with feed delivery time: '{delivery_time_text}'.\n"
        f"We have the following existing delivery times:\n{dt_list}\n\n"
        "Which one best matches the feed delivery time? "
        "Reply with the exact name from the list above and nothing else. "
        "If none fits, reply with NONE."
    )


class EnrichmentClient:
    """Chat-completion backed enrichment with bounded rate-limit retries.

    A rate-limited request is retried once per entry in ``backoff``,
    waiting that many seconds first; other API errors fail immediately.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        client: Optional[openai.OpenAI] = None,
        backoff: Sequence[float] = ENRICHMENT_BACKOFF,
        sleep: Callable[[float], None] = interruptible_sleep,
    ):
        self.model = model
        self.backoff = tuple(backoff)
        self._api_key = api_key
        self._client = client
        self._sleep = sleep

    @property
    def client(self) -> openai.OpenAI:
        """OpenAI client (lazy initialization, SDK retries disabled)."""
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self._api_key or None,
                max_retries=0,
                timeout=REQUEST_TIMEOUT,
            )
        return self._client

    def _complete(self, prompt: str, max_tokens: int, operation: str) -> str:
        """Run one chat completion, retrying on rate limits.

        Raises:
            RateLimitExceeded: If every attempt was rate limited
            UpstreamAPIError: On any other API failure
        """
        max_attempts = len(self.backoff) + 1
        log_sync_event(
            "llm_call",
            {"operation": operation, "model": self.model, "prompt": prompt},
            level=logging.DEBUG,
            logger_name="enrichment",
        )

        for attempt in range(1, max_attempts + 1):
            try:
                resp = self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens,
                )
            except openai.RateLimitError as e:
                if attempt >= max_attempts or shutdown_requested():
                    raise RateLimitExceeded(
                        f"{operation}: still rate limited after {attempt} attempts", attempts=attempt
                    ) from e
                wait = self.backoff[attempt - 1]
                logger.warning(
                    f"{operation}: rate limited, backing off {wait:.0f}s "
                    f"(attempt {attempt}/{max_attempts})"
                )
                self._sleep(wait)
                continue
            except openai.APIStatusError as e:
                raise UpstreamAPIError(f"{operation}: API error {e.status_code}: {e}", e.status_code) from e
            except openai.APIError as e:
                raise UpstreamAPIError(f"{operation}: {e}") from e
            except openai.OpenAIError as e:
                # Client setup failures, e.g. no API key configured
                raise UpstreamAPIError(f"{operation}: OpenAI client unavailable: {e}") from e

            content = resp.choices[0].message.content if resp.choices else None
            return (content or "").strip()

        # Unreachable: the loop either returns or raises
        raise RateLimitExceeded(f"{operation}: rate limited", attempts=max_attempts)

    def _run(self, operation: str, prompt: str, max_tokens: int) -> EnrichmentResult:
        try:
            return EnrichmentResult.success(self._complete(prompt, max_tokens, operation))
        except RateLimitExceeded as e:
            logger.error(str(e))
            return EnrichmentResult.rate_limited(str(e))
        except UpstreamAPIError as e:
            logger.error(str(e))
            return EnrichmentResult.failed(str(e))

    def rewrite_description(self, title: str, description: str) -> EnrichmentResult:
        """Rewrite a product description in German without repeating the title.

        Returns a success with empty text when both inputs are empty. An
        empty answer from the API is reported as a failure.
        """
        if not title.strip() and not description.strip():
            return EnrichmentResult.success("")

        result = self._run(
            "rewrite_description",
            _build_description_prompt(title, description),
            DESCRIPTION_MAX_TOKENS,
        )
        if result.ok and not result.value:
            return EnrichmentResult.failed("rewrite_description: empty response")
        return result

    def _best_match(self, operation: str, prompt: str, candidates: Sequence[str]) -> EnrichmentResult:
        result = self._run(operation, prompt, MATCH_MAX_TOKENS)
        if not result.ok:
            return result

        matched = match_candidate(result.value, candidates)
        if matched is None:
            logger.debug(f"{operation}: answer {result.value!r} is not a known name")
            return EnrichmentResult.not_found()
        return EnrichmentResult.success(matched)

    def best_category(
        self,
        title: str,
        description: str,
        category_hint: str,
        candidates: Sequence[str],
    ) -> EnrichmentResult:
        """Pick the category path that best fits the product."""
        if not candidates:
            return EnrichmentResult.not_found()
        return self._best_match(
            "best_category",
            _build_category_prompt(title, description, category_hint, candidates),
            candidates,
        )

    def best_delivery_time(self, delivery_time_text: str, candidates: Sequence[str]) -> EnrichmentResult:
        """Pick the delivery time name that best matches the feed text."""
        if not candidates:
            return EnrichmentResult.not_found()
        return self._best_match(
            "best_delivery_time",
            _build_delivery_time_prompt(delivery_time_text, candidates),
            candidates,
        )
