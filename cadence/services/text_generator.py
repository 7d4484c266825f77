"""
cadence.services.text_generator — External Text Generator Client
=================================================================

The scheduler never talks to an AI vendor directly.  It depends on the
:class:`TextGenerator` protocol, a single ``generate(prompt, constraints)``
capability, and receives a concrete client by injection.  There is no
module-level client and no shared mutable configuration.

:class:`GeminiTextGenerator` is the production implementation (Google
``generateContent`` over ``httpx``).  Every failure (transport error,
non-2xx status, malformed payload, timeout) surfaces as
:class:`~cadence.errors.ExternalServiceError`.

Prompt shaping and output clean-up helpers live here too, so the
scheduler job stays a thin sequence of steps.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable

import httpx

from cadence.constants import (
    DEFAULT_CONTENT_MASTER_PROMPT,
    DEFAULT_TITLE_MASTER_PROMPT,
    TITLE_MAX_CHARS,
)
from cadence.errors import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GenerationConstraints:
    """Optional bounds forwarded with a prompt."""

    min_words: int | None = None
    max_words: int | None = None
    temperature: float = 0.7
    max_output_tokens: int | None = None


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(
        self, prompt: str, constraints: GenerationConstraints | None = None
    ) -> str:
        """Return generated text or raise :class:`ExternalServiceError`."""
        ...


# ---------------------------------------------------------------------------
# Prompt shaping
# ---------------------------------------------------------------------------
def build_title_prompt(prompt: str, block_date: date, master_prompt: str | None = None) -> str:
    formatted = f"{block_date:%A}, {block_date:%B} {block_date.day}, {block_date.year}"
    return (
        f"{master_prompt or DEFAULT_TITLE_MASTER_PROMPT}\n\n"
        f"Date: {formatted}\nUser Instructions: {prompt}"
    )


def build_content_prompt(
    prompt: str, word_min: int, word_max: int, master_prompt: str | None = None
) -> str:
    return (
        f"{master_prompt or DEFAULT_CONTENT_MASTER_PROMPT}\n\n"
        f"User Instructions: {prompt}\n\n"
        f"Please generate content between {word_min} and {word_max} words."
    )


def title_constraints() -> GenerationConstraints:
    return GenerationConstraints(temperature=0.7, max_output_tokens=50)


def content_constraints(word_min: int, word_max: int) -> GenerationConstraints:
    return GenerationConstraints(
        min_words=word_min,
        max_words=word_max,
        temperature=0.8,
        max_output_tokens=min(word_max * 5, 4096),
    )


# ---------------------------------------------------------------------------
# Output clean-up
# ---------------------------------------------------------------------------
def count_words(text: str) -> int:
    return len(text.split())


def clean_title(text: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Trim, drop one pair of surrounding quotes, cap the length.

    Raises
    ------
    ExternalServiceError
        If nothing usable is left.
    """
    title = _SURROUNDING_QUOTES.sub("", text.strip()).strip()[:max_chars].strip()
    if not title:
        raise ExternalServiceError("Text generator returned an empty title")
    return title


def fit_word_limit(text: str, max_words: int) -> str:
    """Cut *text* down to *max_words*, preferring a sentence end in the
    last fifth of the kept text."""
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    truncated = " ".join(words[:max_words])
    last_period = truncated.rfind(".")
    if last_period > len(truncated) * 0.8:
        truncated = truncated[: last_period + 1]
    return truncated


# ---------------------------------------------------------------------------
# Gemini implementation
# ---------------------------------------------------------------------------
class GeminiTextGenerator:
    """``TextGenerator`` backed by the Gemini ``generateContent`` endpoint.

    Parameters
    ----------
    api_key:
        Sent as the ``key`` query parameter.
    model:
        Model name, e.g. ``"gemini-pro"``.
    base_url:
        Models collection URL, without a trailing slash.
    timeout:
        Seconds for the whole request.
    transport:
        Optional ``httpx`` transport; tests inject ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Text generator API key is not configured")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/{model}:generateContent"
        self._timeout = timeout
        self._transport = transport

    def _payload(self, prompt: str, constraints: GenerationConstraints) -> dict:
        config: dict = {"temperature": constraints.temperature}
        if constraints.max_output_tokens:
            config["maxOutputTokens"] = constraints.max_output_tokens
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": config,
        }

    async def generate(
        self, prompt: str, constraints: GenerationConstraints | None = None
    ) -> str:
        constraints = constraints or GenerationConstraints()
        try:
            transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
            async with httpx.AsyncClient(timeout=self._timeout, transport=transport) as client:
                resp = await client.post(
                    self._url,
                    params={"key": self._api_key},
                    json=self._payload(prompt, constraints),
                )
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("Text generator timed out") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Text generator request failed: {exc}") from exc

        if resp.status_code != 200:
            logger.warning("Text generator returned HTTP %d", resp.status_code)
            raise ExternalServiceError(
                f"Text generator returned HTTP {resp.status_code}",
                details={"status": resp.status_code},
            )

        try:
            text = resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("Text generator returned a malformed payload") from exc

        text = str(text).strip()
        if not text:
            raise ExternalServiceError("Text generator returned empty text")
        return text
