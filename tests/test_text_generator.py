"""
tests/test_text_generator.py — Text Generator Client Tests
===========================================================
Exercises GeminiTextGenerator over ``httpx.MockTransport`` plus the
prompt shaping and output clean-up helpers.  No network access.
"""

from __future__ import annotations

import json
from datetime import date

import httpx
import pytest
from conftest import run_async

from cadence.errors import ConfigurationError, ExternalServiceError
from cadence.services.text_generator import (
    GeminiTextGenerator,
    TextGenerator,
    build_content_prompt,
    build_title_prompt,
    clean_title,
    content_constraints,
    count_words,
    fit_word_limit,
    title_constraints,
)

BASE_URL = "https://generativelanguage.example/v1beta/models/"


def _ok(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler) -> GeminiTextGenerator:
    return GeminiTextGenerator(
        "test-key",
        model="gemini-pro",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
    )


class TestGeminiTextGenerator:
    def test_satisfies_protocol(self):
        assert isinstance(_client(lambda r: httpx.Response(200, json=_ok("x"))), TextGenerator)

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            GeminiTextGenerator("", model="gemini-pro", base_url=BASE_URL)

    def test_successful_call(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ok("  Sông Hương buổi sớm \n"))

        text = run_async(_client(handler).generate("prompt", content_constraints(10, 20)))
        assert text == "Sông Hương buổi sớm"

        request = seen[0]
        assert request.url.path.endswith("/models/gemini-pro:generateContent")
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        assert body["contents"][0]["parts"][0]["text"] == "prompt"
        assert body["generationConfig"] == {"temperature": 0.8, "maxOutputTokens": 100}

    def test_non_200_status(self):
        client = _client(lambda r: httpx.Response(429, json={"error": "quota"}))
        with pytest.raises(ExternalServiceError) as exc_info:
            run_async(client.generate("prompt"))
        assert exc_info.value.details == {"status": 429}

    @pytest.mark.parametrize(
        "payload",
        [{"candidates": []}, {"nothing": True}, _ok("   ")],
    )
    def test_malformed_or_empty_payload(self, payload):
        client = _client(lambda r: httpx.Response(200, json=payload))
        with pytest.raises(ExternalServiceError):
            run_async(client.generate("prompt"))

    def test_non_json_body(self):
        client = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ExternalServiceError):
            run_async(client.generate("prompt"))

    def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalServiceError):
            run_async(_client(handler).generate("prompt"))

    def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExternalServiceError):
            run_async(_client(handler).generate("prompt"))


class TestPromptShaping:
    def test_title_prompt_includes_long_date(self):
        prompt = build_title_prompt("Mùa xuân", date(2024, 1, 15), "MASTER")
        assert prompt == "MASTER\n\nDate: Monday, January 15, 2024\nUser Instructions: Mùa xuân"

    def test_title_prompt_default_master(self):
        prompt = build_title_prompt("x", date(2024, 1, 15))
        assert prompt.startswith("Generate a creative title")

    def test_content_prompt_states_limits(self):
        prompt = build_content_prompt("Viết", 50, 300)
        assert prompt.endswith("Please generate content between 50 and 300 words.")

    def test_constraints(self):
        assert title_constraints().max_output_tokens == 50
        assert content_constraints(50, 2000).max_output_tokens == 4096
        assert content_constraints(50, 100).min_words == 50


class TestCleanUp:
    def test_count_words(self):
        assert count_words("  một  hai\nba ") == 3

    def test_clean_title_strips_quotes(self):
        assert clean_title('"Ánh trăng"') == "Ánh trăng"

    def test_clean_title_caps_length(self):
        assert len(clean_title("a" * 250)) == 100

    def test_clean_title_empty(self):
        with pytest.raises(ExternalServiceError):
            clean_title('""')

    def test_fit_word_limit_short_text_untouched(self):
        assert fit_word_limit(" ba chữ thôi ", 5) == "ba chữ thôi"

    def test_fit_word_limit_cuts(self):
        text = " ".join(f"w{i}" for i in range(20))
        assert count_words(fit_word_limit(text, 7)) == 7

    def test_fit_word_limit_prefers_sentence_end(self):
        text = "one two three four five six seven eight nine. ten eleven"
        assert fit_word_limit(text, 10) == "one two three four five six seven eight nine."
