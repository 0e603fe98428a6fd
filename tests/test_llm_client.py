"""Tests for the LLM completion client."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import chat_response, make_llm_client
from sqlpilot.core.exceptions import UpstreamError
from sqlpilot.llm.client import (
    ChatCompletionResponse,
    JSON_OBJECT,
    LLMClient,
    OutputTextResponse,
    TextCompletionResponse,
    decode_response,
    extract_json,
    first_text,
    strip_code_fences,
)

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]


class TestDecodeResponse:
    """Tests for response shape decoding."""

    def test_chat_shape(self):
        assert decode_response(chat_response("hello")) == ChatCompletionResponse(text="hello")

    def test_completion_shape(self):
        assert decode_response({"choices": [{"text": "hello"}]}) == TextCompletionResponse(text="hello")

    def test_output_text_shape(self):
        assert decode_response({"output_text": "hello"}) == OutputTextResponse(text="hello")

    def test_output_text_wins(self):
        """The top-level text is preferred over choices."""
        data = {"output_text": "top", "choices": [{"message": {"content": "chat"}}]}
        assert first_text(data) == "top"

    def test_empty_chat_content_falls_back_to_text(self):
        data = {"choices": [{"message": {"content": ""}, "text": "legacy"}]}
        assert first_text(data) == "legacy"

    @pytest.mark.parametrize("data", [
        [],
        "text",
        {},
        {"choices": []},
        {"choices": [{"message": {"content": None}}]},
    ])
    def test_unknown_shapes_fail(self, data):
        with pytest.raises(UpstreamError):
            decode_response(data)


class TestComplete:
    """Tests for LLMClient.complete."""

    def test_chat_request_payload(self):
        """Chat endpoint receives messages, budget and the JSON hint."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json=chat_response('{"sql": "SELECT 1"}'))

        client = make_llm_client(handler)
        text = client.complete(MESSAGES, max_tokens=321, response_format=JSON_OBJECT)

        assert text == '{"sql": "SELECT 1"}'
        path, payload = seen[0]
        assert path == "/v1/chat/completions"
        assert payload["messages"] == MESSAGES
        assert payload["max_tokens"] == 321
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["model"] == "test-model"

    def test_completions_endpoint_uses_prompt(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"choices": [{"text": "done"}]})

        client = make_llm_client(handler, endpoints=("completions",))
        assert client.complete(MESSAGES) == "done"
        path, payload = seen[0]
        assert path == "/v1/completions"
        assert "messages" not in payload
        assert payload["prompt"] == "system: sys\n\nuser: hi"

    def test_falls_through_endpoint_styles(self):
        """A failing style is followed by the next one within the same attempt."""
        sleeps = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/chat/completions":
                return httpx.Response(404)
            return httpx.Response(200, json={"choices": [{"text": "from completions"}]})

        client = make_llm_client(handler, endpoints=("chat", "completions"), sleep=sleeps.append)
        assert client.complete(MESSAGES) == "from completions"
        assert sleeps == []

    def test_retries_with_linear_backoff(self):
        """Two retries after the first attempt, sleeping 500 ms x attempt."""
        calls = []
        sleeps = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = make_llm_client(handler, sleep=sleeps.append)
        with pytest.raises(UpstreamError):
            client.complete(MESSAGES)
        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]

    def test_recovers_on_retry(self):
        responses = iter([httpx.Response(500), httpx.Response(200, json=chat_response("ok"))])
        client = make_llm_client(lambda request: next(responses))
        assert client.complete(MESSAGES) == "ok"

    @pytest.mark.parametrize("status", [400, 422])
    def test_drops_unsupported_response_format(self, status):
        """The JSON hint is removed once when the server rejects it."""
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            payloads.append(payload)
            if "response_format" in payload:
                return httpx.Response(status, json={"error": "response_format not supported"})
            return httpx.Response(200, json=chat_response("plain"))

        client = make_llm_client(handler)
        assert client.complete(MESSAGES, response_format=JSON_OBJECT) == "plain"
        assert len(payloads) == 2
        assert "response_format" not in payloads[1]

    def test_timeout_is_upstream_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_llm_client(handler, retries=0)
        with pytest.raises(UpstreamError):
            client.complete(MESSAGES)

    def test_non_json_body_is_upstream_error(self):
        client = make_llm_client(lambda request: httpx.Response(200, text="<html>"), retries=0)
        with pytest.raises(UpstreamError):
            client.complete(MESSAGES)

    def test_undecodable_body_is_upstream_error(self):
        """A body that is not valid UTF-8 fails like any other malformed body."""
        client = make_llm_client(lambda request: httpx.Response(200, content=b"\x80\x81 not json"), retries=0)
        with pytest.raises(UpstreamError):
            client.complete(MESSAGES)

    def test_api_key_header(self):
        headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            headers.append(request.headers.get("Authorization"))
            return httpx.Response(200, json=chat_response("ok"))

        client = make_llm_client(handler, api_key="sk-test")
        client.complete(MESSAGES)
        assert headers == ["Bearer sk-test"]

    def test_unknown_endpoint_style(self):
        with pytest.raises(ValueError):
            LLMClient("http://llm.test", "m", endpoints=("responses",))


class TestJsonHelpers:
    """Tests for code-fence stripping and JSON extraction."""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences("```\nSELECT 1\n```") == "SELECT 1"
        assert strip_code_fences("  SELECT 1  ") == "SELECT 1"

    def test_extract_json_from_fence(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_extract_json_from_prose(self):
        assert extract_json('Here you go: {"a": 1} hope it helps') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2]", "{broken"])
    def test_extract_json_failures(self, text):
        with pytest.raises(UpstreamError):
            extract_json(text)
