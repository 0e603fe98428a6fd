"""OpenAI-compatible completion client for LLM interactions."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
import time
from typing import Any, Callable, Union

import httpx

from ..core.config import Settings
from ..core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

__all__ = [
    "ChatCompletionResponse",
    "LLMClient",
    "LLMResponse",
    "OutputTextResponse",
    "TextCompletionResponse",
    "decode_response",
    "extract_json",
    "first_text",
    "strip_code_fences",
]

ENDPOINT_PATHS = {
    "chat": "/v1/chat/completions",
    "completions": "/v1/completions",
}

JSON_OBJECT = {"type": "json_object"}

Message = dict[str, str]


@dataclass(frozen=True)
class ChatCompletionResponse:
    """``choices[0].message.content``"""
    text: str


@dataclass(frozen=True)
class TextCompletionResponse:
    """``choices[0].text``"""
    text: str


@dataclass(frozen=True)
class OutputTextResponse:
    """Top-level ``output_text``"""
    text: str


LLMResponse = Union[OutputTextResponse, ChatCompletionResponse, TextCompletionResponse]


def _first_choice(data: dict[str, Any]) -> dict[str, Any] | None:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return choices[0]


def _decode_output_text(data: dict[str, Any]) -> OutputTextResponse | None:
    text = data.get("output_text")
    if isinstance(text, str) and text:
        return OutputTextResponse(text=text)
    return None


def _decode_chat(data: dict[str, Any]) -> ChatCompletionResponse | None:
    choice = _first_choice(data)
    message = choice.get("message") if choice else None
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content:
            return ChatCompletionResponse(text=content)
    return None


def _decode_completion(data: dict[str, Any]) -> TextCompletionResponse | None:
    choice = _first_choice(data)
    text = choice.get("text") if choice else None
    if isinstance(text, str) and text:
        return TextCompletionResponse(text=text)
    return None


# Tried in order; the first shape that carries text wins
_DECODERS: tuple[Callable[[dict[str, Any]], LLMResponse | None], ...] = (
    _decode_output_text,
    _decode_chat,
    _decode_completion,
)


def decode_response(data: Any) -> LLMResponse:
    """Decode a provider response body into one of the known shapes.

    Raises:
        UpstreamError: If the body matches no known shape
    """
    if not isinstance(data, dict):
        logger.error(f"Unexpected response type: {type(data)}")
        raise UpstreamError("LLM response is not a dictionary")
    for decoder in _DECODERS:
        shape = decoder(data)
        if shape is not None:
            return shape
    logger.error(f"No text in LLM response: {str(data)[:200]}")
    raise UpstreamError("LLM response has no text content")


def first_text(data: Any) -> str:
    """Return the first available text of a raw response body."""
    return decode_response(data).text


def _messages_to_prompt(messages: list[Message]) -> str:
    return "\n\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages)


class LLMClient:
    """Completion client with endpoint fallback and bounded retries.

    Each attempt tries every configured endpoint style in order; after a failed
    attempt the client sleeps ``backoff_ms * attempt`` before the next one.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        api_key: str = "",
        max_tokens: int = 1024,
        endpoints: tuple[str, ...] = ("chat",),
        retries: int = 2,
        backoff_ms: int = 500,
        timeout: float = 60,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        unknown = [style for style in endpoints if style not in ENDPOINT_PATHS]
        if unknown:
            raise ValueError(f"Unknown LLM endpoint style(s): {', '.join(unknown)}")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.model = model
        self.max_tokens = max_tokens
        self.endpoints = endpoints
        self.retries = retries
        self.backoff_ms = backoff_ms
        self.timeout = timeout
        self._sleep = sleep
        self._http = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(
            settings.llm_base_url,
            settings.llm_model,
            api_key=settings.llm_api_key,
            max_tokens=settings.llm_max_tokens,
            endpoints=settings.llm_endpoints,
            retries=settings.llm_retries,
            backoff_ms=settings.llm_retry_backoff_ms,
            timeout=settings.request_timeout,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def complete(
        self,
        messages: list[Message],
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
        temperature: float = 0.0,
    ) -> str:
        """Return the first available text for ``messages``.

        Raises:
            UpstreamError: When every endpoint failed on every attempt
        """
        budget = max_tokens or self.max_tokens
        last_error: UpstreamError | None = None

        for attempt in range(self.retries + 1):
            for style in self.endpoints:
                try:
                    return self._request(style, messages, budget, response_format, temperature)
                except UpstreamError as e:
                    last_error = e
                    logger.warning(f"LLM {style} call failed (attempt {attempt + 1}): {e}")
            if attempt < self.retries:
                self._sleep(self.backoff_ms * (attempt + 1) / 1000)

        raise UpstreamError(f"LLM request failed after {self.retries + 1} attempts: {last_error}") from last_error

    def _payload(
        self,
        style: str,
        messages: list[Message],
        max_tokens: int,
        response_format: dict[str, Any] | None,
        temperature: float,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }
        if style == "chat":
            payload["messages"] = messages
        else:
            payload["prompt"] = _messages_to_prompt(messages)
        if response_format:
            payload["response_format"] = response_format
        return payload

    def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = self._http.post(path, json=payload)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise UpstreamError(f"LLM request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"LLM HTTP error: {e.response.status_code} - {e.response.text[:200]}")
            raise UpstreamError(f"LLM request failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to connect to LLM: {e}") from e

    def _request(
        self,
        style: str,
        messages: list[Message],
        max_tokens: int,
        response_format: dict[str, Any] | None,
        temperature: float,
    ) -> str:
        path = ENDPOINT_PATHS[style]
        logger.debug(f"Calling LLM {path} with model={self.model}, max_tokens={max_tokens}")

        payload = self._payload(style, messages, max_tokens, response_format, temperature)
        try:
            response = self._post(path, payload)
        except UpstreamError as e:
            status = getattr(getattr(e.__cause__, "response", None), "status_code", None)
            if not response_format or status not in (400, 422):
                raise
            # Provider does not understand the response_format hint
            logger.info(f"Retrying {path} without response_format")
            payload.pop("response_format", None)
            response = self._post(path, payload)

        try:
            data = response.json()
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError (undecodable body) are both ValueError
            logger.error(f"Failed to parse LLM response as JSON: {response.text[:200]}")
            raise UpstreamError("LLM returned invalid JSON") from e

        text = first_text(data)
        logger.debug(f"LLM response length: {len(text)} chars")
        return text


_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n(.*?)\n?```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a Markdown code fence wrapping the whole text."""
    stripped = (text or "").strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def extract_json(text: str) -> dict[str, Any]:
    """Extract a JSON object from LLM response text.

    Raises:
        UpstreamError: If no JSON object can be parsed
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise UpstreamError("Empty LLM response")

    try:
        result = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise UpstreamError(f"No JSON object found in LLM response: {cleaned[:100]}") from None
        try:
            result = json.loads(cleaned[start: end + 1])
        except json.JSONDecodeError as e:
            logger.error(f"JSON parse failed at position {e.pos}: {e.msg}")
            raise UpstreamError("LLM returned malformed JSON") from e

    if not isinstance(result, dict):
        raise UpstreamError("LLM JSON response is not an object")
    return result
