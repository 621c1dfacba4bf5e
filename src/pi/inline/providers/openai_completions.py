"""OpenAI provider (and OpenAI-compatible servers via ``base_url``).

Two request variants, chosen by ``OpenAIOptions.variant``:

- ``chat``: Chat Completions, text in ``choices[0].delta.content``
- ``completion``: legacy Completions, text in ``choices[0].text``
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Literal

import httpx
import openai

from pi.inline.env import get_provider_api_key
from pi.inline.errors import ConfigurationError, ProviderError, TransportError
from pi.inline.providers.base import Provider, RequestGuard, start_request
from pi.inline.types import CancelFn, FinishReason, StreamHandlers

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_COMPLETION_MODEL = "gpt-3.5-turbo-instruct"

OpenAIVariant = Literal["chat", "completion"]


@dataclass
class OpenAIOptions:
    variant: OpenAIVariant = "chat"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    headers: dict[str, str] | None = None


def map_finish_reason(reason: str | None) -> FinishReason:
    if reason is None or reason == "stop":
        return "stop"
    return reason


def default_builder(input: str, context: Any = None) -> dict[str, Any]:
    return {"messages": [{"role": "user", "content": input}]}


def completion_builder(input: str, context: Any = None) -> dict[str, Any]:
    return {"prompt": input}


# --- Variants ---


async def _chat_chunks(client: openai.AsyncOpenAI, params: dict[str, Any]) -> AsyncIterator[tuple[str, str | None]]:
    stream = await client.chat.completions.create(**params, stream=True)
    async for chunk in stream:
        choices = getattr(chunk, "choices", None)
        if not choices:
            continue
        choice = choices[0]
        delta = getattr(choice, "delta", None)
        text = getattr(delta, "content", None) if delta else None
        yield text or "", choice.finish_reason


async def _completion_chunks(
    client: openai.AsyncOpenAI, params: dict[str, Any]
) -> AsyncIterator[tuple[str, str | None]]:
    stream = await client.completions.create(**params, stream=True)
    async for chunk in stream:
        choices = getattr(chunk, "choices", None)
        if not choices:
            continue
        choice = choices[0]
        yield choice.text or "", choice.finish_reason


ChunkIterator = AsyncIterator[tuple[str, str | None]]

# variant -> (default model, chunk source)
_VARIANTS: dict[str, tuple[str, Callable[[openai.AsyncOpenAI, dict[str, Any]], ChunkIterator]]] = {
    "chat": (DEFAULT_MODEL, _chat_chunks),
    "completion": (DEFAULT_COMPLETION_MODEL, _completion_chunks),
}


class OpenAIProvider(Provider):
    name = "openai"
    options_type = OpenAIOptions

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = 0,
    ) -> None:
        self._http_client = http_client
        self._max_retries = max_retries

    def request_completion(
        self,
        handlers: StreamHandlers,
        params: Any,
        options: OpenAIOptions | None = None,
    ) -> CancelFn:
        options = options or OpenAIOptions()
        api_key = get_provider_api_key(self.name, options.api_key)

        if options.variant not in _VARIANTS:
            raise ConfigurationError(f"Unknown OpenAI variant: {options.variant}")
        default_model, chunks = _VARIANTS[options.variant]

        body = {"model": options.model or default_model, **(params or {})}
        body.pop("stream", None)

        async def _run(guard: RequestGuard) -> None:
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=options.base_url,
                default_headers=options.headers,
                http_client=self._http_client,
                max_retries=self._max_retries,
            )
            await _stream(guard, chunks(client, body))

        logger.debug("OpenAI %s request for %s", options.variant, body["model"])
        return start_request(_run, handlers, label=f"openai {body['model']}")


async def _stream(guard: RequestGuard, chunks: AsyncIterator[tuple[str, str | None]]) -> None:
    parts: list[str] = []
    finish_reason: str | None = None

    try:
        async for text, reason in chunks:
            if text:
                parts.append(text)
                guard.data(text)
            if reason:
                finish_reason = reason
    except openai.APIConnectionError as e:
        raise TransportError(f"Network error: {e}") from e
    except openai.APIStatusError as e:
        raise ProviderError(f"OpenAI API error ({e.status_code}): {e.message}", payload=e.body) from e
    except openai.APIError as e:
        raise ProviderError(e.message, payload=e.body) from e

    guard.finish("".join(parts), map_finish_reason(finish_reason))

