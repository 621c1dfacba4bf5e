"""Anthropic Messages API provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import anthropic
import httpx

from pi.inline.env import get_provider_api_key
from pi.inline.errors import ProviderError, TransportError
from pi.inline.providers.base import Provider, RequestGuard, start_request
from pi.inline.types import CancelFn, FinishReason, StreamHandlers

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-haiku-latest"
DEFAULT_MAX_TOKENS = 4096


@dataclass
class AnthropicOptions:
    model: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    api_key: str | None = None
    base_url: str | None = None


def map_stop_reason(reason: str | None) -> FinishReason:
    if reason in (None, "end_turn", "stop_sequence"):
        return "stop"
    if reason == "max_tokens":
        return "length"
    return reason


def default_builder(input: str, context: Any = None) -> dict[str, Any]:
    return {"messages": [{"role": "user", "content": input}]}


class AnthropicProvider(Provider):
    name = "anthropic"
    options_type = AnthropicOptions

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
        options: AnthropicOptions | None = None,
    ) -> CancelFn:
        options = options or AnthropicOptions()
        api_key = get_provider_api_key(self.name, options.api_key)

        body: dict[str, Any] = {
            "model": options.model or DEFAULT_MODEL,
            "max_tokens": options.max_tokens,
            **(params or {}),
        }
        body.pop("stream", None)

        async def _run(guard: RequestGuard) -> None:
            client = anthropic.AsyncAnthropic(
                api_key=api_key,
                base_url=options.base_url,
                http_client=self._http_client,
                max_retries=self._max_retries,
            )
            parts: list[str] = []

            try:
                async with client.messages.stream(**body) as stream:
                    async for text in stream.text_stream:
                        parts.append(text)
                        guard.data(text)
                    message = await stream.get_final_message()
            except anthropic.APIConnectionError as e:
                raise TransportError(f"Network error: {e}") from e
            except anthropic.APIStatusError as e:
                raise ProviderError(f"Anthropic API error ({e.status_code}): {e.message}", payload=e.body) from e
            except anthropic.APIError as e:
                raise ProviderError(e.message, payload=e.body) from e

            guard.finish("".join(parts), map_stop_reason(message.stop_reason))

        logger.debug("Anthropic request for %s", body["model"])
        return start_request(_run, handlers, label=f"anthropic {body['model']}")
