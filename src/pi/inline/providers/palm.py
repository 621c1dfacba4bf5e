"""Google PaLM (generativelanguage v1beta2) provider.

Non-streaming: the whole response arrives at once and is reported through a
single ``on_finish``. Two variants exist and are picked from the declared
model/method: ``generateMessage`` (text in ``candidates[0].content``) and
``generateText`` (text in ``candidates[0].output``).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from pi.inline.env import get_provider_api_key
from pi.inline.errors import ConfigurationError, DecodeError, ProviderError
from pi.inline.providers.base import Provider, RequestGuard, start_request
from pi.inline.types import CancelFn, StreamHandlers

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


# --- Response shapes ---


class PalmCandidate(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str | None = None  # generateMessage
    output: str | None = None  # generateText


class PalmResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    candidates: list[PalmCandidate] | None = None
    error: dict[str, Any] | None = None


# --- Variants ---


@dataclass(frozen=True)
class PalmVariant:
    method: str
    default_model: str
    extract: Callable[[PalmCandidate], str | None]


MESSAGE = PalmVariant(
    method="generateMessage",
    default_model="chat-bison-001",
    extract=lambda candidate: candidate.content,
)

TEXT = PalmVariant(
    method="generateText",
    default_model="text-bison-001",
    extract=lambda candidate: candidate.output,
)

_VARIANTS_BY_METHOD: dict[str, PalmVariant] = {v.method: v for v in (MESSAGE, TEXT)}

# Models that only serve one method
_MODEL_VARIANTS: dict[str, PalmVariant] = {
    "text-bison-001": TEXT,
    "chat-bison-001": MESSAGE,
}


@dataclass
class PalmOptions:
    model: str | None = None
    method: str | None = None
    api_key: str | None = None


def select_variant(options: PalmOptions) -> tuple[str, PalmVariant]:
    """Resolve (model, variant) from the declared model and method."""
    if options.model and options.model in _MODEL_VARIANTS:
        return options.model, _MODEL_VARIANTS[options.model]

    if options.method:
        variant = _VARIANTS_BY_METHOD.get(options.method)
        if variant is None:
            raise ConfigurationError(f"Unknown PaLM method: {options.method}")
    else:
        variant = MESSAGE

    return options.model or variant.default_model, variant


def parse_response(raw: str, variant: PalmVariant) -> str:
    """Extract the completion text from a raw response body.

    Raises ``DecodeError`` for undecodable or malformed payloads and
    ``ProviderError`` when the response carries an error object.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Failed to decode json response: {e}", payload=raw) from e

    if not isinstance(data, dict):
        raise DecodeError("Expected a JSON object response", payload=data)

    try:
        response = PalmResponse.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"Unexpected response shape: {e.error_count()} error(s)", payload=data) from e

    if response.error is not None:
        raise ProviderError(response.error.get("message") or "PaLM request failed", payload=data)

    if response.candidates is None:
        raise DecodeError("No candidates in response", payload=data)

    if not response.candidates:
        raise DecodeError("No candidates returned", payload=data)

    text = variant.extract(response.candidates[0])
    if text is None:
        raise DecodeError(f"First candidate has no text for {variant.method}", payload=data)
    return text


def default_builder(input: str, context: Any = None) -> dict[str, Any]:
    """Chat-style request body for ``generateMessage``."""
    return {"prompt": {"messages": [{"content": input}]}}


def text_builder(input: str, context: Any = None) -> dict[str, Any]:
    """Request body for ``generateText``."""
    return {"prompt": {"text": input}}


class PalmProvider(Provider):
    name = "palm"
    options_type = PalmOptions

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 300.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    def request_completion(
        self,
        handlers: StreamHandlers,
        params: Any,
        options: PalmOptions | None = None,
    ) -> CancelFn:
        options = options or PalmOptions()
        api_key = get_provider_api_key(self.name, options.api_key)
        model, variant = select_variant(options)
        url = f"{self._base_url}/v1beta2/models/{model}:{variant.method}"

        async def _run(guard: RequestGuard) -> None:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self._timeout, connect=30.0),
            ) as client:
                resp = await client.post(
                    url,
                    params={"key": api_key},
                    headers={"Content-Type": "application/json"},
                    json=params,
                )

            if not resp.is_success:
                payload = _error_payload(resp.text)
                raise ProviderError(f"PaLM API error ({resp.status_code})", payload=payload)

            guard.finish(parse_response(resp.text, variant), "stop")

        logger.debug("PaLM request to %s:%s", model, variant.method)
        return start_request(_run, handlers, label=f"palm {model}")


def _error_payload(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text
