"""Built-in providers, keyed by name."""

from __future__ import annotations

from pi.inline.providers.anthropic_messages import AnthropicProvider
from pi.inline.providers.base import Provider
from pi.inline.providers.openai_completions import OpenAIProvider
from pi.inline.providers.palm import PalmProvider


def builtin_providers() -> dict[str, Provider]:
    """Fresh instances of every bundled provider."""
    providers: list[Provider] = [OpenAIProvider(), AnthropicProvider(), PalmProvider()]
    return {p.name: p for p in providers}
