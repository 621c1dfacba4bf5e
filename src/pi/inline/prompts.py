"""Prompt records and the built-in prompt library.

A prompt pairs a provider with a builder that turns the gathered input into
request params. A builder may instead return a start function
``start(resolve)`` when it needs to wait on the host (for example to ask the
user something); the orchestrator suspends until ``resolve(params)`` is called.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pi.inline.providers import anthropic_messages, openai_completions, palm
from pi.inline.providers.base import Provider
from pi.inline.text import trim_code_block
from pi.inline.types import InputContext, Mode

Builder = Callable[[str, InputContext], Any]

# ask(on_answer, initial_content, title) shows some input UI and calls on_answer(text)
AskFn = Callable[[Callable[[str], None], str, str], None]


@dataclass
class Prompt:
    provider: Provider
    builder: Builder
    options: Any = None
    mode: Mode = "append"
    transform: Callable[[str], str] | None = None
    hl_group: str | None = None


def user_prompt(
    ask: AskFn,
    build: Callable[[str, InputContext], Any],
    title: str = "Prompt",
) -> Builder:
    """Builder that asks the user for text before building params.

    ``build(answer, context)`` receives the user's answer and the original
    input context.
    """

    def builder(input: str, context: InputContext) -> Callable[[Callable[[Any], None]], None]:
        def start(resolve: Callable[[Any], None]) -> None:
            ask(lambda answer: resolve(build(answer, context)), input, title)

        return start

    return builder


def _rewrite_builder(input: str, context: InputContext) -> dict[str, Any]:
    instruction = context.args or "Improve this"
    return {
        "messages": [
            {
                "role": "system",
                "content": "Rewrite the user's text as instructed. Reply with only the rewritten text.",
            },
            {"role": "user", "content": f"{instruction}:\n\n{input}"},
        ]
    }


def builtin_prompts(providers: dict[str, Provider]) -> dict[str, Prompt]:
    """Default prompt library over the given provider instances."""
    prompts: dict[str, Prompt] = {}

    if "openai" in providers:
        openai = providers["openai"]
        prompts["openai"] = Prompt(provider=openai, builder=openai_completions.default_builder)
        prompts["rewrite"] = Prompt(
            provider=openai,
            builder=_rewrite_builder,
            mode="replace",
            transform=trim_code_block,
        )
    if "anthropic" in providers:
        prompts["anthropic"] = Prompt(provider=providers["anthropic"], builder=anthropic_messages.default_builder)
    if "palm" in providers:
        prompts["palm"] = Prompt(provider=providers["palm"], builder=palm.default_builder)
        prompts["palm text"] = Prompt(
            provider=providers["palm"],
            builder=palm.text_builder,
            options=palm.PalmOptions(model="text-bison-001"),
        )

    return prompts
