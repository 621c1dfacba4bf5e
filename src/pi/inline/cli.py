"""Entry point for the pi-inline CLI.

Runs one or more prompts over a file (or a range of it) and prints the
resulting text, or writes it back with ``--write``.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path

from pi.inline.buffer import TextBuffer
from pi.inline.commands import Commands
from pi.inline.config import InlineConfig, load_config
from pi.inline.errors import ConfigurationError, InlineError
from pi.inline.orchestrator import Orchestrator
from pi.inline.prompts import Prompt, builtin_prompts
from pi.inline.providers.builtins import builtin_providers
from pi.inline.segments import SegmentRegistry
from pi.inline.types import Region

logger = logging.getLogger(__name__)

# Used when neither the command line nor the settings name a prompt
DEFAULT_PROMPT = "openai"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pi-inline",
        description="Stream LLM completions into a file",
    )
    parser.add_argument("file", nargs="?", help="File to complete")
    parser.add_argument("prompts", nargs="*", help="Prompt names (several run side by side)")
    parser.add_argument("--range", dest="selection", help="Selection as ROW:COL-ROW:COL, zero-indexed ($ = end of line)")
    parser.add_argument("--args", default="", help="Extra instruction passed to the prompt")
    parser.add_argument("--mode", choices=["append", "replace", "insert"], help="Override the prompt's mode")
    parser.add_argument("-m", "--model", help="Override the prompt's model")
    parser.add_argument("--write", action="store_true", help="Write the result back to the file")
    parser.add_argument("--list", dest="list_prompts", action="store_true", help="List prompt names and exit")
    parser.add_argument("--cwd", default=os.getcwd(), help="Directory to load project settings from")
    parser.add_argument("--log-level", default="warning", choices=["debug", "info", "warning", "error"])
    return parser.parse_args(argv)


def override_prompt(prompt: Prompt, mode: str | None = None, model: str | None = None) -> Prompt:
    """Copy of ``prompt`` with its mode and/or model replaced."""
    if model:
        options = prompt.options
        if options is None and prompt.provider.options_type is not None:
            options = prompt.provider.options_type()
        if options is None:
            raise ConfigurationError(f"Provider '{prompt.provider.name}' does not take a model")
        prompt = dataclasses.replace(prompt, options=dataclasses.replace(options, model=model))
    if mode:
        prompt = dataclasses.replace(prompt, mode=mode)
    return prompt


async def run(args: argparse.Namespace, config: InlineConfig) -> int:
    path = Path(args.file)
    buffer = TextBuffer(path.read_text(encoding="utf-8"), name=path.name)
    registry = SegmentRegistry(buffer)
    orchestrator = Orchestrator(registry, config)
    library = builtin_prompts(builtin_providers())
    commands = Commands(orchestrator, library, default_prompt=config.default_prompt or DEFAULT_PROMPT)

    selection = Region.parse(args.selection) if args.selection else None
    names = args.prompts or [None]
    prompts = [override_prompt(commands.get_prompt(name), args.mode, args.model) for name in names]

    if len(prompts) == 1:
        orchestrator.request_completion(prompts[0], selection=selection, args=args.args, filename=path.name)
    else:
        orchestrator.request_multi_completion_streams(prompts, selection=selection, args=args.args, filename=path.name)

    states = await orchestrator.wait_all()
    logger.info("Finished: %s", states)

    if args.write:
        path.write_text(buffer.text, encoding="utf-8")
    else:
        print(buffer.text)

    return 0 if all(state == "done" for state in states.values()) else 1


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.list_prompts:
        for name in builtin_prompts(builtin_providers()):
            print(name)
        return
    if not args.file:
        print("Error: a file is required", file=sys.stderr)
        sys.exit(2)

    config = load_config(cwd=args.cwd)

    try:
        code = asyncio.run(run(args, config))
    except InlineError as e:
        print(f"Error: {e.describe()}", file=sys.stderr)
        sys.exit(2)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    sys.exit(code)


if __name__ == "__main__":
    main()
