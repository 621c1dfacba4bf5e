"""Tests for the command layer."""

from __future__ import annotations

import asyncio
import logging

import pytest
from fakes import ScriptedProvider

from pi.inline.buffer import TextBuffer
from pi.inline.commands import Commands, escape_name, fuzzy_filter, fuzzy_match, unescape_name
from pi.inline.config import FlashSettings, InlineConfig
from pi.inline.errors import ConfigurationError
from pi.inline.orchestrator import Orchestrator
from pi.inline.prompts import Prompt
from pi.inline.segments import SegmentRegistry
from pi.inline.types import Position, Region

FAST = InlineConfig(
    delete_flash=FlashSettings(2, 1, "DiffDelete"),
    show_flash=FlashSettings(2, 1, "DiffChange"),
)


def make_commands(text: str = "", default_prompt: str | None = None):
    buf = TextBuffer(text)
    registry = SegmentRegistry(buf)
    notes: list[tuple[int, str]] = []

    def notify(message, level):
        notes.append((level, message))

    orchestrator = Orchestrator(registry, FAST, notify=notify)
    provider = ScriptedProvider()
    prompts = {
        "ask": Prompt(provider=provider, builder=lambda input, ctx: {"input": input, "args": ctx.args}),
        "palm text": Prompt(provider=provider, builder=lambda input, ctx: {"text": input}),
        "rewrite": Prompt(provider=provider, builder=lambda input, ctx: {}, mode="replace"),
    }
    commands = Commands(orchestrator, prompts, default_prompt=default_prompt, notify=notify)
    return buf, registry, commands, provider, notes


# --- Fuzzy matching ---


def test_fuzzy_match_subsequence():
    assert fuzzy_match("pt", "palm text").matches
    assert not fuzzy_match("tp", "palm").matches


def test_fuzzy_match_prefers_word_starts():
    assert fuzzy_match("pt", "palm text").score < fuzzy_match("pt", "rewrite input").score


def test_fuzzy_filter_orders_best_first():
    assert fuzzy_filter(["openai", "palm", "palm\\ text"], "pal") == ["palm", "palm\\ text"]


def test_fuzzy_filter_empty_query_keeps_all():
    assert fuzzy_filter(["b", "a"], "") == ["b", "a"]


def test_escape_round_trip():
    assert escape_name("palm text") == "palm\\ text"
    assert unescape_name("palm\\ text") == "palm text"


# --- Prompt lookup ---


def test_complete_prompt_names_escapes_spaces():
    _, _, commands, _, _ = make_commands()
    assert commands.complete_prompt_names() == ["ask", "palm\\ text", "rewrite"]
    assert commands.complete_prompt_names("ptx") == ["palm\\ text"]


def test_unknown_prompt():
    _, _, commands, _, _ = make_commands()
    with pytest.raises(ConfigurationError, match="Prompt 'nope' wasn't found"):
        commands.complete("nope")


def test_no_default_prompt():
    _, _, commands, _, _ = make_commands()
    with pytest.raises(ConfigurationError, match="no default prompt"):
        commands.complete()


def test_default_prompt():
    _, _, commands, provider, _ = make_commands("hi", default_prompt="ask")
    commands.complete(args="loudly")
    assert provider.last.params == {"input": "hi", "args": "loudly"}


def test_escaped_name_lookup():
    _, _, commands, provider, _ = make_commands("hi")
    commands.complete("palm\\ text")
    assert provider.last.params == {"text": "hi"}


def test_complete_with_selection():
    buf, registry, commands, provider, _ = make_commands("one two")
    sid = commands.complete("rewrite", selection=Region(Position(0, 4), Position(0, 7)))
    provider.last.data("2")
    assert buf.text == "one 2"
    assert registry.get(sid).mode == "replace"


def test_complete_multi_checks_all_names_first():
    _, registry, commands, provider, _ = make_commands("x")
    with pytest.raises(ConfigurationError):
        commands.complete_multi(["ask", "missing"])
    assert len(registry) == 0
    assert provider.calls == []


def test_complete_multi():
    _, registry, commands, provider, _ = make_commands("x")
    ids = commands.complete_multi(["ask", "palm\\ text"])
    assert len(ids) == 2
    assert len(provider.calls) == 2


def test_complete_multi_requires_names():
    _, _, commands, _, _ = make_commands()
    with pytest.raises(ConfigurationError):
        commands.complete_multi([])


# --- Position commands ---


def test_cancel_under_position():
    _, registry, commands, provider, notes = make_commands("text")
    sid = commands.complete("ask")
    provider.last.data(" more")

    assert commands.cancel(Position(0, 5)) == [sid]
    assert registry.get(sid).state == "cancelled"
    assert notes == []

    # Already cancelled: nothing to report
    assert commands.cancel(Position(0, 5)) == []
    assert notes == []


def test_cancel_finished_segment_warns():
    buf, registry, commands, provider, notes = make_commands("text")
    sid = commands.complete("ask")
    provider.last.data(" more")
    provider.last.finish(" more")

    assert commands.cancel(Position(0, 6)) == []
    assert notes == [(logging.WARNING, "Not cancellable")]
    assert buf.highlight_group(sid) == "Special"
    assert registry.get(sid).state == "done"


def test_cancel_nothing_there():
    _, _, commands, _, notes = make_commands("text")
    assert commands.cancel(Position(0, 1)) == []
    assert notes == []


def test_select_returns_first_match():
    _, _, commands, provider, _ = make_commands("ab")
    commands.complete("ask")
    provider.last.data("cd\nef")

    assert commands.select(Position(1, 0)) == Region(Position(0, 2), Position(1, 2))
    assert commands.select(Position(0, 0)) is None


@pytest.mark.asyncio
async def test_delete_flashes_then_deletes():
    buf, registry, commands, provider, _ = make_commands("keep")
    sid = commands.complete("ask")
    provider.last.data(" this")
    provider.last.finish(" this")

    handle = commands.delete(Position(0, 5))
    assert handle is not None
    assert sid in registry

    for _ in range(100):
        if handle.finished:
            break
        await asyncio.sleep(0.005)

    assert sid not in registry
    assert buf.text == "keep"


@pytest.mark.asyncio
async def test_delete_live_segment_cancels():
    buf, registry, commands, provider, _ = make_commands("keep")
    sid = commands.complete("ask")
    provider.last.data(" partial")
    call = provider.last

    handle = commands.delete(Position(0, 5))
    for _ in range(100):
        if handle.finished:
            break
        await asyncio.sleep(0.005)

    assert call.cancel_count == 1
    assert sid not in registry
    assert buf.text == "keep"


@pytest.mark.asyncio
async def test_show_flashes():
    buf, registry, commands, provider, _ = make_commands("x")
    sid = commands.complete("ask")
    provider.last.data("yz")
    provider.last.finish("yz")

    handle = commands.show(Position(0, 1))
    for _ in range(100):
        if handle.finished:
            break
        await asyncio.sleep(0.005)

    assert handle.finished
    assert sid in registry
    assert buf.text == "xyz"


def test_delete_and_show_nothing_there():
    _, _, commands, _, _ = make_commands("x")
    assert commands.delete(Position(0, 0)) is None
    assert commands.show(Position(0, 0)) is None
