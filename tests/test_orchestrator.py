"""Tests for the completion orchestrator, driven by a scripted provider."""

from __future__ import annotations

import asyncio
import logging

import pytest
from fakes import ScriptedProvider

from pi.inline.buffer import TextBuffer
from pi.inline.config import FlashSettings, InlineConfig
from pi.inline.errors import ConfigurationError, ProviderError
from pi.inline.orchestrator import Orchestrator, SegmentEvent
from pi.inline.prompts import Prompt, user_prompt
from pi.inline.segments import SegmentRegistry
from pi.inline.text import trim_code_block
from pi.inline.types import Position, Region


def make_orchestrator(text: str = "", config: InlineConfig | None = None):
    buf = TextBuffer(text)
    registry = SegmentRegistry(buf)
    notes: list[tuple[int, str]] = []
    orchestrator = Orchestrator(registry, config, notify=lambda message, level: notes.append((level, message)))
    return buf, registry, orchestrator, notes


class GroupRecorder(TextBuffer):
    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.groups: list[tuple[int, str]] = []

    def set_highlight(self, key, region, group):
        self.groups.append((key, group))
        super().set_highlight(key, region, group)


def echo_builder(input, context):
    return {"input": input, "args": context.args}


def make_prompt(provider, **kwargs) -> Prompt:
    return Prompt(provider=provider, builder=echo_builder, **kwargs)


# ---------------------------------------------------------------------------
# Single request
# ---------------------------------------------------------------------------


def test_streams_into_segment():
    buf, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    assert registry.details(sid) == Region.at(0, 0)
    assert registry.get(sid).state == "pending"

    provider.last.data("Hello", " world")
    assert registry.get(sid).state == "streaming"

    provider.last.finish("Hello world", "stop")

    assert registry.text(sid) == "Hello world"
    assert registry.get(sid).state == "done"
    assert buf.text == "Hello world"
    assert buf.highlight_group(sid) is None
    assert not orchestrator.is_pending(sid)


def test_builder_gets_selection_and_context():
    _, registry, orchestrator, _ = make_orchestrator("line one\nline two\nline three")
    seen = []

    def builder(input, context):
        seen.append(context)
        return {}

    provider = ScriptedProvider()
    sid = orchestrator.request_completion(
        Prompt(provider=provider, builder=builder),
        selection=Region(Position(1, 0), Position(1, 8)),
        args="make it rhyme",
        filename="poem.txt",
    )

    context = seen[0]
    assert context.input == "line two"
    assert context.args == "make it rhyme"
    assert context.filename == "poem.txt"
    assert context.before == "line one\n"
    assert context.after == "\nline three"
    # Appends after the selection
    assert registry.details(sid) == Region.at(1, 8)


def test_whole_buffer_is_input_without_selection():
    _, registry, orchestrator, _ = make_orchestrator("a\nb")
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider), args="x")

    assert provider.last.params == {"input": "a\nb", "args": "x"}
    assert registry.details(sid) == Region.at(1, 1)


def test_segment_uses_prompt_highlight():
    buf, _, orchestrator, _ = make_orchestrator("abc")
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider, hl_group="Todo"))
    provider.last.data("x")
    assert buf.highlight_group(sid) == "Todo"

    other = orchestrator.request_completion(make_prompt(provider))
    provider.last.data("y")
    assert buf.highlight_group(other) == "Comment"


def test_non_streaming_finish_writes_result():
    buf, registry, orchestrator, _ = make_orchestrator("Q: ")
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.finish("A.\nDone", "stop")

    assert buf.text == "Q: A.\nDone"
    assert registry.text(sid) == "A.\nDone"


def test_provider_error_marks_segment_errored():
    buf, registry, orchestrator, notes = make_orchestrator("keep")
    provider = ScriptedProvider()
    payload = {"error": {"code": 429, "message": "Quota exceeded"}}

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.data(" part")
    provider.last.error(ProviderError("Quota exceeded", payload=payload))

    assert registry.get(sid).state == "errored"
    assert buf.text == "keep part"
    assert buf.highlight_group(sid) == "Error"
    level, message = notes[-1]
    assert level == logging.ERROR
    assert "Quota exceeded" in message
    assert '"code": 429' in message


def test_length_finish_warns():
    buf, registry, orchestrator, notes = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.data("trunc")
    provider.last.finish("trunc", "length")

    assert registry.get(sid).state == "done"
    assert buf.highlight_group(sid) == "Error"
    assert notes == [(logging.WARNING, "Hit token limit")]


def test_other_finish_reason_warns():
    _, _, orchestrator, notes = make_orchestrator()
    provider = ScriptedProvider()

    orchestrator.request_completion(make_prompt(provider))
    provider.last.finish("", "content_filter")

    assert notes == [(logging.WARNING, "Response ended because: content_filter")]


def test_default_notify_logs(caplog):
    registry = SegmentRegistry(TextBuffer())
    orchestrator = Orchestrator(registry)
    provider = ScriptedProvider()

    orchestrator.request_completion(make_prompt(provider))
    with caplog.at_level(logging.WARNING, logger="pi.inline.orchestrator"):
        provider.last.finish("x", "length")

    assert "Hit token limit" in caplog.text


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------


def test_replace_mode_streams_over_selection():
    buf, registry, orchestrator, _ = make_orchestrator("a OLD b")
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(
        make_prompt(provider, mode="replace"),
        selection=Region(Position(0, 2), Position(0, 5)),
    )
    assert registry.text(sid) == "OLD"

    provider.last.data("N")
    assert buf.text == "a N b"
    provider.last.data("EW")
    provider.last.finish("NEW")

    assert buf.text == "a NEW b"

    orchestrator.delete(sid)
    assert buf.text == "a OLD b"
    assert sid not in registry


def test_replace_mode_applies_transform():
    buf, _, orchestrator, _ = make_orchestrator("x = OLD")
    provider = ScriptedProvider()

    orchestrator.request_completion(
        make_prompt(provider, mode="replace", transform=trim_code_block),
        selection=Region(Position(0, 4), Position(0, 7)),
    )
    provider.last.finish("```python\nNEW\n```")

    assert buf.text == "x = NEW"


def test_transform_applies_to_streamed_text():
    buf, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider, transform=trim_code_block))
    provider.last.data("```\n", "code\n", "```")
    provider.last.finish("")

    assert buf.text == "code"
    assert registry.text(sid) == "code"


def test_insert_mode_uses_cursor():
    buf, _, orchestrator, _ = make_orchestrator("ab\ncd")
    provider = ScriptedProvider()

    orchestrator.request_completion(make_prompt(provider, mode="insert"), cursor=Position(1, 1))
    provider.last.data("X")

    assert buf.text == "ab\ncXd"


# ---------------------------------------------------------------------------
# Failures at dispatch
# ---------------------------------------------------------------------------


def test_missing_key_unregisters_segment():
    buf, registry, orchestrator, _ = make_orchestrator("text")
    provider = ScriptedProvider(fail_with=ConfigurationError("Missing environment variable: PALM_API_KEY"))

    with pytest.raises(ConfigurationError):
        orchestrator.request_completion(make_prompt(provider))

    assert len(registry) == 0
    assert orchestrator.pending_ids() == []
    assert buf.text == "text"


def test_builder_error_leaves_replaced_text_alone():
    buf, registry, orchestrator, _ = make_orchestrator("a OLD b")

    def broken(input, context):
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        orchestrator.request_completion(
            Prompt(provider=ScriptedProvider(), builder=broken, mode="replace"),
            selection=Region(Position(0, 2), Position(0, 5)),
        )

    assert len(registry) == 0
    assert buf.text == "a OLD b"


# ---------------------------------------------------------------------------
# Async builders
# ---------------------------------------------------------------------------


class Asker:
    def __init__(self) -> None:
        self.questions = []

    def __call__(self, on_answer, initial, title):
        self.questions.append((initial, title, on_answer))

    def answer(self, text):
        self.questions.pop(0)[2](text)


def test_async_builder_waits_for_answer():
    buf, registry, orchestrator, _ = make_orchestrator("selected")
    provider = ScriptedProvider()
    ask = Asker()
    builder = user_prompt(ask, lambda answer, context: {"q": answer, "input": context.input}, "Question")

    sid = orchestrator.request_completion(Prompt(provider=provider, builder=builder))
    assert provider.calls == []
    assert ask.questions[0][:2] == ("selected", "Question")

    ask.answer("why?")
    assert provider.last.params == {"q": "why?", "input": "selected"}
    assert registry.get(sid).cancel_handle is not None

    provider.last.finish(" because")
    assert buf.text == "selected because"


def test_synchronous_answer():
    provider = ScriptedProvider()
    _, _, orchestrator, _ = make_orchestrator()

    def builder(input, context):
        return lambda resolve: resolve({"now": True})

    orchestrator.request_completion(Prompt(provider=provider, builder=builder))
    assert provider.last.params == {"now": True}


def test_cancel_while_waiting_on_builder():
    _, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()
    ask = Asker()
    builder = user_prompt(ask, lambda answer, context: {"q": answer})

    sid = orchestrator.request_completion(Prompt(provider=provider, builder=builder))
    assert orchestrator.cancel(sid)

    ask.answer("too late")
    assert provider.calls == []
    assert registry.get(sid).state == "cancelled"


def test_failure_after_answer_is_reported_not_raised():
    _, registry, orchestrator, notes = make_orchestrator()
    provider = ScriptedProvider(fail_with=ConfigurationError("Missing environment variable: OPENAI_API_KEY"))
    ask = Asker()
    builder = user_prompt(ask, lambda answer, context: {"q": answer})

    sid = orchestrator.request_completion(Prompt(provider=provider, builder=builder))
    ask.answer("go")

    assert registry.get(sid).state == "errored"
    assert notes == [(logging.ERROR, "Missing environment variable: OPENAI_API_KEY")]


def test_answer_after_failed_builder_start_is_ignored():
    buf, registry, orchestrator, _ = make_orchestrator("text")
    provider = ScriptedProvider()
    holder = {}

    def builder(input, context):
        def start(resolve):
            holder["resolve"] = resolve
            raise RuntimeError("no input available")

        return start

    with pytest.raises(RuntimeError, match="no input available"):
        orchestrator.request_completion(Prompt(provider=provider, builder=builder))
    assert len(registry) == 0

    holder["resolve"]({"q": "late"})
    assert provider.calls == []
    assert buf.text == "text"


def test_transform_failure_errors_segment():
    _, registry, orchestrator, notes = make_orchestrator()
    provider = ScriptedProvider()

    def transform(text):
        raise RuntimeError("cannot shape")

    sid = orchestrator.request_completion(make_prompt(provider, transform=transform))
    provider.last.finish("text")

    assert registry.get(sid).state == "errored"
    assert "cannot shape" in notes[-1][1]


# ---------------------------------------------------------------------------
# Multi request and cancellation
# ---------------------------------------------------------------------------


def test_multi_request_segments_are_independent():
    buf, registry, orchestrator, _ = make_orchestrator("Q")
    first, second = ScriptedProvider(), ScriptedProvider()

    s1, s2 = orchestrator.request_multi_completion_streams([make_prompt(first), make_prompt(second)])
    assert s1 != s2
    assert first.last.params == second.last.params == {"input": "Q", "args": ""}

    first.last.data("A")
    second.last.data("B")
    assert registry.text(s1) == "A"
    assert registry.text(s2) == "B"

    assert orchestrator.cancel(s1)
    assert first.last.cancel_count == 1
    assert second.last.cancel_count == 0
    assert registry.get(s1).state == "cancelled"
    assert registry.get(s2).state == "streaming"

    second.last.data("B")
    second.last.finish("BB")
    assert registry.get(s2).state == "done"
    assert buf.text == "QABB"


def test_multi_request_missing_key_undoes_started_flows():
    buf, registry, orchestrator, _ = make_orchestrator("Q")
    first = ScriptedProvider()
    missing = ScriptedProvider(fail_with=ConfigurationError("Missing environment variable: PALM_API_KEY"))

    with pytest.raises(ConfigurationError, match="PALM_API_KEY"):
        orchestrator.request_multi_completion_streams([make_prompt(first), make_prompt(missing)])

    assert first.last.cancel_count == 1
    assert len(registry) == 0
    assert orchestrator.pending_ids() == []
    assert buf.text == "Q"

    # Late output from the undone flow is discarded
    first.last.data("A")
    assert buf.text == "Q"


def test_multi_request_appends_replace_prompts():
    buf, registry, orchestrator, _ = make_orchestrator("keep")
    provider = ScriptedProvider()

    (sid,) = orchestrator.request_multi_completion_streams([make_prompt(provider, mode="replace")])
    provider.last.data("!")

    assert registry.get(sid).mode == "append"
    assert buf.text == "keep!"


def test_cancel_keeps_text_and_discards_late_callbacks():
    buf, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.data("partial")
    assert orchestrator.cancel(sid)

    provider.last.data(" more")
    provider.last.finish("partial more")
    provider.last.error(ProviderError("late"))

    assert buf.text == "partial"
    assert registry.get(sid).state == "cancelled"
    assert buf.highlight_group(sid) == "Special"


def test_cancel_twice_is_noop():
    _, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    assert orchestrator.cancel(sid)
    assert not orchestrator.cancel(sid)

    assert provider.last.cancel_count == 1
    assert registry.get(sid).state == "cancelled"


def test_cancel_finished_segment():
    _, registry, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.finish("done")

    assert not orchestrator.cancel(sid)
    assert provider.last.cancel_count == 0
    assert registry.get(sid).state == "done"


def test_delete_live_segment_cancels_it():
    buf, registry, orchestrator, _ = make_orchestrator("start")
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.data(" streaming")
    orchestrator.delete(sid)

    assert provider.last.cancel_count == 1
    assert sid not in registry
    assert buf.text == "start"

    # Callbacks for a deleted segment are dropped
    provider.last.data("ghost")
    assert buf.text == "start"


# ---------------------------------------------------------------------------
# Events and waiting
# ---------------------------------------------------------------------------


def test_subscribe_reports_state_changes():
    _, _, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()
    events: list[SegmentEvent] = []
    unsubscribe = orchestrator.subscribe(events.append)

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.data("a", "b")
    provider.last.finish("ab")

    assert events == [SegmentEvent(sid, "streaming"), SegmentEvent(sid, "done")]

    unsubscribe()
    other = orchestrator.request_completion(make_prompt(provider))
    orchestrator.cancel(other)
    assert len(events) == 2


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_wait(caplog):
    buf, registry, orchestrator, notes = make_orchestrator()
    provider = ScriptedProvider()

    def listener(event):
        if event.state == "done":
            raise RuntimeError("listener broke")

    orchestrator.subscribe(listener)
    sid = orchestrator.request_completion(make_prompt(provider))
    task = asyncio.ensure_future(orchestrator.wait(sid))
    await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="pi.inline.orchestrator"):
        provider.last.finish("ok", "length")

    assert await asyncio.wait_for(task, timeout=0.5) == "done"
    assert registry.get(sid).state == "done"
    assert buf.highlight_group(sid) == "Error"
    assert notes == [(logging.WARNING, "Hit token limit")]
    assert "listener broke" in caplog.text


@pytest.mark.asyncio
async def test_wait_for_segment():
    _, _, orchestrator, _ = make_orchestrator()
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    asyncio.get_running_loop().call_soon(provider.last.finish, "done")

    assert await asyncio.wait_for(orchestrator.wait(sid), timeout=1) == "done"
    # Already terminal
    assert await orchestrator.wait(sid) == "done"


@pytest.mark.asyncio
async def test_wait_all():
    _, _, orchestrator, _ = make_orchestrator()
    first, second = ScriptedProvider(), ScriptedProvider()

    s1 = orchestrator.request_completion(make_prompt(first))
    s2 = orchestrator.request_completion(make_prompt(second))

    loop = asyncio.get_running_loop()
    loop.call_soon(first.last.finish, "one")
    loop.call_soon(second.last.error, ProviderError("boom"))

    states = await asyncio.wait_for(orchestrator.wait_all(), timeout=1)
    assert states == {s1: "done", s2: "errored"}


@pytest.mark.asyncio
async def test_flash_on_finish():
    config = InlineConfig(flash_on_finish=True, ack_flash=FlashSettings(2, 1, "DiffAdd"))
    buf = GroupRecorder("")
    orchestrator = Orchestrator(SegmentRegistry(buf), config, notify=lambda message, level: None)
    provider = ScriptedProvider()

    sid = orchestrator.request_completion(make_prompt(provider))
    provider.last.finish("ok")
    assert buf.highlight_group(sid) is None

    await asyncio.sleep(0.05)
    assert (sid, "DiffAdd") in buf.groups
    assert buf.highlight_group(sid) is None
