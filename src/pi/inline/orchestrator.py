"""Completion orchestrator: binds a prompt, its input, a segment and a provider call.

Each request gets its own segment and provider call. Provider callbacks drive
buffer writes through the registry. A callback arriving for a segment that is
already terminal (or deleted) is discarded, so cancellation only has to be
best effort on the provider side.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from pi.inline.buffer import buffer_end, resolve_region
from pi.inline.config import InlineConfig
from pi.inline.driver import Driver
from pi.inline.errors import InlineError, ProviderError
from pi.inline.flash import flash
from pi.inline.prompts import Prompt
from pi.inline.segments import SegmentRegistry
from pi.inline.types import (
    CancelFn,
    FinishReason,
    InputContext,
    Mode,
    Position,
    Region,
    SegmentState,
    StreamHandlers,
)

logger = logging.getLogger(__name__)

# notify(message, logging level)
Notify = Callable[[str, int], None]


@dataclass
class SegmentEvent:
    segment_id: int
    state: SegmentState


@dataclass
class PendingRequest:
    """A live segment's provider call. Dropped once the segment is terminal."""

    segment_id: int
    prompt: Prompt
    mode: Mode
    driver: Driver | None = None
    cancel: CancelFn | None = None
    streamed: bool = False


def log_notification(message: str, level: int) -> None:
    logger.log(level, message)


class Orchestrator:
    """Runs completion requests against one segment registry."""

    def __init__(
        self,
        registry: SegmentRegistry,
        config: InlineConfig | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or InlineConfig()
        self._notify = notify or log_notification
        self._pending: dict[int, PendingRequest] = {}
        self._listeners: set[Callable[[SegmentEvent], None]] = set()
        self._waiters: dict[int, list[asyncio.Future[SegmentState]]] = {}

    # --- Subscriptions ---

    def subscribe(self, fn: Callable[[SegmentEvent], None]) -> Callable[[], None]:
        """Subscribe to segment state changes. Returns an unsubscribe function.

        A listener that raises is logged and skipped.
        """
        self._listeners.add(fn)

        def unsubscribe() -> None:
            self._listeners.discard(fn)

        return unsubscribe

    def _emit(self, event: SegmentEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Segment listener failed on %s for segment %d", event.state, event.segment_id)

    # --- Queries ---

    def pending_ids(self) -> list[int]:
        return list(self._pending)

    def is_pending(self, segment_id: int) -> bool:
        return segment_id in self._pending

    # --- Requests ---

    def request_completion(
        self,
        prompt: Prompt,
        *,
        selection: Region | None = None,
        cursor: Position | None = None,
        args: str = "",
        filename: str | None = None,
    ) -> int:
        """Start one completion and return its segment id.

        Failures before the provider is engaged (builder errors, missing keys)
        unregister the segment and propagate.
        """
        return self._start(prompt, prompt.mode, selection, cursor, args, filename)

    def request_multi_completion_streams(
        self,
        prompts: Sequence[Prompt],
        *,
        selection: Region | None = None,
        cursor: Position | None = None,
        args: str = "",
        filename: str | None = None,
    ) -> list[int]:
        """Run one independent flow per prompt over the same input.

        Replace-mode prompts append instead, since several completions cannot
        all replace the same text. If any prompt fails to start (a missing key,
        a broken builder) the flows already started are deleted before the
        error propagates.
        """
        ids: list[int] = []
        try:
            for prompt in prompts:
                mode: Mode = "append" if prompt.mode == "replace" else prompt.mode
                ids.append(self._start(prompt, mode, selection, cursor, args, filename))
        except Exception:
            for sid in reversed(ids):
                self.delete(sid)
            raise
        return ids

    def cancel(self, segment_id: int) -> bool:
        """Cancel a live request. Streamed text stays. Returns False if nothing was live."""
        segment = self.registry.get(segment_id)
        request = self._pending.get(segment_id)
        if request is None or segment.is_terminal:
            return False

        if request.driver is not None:
            request.driver.cancel()
        if request.cancel is not None:
            request.cancel()

        self._settle(request, "cancelled")
        self.registry.highlight(segment_id, self.config.cancel_hl_group)
        return True

    def delete(self, segment_id: int) -> None:
        """Cancel if live, then remove the segment's text (restoring replaced text)."""
        self.cancel(segment_id)
        self.registry.delete(segment_id)

    async def wait(self, segment_id: int) -> SegmentState:
        """Wait until the segment reaches a terminal state."""
        segment = self.registry.get(segment_id)
        if segment.is_terminal or segment_id not in self._pending:
            return segment.state
        future: asyncio.Future[SegmentState] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(segment_id, []).append(future)
        return await future

    async def wait_all(self) -> dict[int, SegmentState]:
        """Wait for every request live at call time."""
        ids = list(self._pending)
        states = await asyncio.gather(*(self.wait(sid) for sid in ids))
        return dict(zip(ids, states, strict=True))

    # --- Internal: flow ---

    def _start(
        self,
        prompt: Prompt,
        mode: Mode,
        selection: Region | None,
        cursor: Position | None,
        args: str,
        filename: str | None,
    ) -> int:
        context = self._gather_input(selection, args, filename)
        region, original_text = self._anchor(mode, context, cursor)

        segment_id = self.registry.create(
            region,
            prompt.hl_group or self.config.hl_group,
            original_text=original_text,
            mode=mode,
        )
        request = PendingRequest(segment_id=segment_id, prompt=prompt, mode=mode)
        self._pending[segment_id] = request
        handlers = self._handlers(request)

        def flow(wait: Any, resolve: Any) -> Any:
            params = prompt.builder(context.input, context)
            if callable(params):
                start = params
                params = yield wait(lambda done: start(self._guarded_resolve(request, done)))

            request.cancel = prompt.provider.request_completion(handlers, params, prompt.options)
            self.registry.get(segment_id).cancel_handle = request.cancel
            return request.cancel

        request.driver = Driver(flow)
        try:
            request.driver.start()
        except Exception:
            self._pending.pop(segment_id, None)
            self.registry.delete(segment_id)
            raise

        logger.debug("Started segment %d (%s)", segment_id, mode)
        return segment_id

    def _guarded_resolve(self, request: PendingRequest, resolve: Callable[[Any], None]) -> Callable[[Any], None]:
        """Resolve wrapper that turns errors raised by the resumed flow into a failed segment."""

        def guarded(value: Any) -> None:
            try:
                resolve(value)
            except Exception as e:
                logger.exception("Completion flow for segment %d failed", request.segment_id)
                self._fail(request, e if isinstance(e, InlineError) else ProviderError(str(e)))

        return guarded

    def _gather_input(self, selection: Region | None, args: str, filename: str | None) -> InputContext:
        buffer = self.registry.buffer
        origin = Position(0, 0)
        end = buffer_end(buffer)
        region = resolve_region(buffer, selection) if selection is not None else Region(origin, end)

        return InputContext(
            input="\n".join(buffer.get_text(region.start, region.stop)),
            args=args,
            filename=filename or getattr(buffer, "name", None),
            selection=region if selection is not None else None,
            before="\n".join(buffer.get_text(origin, region.start)),
            after="\n".join(buffer.get_text(region.stop, end)),
        )

    def _anchor(self, mode: Mode, context: InputContext, cursor: Position | None) -> tuple[Region, str | None]:
        buffer = self.registry.buffer
        region = context.selection or Region(Position(0, 0), buffer_end(buffer))

        if mode == "replace":
            return region, context.input
        if mode == "insert":
            point = cursor or region.start
            return Region(point, point), None
        return Region(region.stop, region.stop), None

    # --- Internal: handlers ---

    def _handlers(self, request: PendingRequest) -> StreamHandlers:
        return StreamHandlers(
            on_data=lambda chunk: self._handle(request, self._on_data, chunk),
            on_finish=lambda result, reason: self._handle(request, self._on_finish, result, reason),
            on_error=lambda error: self._handle(request, self._on_error, error),
        )

    def _handle(self, request: PendingRequest, fn: Callable[..., None], *args: Any) -> None:
        if self._pending.get(request.segment_id) is not request:
            logger.debug("Discarded late callback for segment %d", request.segment_id)
            return
        try:
            fn(request, *args)
        except Exception as e:
            logger.exception("Failed to apply completion to segment %d", request.segment_id)
            self._fail(request, ProviderError(f"Failed to apply completion: {e}"))

    def _on_data(self, request: PendingRequest, chunk: str) -> None:
        sid = request.segment_id
        if request.mode == "replace" and not request.streamed:
            self.registry.replace(sid, chunk)
        else:
            self.registry.write(sid, chunk)
        request.streamed = True

        was_pending = self.registry.get(sid).state == "pending"
        if self.registry.set_state(sid, "streaming") and was_pending:
            self._emit(SegmentEvent(sid, "streaming"))

    def _on_finish(self, request: PendingRequest, result: str, reason: FinishReason) -> None:
        sid = request.segment_id
        current = self.registry.text(sid)
        text = result or current
        if request.prompt.transform is not None:
            text = request.prompt.transform(text)
        if text != current:
            self.registry.replace(sid, text)

        self._settle(request, "done")

        if reason == "stop":
            self.registry.clear_highlight(sid)
            if self.config.flash_on_finish:
                ack = self.config.ack_flash
                flash(self.registry, [sid], ack.hl_group, ack.count, ack.interval)
        else:
            self.registry.highlight(sid, self.config.error_hl_group)
            if reason == "length":
                self._notify("Hit token limit", logging.WARNING)
            else:
                self._notify(f"Response ended because: {reason}", logging.WARNING)

    def _on_error(self, request: PendingRequest, error: InlineError) -> None:
        self._fail(request, error)

    def _fail(self, request: PendingRequest, error: InlineError) -> None:
        sid = request.segment_id
        if self._pending.get(sid) is not request:
            return
        if request.cancel is not None:
            request.cancel()
        self._settle(request, "errored")
        if sid in self.registry:
            self.registry.highlight(sid, self.config.error_hl_group)
        self._notify(error.describe(), logging.ERROR)

    def _settle(self, request: PendingRequest, state: SegmentState) -> None:
        sid = request.segment_id
        self._pending.pop(sid, None)
        if sid in self.registry and not self.registry.set_state(sid, state):
            return

        for future in self._waiters.pop(sid, []):
            if not future.done():
                future.set_result(state)
        self._emit(SegmentEvent(sid, state))
