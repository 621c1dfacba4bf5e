"""Timed alternating highlight used to acknowledge segments."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

from pi.inline.segments import SegmentRegistry


class Flash:
    """Toggle a highlight on ``segment_ids`` every ``interval`` seconds.

    Even counts highlight, odd counts clear; after ``count`` toggles
    ``after()`` is called. Segments deleted in the meantime are skipped.
    Purely cosmetic: segment state is never touched.
    """

    def __init__(
        self,
        registry: SegmentRegistry,
        segment_ids: Sequence[int],
        hl_group: str,
        count: int,
        interval: float,
        after: Callable[[], None] | None = None,
    ) -> None:
        self._registry = registry
        self._segment_ids = list(segment_ids)
        self._hl_group = hl_group
        self._remaining = count
        self._interval = interval
        self._after = after
        self._timer_handle: asyncio.TimerHandle | None = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> Flash:
        self._schedule_next()
        return self

    def cancel(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None

    def _schedule_next(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer_handle = loop.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._timer_handle = None
        if self._remaining == 0:
            self._finished = True
            if self._after is not None:
                self._after()
            return

        live = [sid for sid in self._segment_ids if sid in self._registry]
        if self._remaining % 2 == 0:
            for sid in live:
                self._registry.highlight(sid, self._hl_group)
        else:
            for sid in live:
                self._registry.clear_highlight(sid)

        self._remaining -= 1
        self._schedule_next()


def flash(
    registry: SegmentRegistry,
    segment_ids: Sequence[int],
    hl_group: str,
    count: int,
    interval: float,
    after: Callable[[], None] | None = None,
) -> Flash:
    """Start a flash on the running loop."""
    return Flash(registry, segment_ids, hl_group, count, interval, after).start()
