"""Segment registry: tracked document regions that stay valid under edits.

Every change to tracked text goes through ``SegmentRegistry``. After each edit
the edited segment's stop is recomputed from the inserted lines and every
other segment is shifted by the exact row/column delta the edit introduced.
Text edited behind the registry's back invalidates those coordinates.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from pi.inline.buffer import Buffer, end_of_insert, resolve_region, split_lines
from pi.inline.types import (
    TERMINAL_STATES,
    CancelFn,
    Mode,
    Position,
    Region,
    SegmentState,
    can_transition,
)

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """A tracked region bound to one completion request's lifecycle."""

    id: int
    region: Region
    state: SegmentState = "pending"
    highlight_group: str | None = None
    cancel_handle: CancelFn | None = None
    original_text: str | None = None  # only set for replacements
    mode: Mode = "append"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, state: SegmentState) -> bool:
        """Move to ``state``. Returns False (and changes nothing) if not allowed."""
        if not can_transition(self.state, state):
            return False
        self.state = state
        return True


def _translate(position: Position, old_end: Position, new_end: Position) -> Position:
    """Move a position at or after ``old_end`` so it keeps its offset from the edit's end."""
    if position.row == old_end.row:
        return Position(new_end.row, new_end.col + position.col - old_end.col)
    return Position(position.row + new_end.row - old_end.row, position.col)


def shift_region(region: Region, edit_start: Position, edit_stop: Position, new_end: Position) -> Region:
    """Region after ``edit_start``..``edit_stop`` was replaced by text ending at ``new_end``.

    Regions starting at or after the edit's end move by the edit's delta.
    Regions ending at or before the edit's start are untouched. A region
    spanning the edit keeps its start and has its stop moved, and endpoints
    that fell inside a replaced span collapse onto ``new_end``.
    """
    start, stop = region.start, region.stop

    if start >= edit_stop:
        return Region(_translate(start, edit_stop, new_end), _translate(stop, edit_stop, new_end))

    if stop <= edit_start:
        return region

    new_start = start if start < edit_start else new_end
    new_stop = _translate(stop, edit_stop, new_end) if stop >= edit_stop else new_end
    return Region(new_start, new_stop)


def _as_lines(lines: str | list[str]) -> list[str]:
    return split_lines(lines) if isinstance(lines, str) else list(lines)


class SegmentRegistry:
    """Authoritative store of the segments of one buffer.

    Segments are kept in creation order, which is also the order ``query``
    reports matches in.
    """

    def __init__(self, buffer: Buffer) -> None:
        self.buffer = buffer
        self._segments: dict[int, Segment] = {}
        self._next_id = itertools.count(1)

    # --- Lookup ---

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._segments

    def __len__(self) -> int:
        return len(self._segments)

    def ids(self) -> list[int]:
        return list(self._segments)

    def get(self, segment_id: int) -> Segment:
        try:
            return self._segments[segment_id]
        except KeyError:
            raise KeyError(f"Unknown segment: {segment_id}") from None

    def details(self, segment_id: int) -> Region:
        return self.get(segment_id).region

    def text(self, segment_id: int) -> str:
        region = self.get(segment_id).region
        if region.is_empty:
            return ""
        return "\n".join(self.buffer.get_text(region.start, region.stop))

    def query(self, position: Position) -> list[int]:
        """Ids of all segments whose region contains ``position``, oldest first."""
        return [seg.id for seg in self._segments.values() if seg.region.contains(position)]

    # --- Lifecycle ---

    def create(
        self,
        region: Region,
        highlight: str | None = None,
        *,
        original_text: str | None = None,
        mode: Mode = "append",
    ) -> int:
        """Register a pending segment over ``region`` and return its id."""
        segment = Segment(
            id=next(self._next_id),
            region=resolve_region(self.buffer, region),
            highlight_group=highlight,
            original_text=original_text,
            mode=mode,
        )
        self._segments[segment.id] = segment
        self._sync_highlight(segment)
        logger.debug("Created segment %d at %s", segment.id, segment.region)
        return segment.id

    def set_state(self, segment_id: int, state: SegmentState) -> bool:
        """Transition a segment's state. Returns False if the signal was discarded."""
        segment = self.get(segment_id)
        if segment.transition(state):
            return True
        logger.debug("Discarded transition %s -> %s for segment %d", segment.state, state, segment_id)
        return False

    def delete(self, segment_id: int) -> None:
        """Remove the segment's text, restoring the original text of a replacement."""
        segment = self.get(segment_id)
        start, stop = segment.region.start, segment.region.stop
        restore = split_lines(segment.original_text) if segment.original_text is not None else [""]

        if start < stop or restore != [""]:
            self._edit(start, stop, restore, owner=segment_id)

        self.buffer.clear_highlight(segment_id)
        del self._segments[segment_id]
        logger.debug("Deleted segment %d", segment_id)

    # --- Highlights ---

    def highlight(self, segment_id: int, group: str) -> None:
        segment = self.get(segment_id)
        segment.highlight_group = group
        self._sync_highlight(segment)

    def clear_highlight(self, segment_id: int) -> None:
        segment = self.get(segment_id)
        segment.highlight_group = None
        self.buffer.clear_highlight(segment_id)

    # --- Text ---

    def write(self, segment_id: int, lines: str | list[str]) -> None:
        """Append ``lines`` at the segment's stop. Empty input is a no-op."""
        segment = self.get(segment_id)
        lines = _as_lines(lines)
        if not lines or lines == [""]:
            return

        stop = segment.region.stop
        new_end = self._edit(stop, stop, lines, owner=segment_id)
        segment.region = Region(segment.region.start, new_end)
        self._sync_highlight(segment)

    def replace(self, segment_id: int, lines: str | list[str]) -> None:
        """Replace the segment's whole text with ``lines``. ``[]`` is a no-op."""
        segment = self.get(segment_id)
        lines = _as_lines(lines)
        if not lines:
            return

        start = segment.region.start
        new_end = self._edit(start, segment.region.stop, lines, owner=segment_id)
        segment.region = Region(start, new_end)
        self._sync_highlight(segment)

    # --- Internal ---

    def _edit(self, start: Position, stop: Position, lines: list[str], owner: int) -> Position:
        self.buffer.set_text(start, stop, lines)
        new_end = end_of_insert(start, lines)

        for segment in self._segments.values():
            if segment.id == owner:
                continue
            shifted = shift_region(segment.region, start, stop, new_end)
            if shifted != segment.region:
                segment.region = shifted
                self._sync_highlight(segment)

        return new_end

    def _sync_highlight(self, segment: Segment) -> None:
        if segment.highlight_group is not None:
            self.buffer.set_highlight(segment.id, segment.region, segment.highlight_group)
