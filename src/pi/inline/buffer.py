"""Document buffer protocol and an in-memory implementation.

The registry only talks to the ``Buffer`` protocol, so any editor that can
read/replace text by (row, col) and attach a highlight to a range can host
segments. ``TextBuffer`` is a plain list-of-lines buffer used by the CLI and
the tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pi.inline.types import END_OF_LINE, Position, Region


@runtime_checkable
class Buffer(Protocol):
    """Text storage with (row, col) addressing and keyed highlights."""

    def line_count(self) -> int:
        """Number of lines (always at least one)."""
        ...

    def get_line(self, row: int) -> str:
        ...

    def get_text(self, start: Position, stop: Position) -> list[str]:
        """Lines between ``start`` (inclusive) and ``stop`` (exclusive)."""
        ...

    def set_text(self, start: Position, stop: Position, lines: list[str]) -> None:
        """Replace ``start``..``stop`` with ``lines`` (``[""]`` deletes)."""
        ...

    def set_highlight(self, key: int, region: Region, group: str) -> None:
        ...

    def clear_highlight(self, key: int) -> None:
        ...


def resolve_position(buffer: Buffer, position: Position) -> Position:
    """Clamp a position into the buffer, expanding the end-of-line sentinel."""
    last_row = buffer.line_count() - 1
    if position.row > last_row:
        return Position(last_row, len(buffer.get_line(last_row)))
    row = max(position.row, 0)
    length = len(buffer.get_line(row))
    if position.col == END_OF_LINE or position.col > length:
        return Position(row, length)
    return Position(row, max(position.col, 0))


def resolve_region(buffer: Buffer, region: Region) -> Region:
    """Resolve a selection-style region into concrete buffer coordinates.

    A start column of ``END_OF_LINE`` means the selection begins on the next
    line, matching how a linewise selection reports its start.
    """
    start = region.start
    if start.col == END_OF_LINE and start.row + 1 < buffer.line_count():
        start = Position(start.row + 1, 0)
    start = resolve_position(buffer, start)
    stop = resolve_position(buffer, region.stop)
    if stop < start:
        stop = start
    return Region(start, stop)


def buffer_end(buffer: Buffer) -> Position:
    last_row = buffer.line_count() - 1
    return Position(last_row, len(buffer.get_line(last_row)))


def end_of_insert(start: Position, lines: list[str]) -> Position:
    """Position just past ``lines`` once inserted at ``start``."""
    if len(lines) <= 1:
        return Position(start.row, start.col + len(lines[0] if lines else ""))
    return Position(start.row + len(lines) - 1, len(lines[-1]))


def split_lines(text: str) -> list[str]:
    """Split text into buffer lines, normalizing line endings."""
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


class TextBuffer:
    """In-memory list-of-lines buffer."""

    def __init__(self, text: str = "", name: str | None = None) -> None:
        self._lines: list[str] = split_lines(text)
        self.name = name
        self.highlights: dict[int, tuple[Region, str]] = {}

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def line_count(self) -> int:
        return len(self._lines)

    def get_line(self, row: int) -> str:
        return self._lines[row]

    def get_text(self, start: Position, stop: Position) -> list[str]:
        region = resolve_region(self, Region(start, stop))
        start, stop = region.start, region.stop
        if start.row == stop.row:
            return [self._lines[start.row][start.col : stop.col]]

        result = [self._lines[start.row][start.col :]]
        result.extend(self._lines[start.row + 1 : stop.row])
        result.append(self._lines[stop.row][: stop.col])
        return result

    def set_text(self, start: Position, stop: Position, lines: list[str]) -> None:
        start = resolve_position(self, start)
        stop = resolve_position(self, stop)
        if stop < start:
            raise ValueError(f"Stop {stop} is before start {start}")

        before = self._lines[start.row][: start.col]
        after = self._lines[stop.row][stop.col :]

        replacement = list(lines) or [""]
        replacement[0] = before + replacement[0]
        replacement[-1] = replacement[-1] + after

        self._lines[start.row : stop.row + 1] = replacement

    def set_highlight(self, key: int, region: Region, group: str) -> None:
        self.highlights[key] = (region, group)

    def clear_highlight(self, key: int) -> None:
        self.highlights.pop(key, None)

    def highlight_group(self, key: int) -> str | None:
        entry = self.highlights.get(key)
        return entry[1] if entry else None
