"""Core types shared across pi-inline.

Positions are zero-indexed and row-major. Regions are half-open:
``start`` is inclusive, ``stop`` is exclusive.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from pi.inline.errors import InlineError

# Column sentinel meaning "end of line" (same value as vim's maxcol)
END_OF_LINE = 2**31 - 1

SegmentState = Literal["pending", "streaming", "done", "cancelled", "errored"]

TERMINAL_STATES: frozenset[str] = frozenset({"done", "cancelled", "errored"})

_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"streaming", "done", "cancelled", "errored"}),
    "streaming": frozenset({"streaming", "done", "cancelled", "errored"}),
    "done": frozenset(),
    "cancelled": frozenset(),
    "errored": frozenset(),
}

# Where the completion goes relative to the input
Mode = Literal["append", "replace", "insert"]

FinishReason = str  # "stop", "length" or a vendor-specific reason

CancelFn = Callable[[], None]


def can_transition(current: SegmentState, new: SegmentState) -> bool:
    """Check whether a segment may move from ``current`` to ``new``."""
    return new in _TRANSITIONS[current]


# --- Positions ---


@dataclass(frozen=True, order=True)
class Position:
    row: int
    col: int

    def __str__(self) -> str:
        col = "$" if self.col == END_OF_LINE else str(self.col)
        return f"{self.row}:{col}"


@dataclass(frozen=True)
class Region:
    start: Position
    stop: Position

    def contains(self, position: Position) -> bool:
        """True if ``start <= position < stop``. Zero-width regions contain nothing."""
        return self.start <= position < self.stop

    @property
    def is_empty(self) -> bool:
        return self.start >= self.stop

    @classmethod
    def at(cls, row: int, col: int) -> Region:
        """Zero-width region at a single point."""
        point = Position(row, col)
        return cls(point, point)

    @classmethod
    def parse(cls, text: str) -> Region:
        """Parse ``"ROW:COL-ROW:COL"``; ``$`` as a column means end of line."""
        try:
            start_text, stop_text = text.split("-", 1)
            return cls(_parse_position(start_text), _parse_position(stop_text))
        except ValueError as e:
            raise ValueError(f"Invalid region '{text}', expected ROW:COL-ROW:COL") from e

    def __str__(self) -> str:
        return f"{self.start}-{self.stop}"


def _parse_position(text: str) -> Position:
    row, col = text.strip().split(":", 1)
    return Position(int(row), END_OF_LINE if col == "$" else int(col))


# --- Streaming ---


@dataclass
class StreamHandlers:
    """Callbacks a provider drives for one request.

    Exactly one of ``on_finish`` / ``on_error`` fires per request, except
    after cancellation, when neither does.
    """

    on_data: Callable[[str], None]
    on_finish: Callable[[str, FinishReason], None]
    on_error: Callable[[InlineError], None]


@dataclass
class InputContext:
    """What a prompt builder gets to see besides the input text."""

    input: str
    args: str = ""
    filename: str | None = None
    selection: Region | None = None
    before: str = ""
    after: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
