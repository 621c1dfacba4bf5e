"""Generator-based driver that linearizes callback-driven async operations.

A driver function is a generator taking ``wait`` and ``resolve``. Each
``yield wait(start)`` hands ``resolve`` to ``start`` and suspends until the
operation calls it; the generator resumes with the resolved value::

    def flow(wait, resolve):
        text = yield wait(lambda done: ask_user("Topic?", done))
        reply = yield wait(lambda done: fetch(text, done))
        return reply

    run_async(flow, on_complete)

Yielding anything other than a ``wait(...)`` marker means the caller already
started the operation and passed ``resolve`` to it directly.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

DriverFn = Callable[..., Generator[Any, Any, Any]]
StartFn = Callable[[Callable[[Any], None]], Any]

_NOTHING = object()


class _Wait:
    __slots__ = ("start",)

    def __init__(self, start: StartFn) -> None:
        self.start = start


def wait(start: StartFn) -> _Wait:
    """Mark an operation to be started with the driver's ``resolve``."""
    return _Wait(start)


class Driver:
    """One suspendable computation.

    Only yields control at an explicit ``yield``. Errors raised by the
    generator propagate synchronously out of ``start()`` / ``resolve()``,
    after which the driver is finished and ignores further values.
    """

    def __init__(self, fn: DriverFn, callback: Callable[[Any], None] | None = None) -> None:
        self._fn = fn
        self._callback = callback
        self._gen: Generator[Any, Any, Any] | None = None
        self._running = False
        self._queued: Any = _NOTHING
        self._done = False
        self._cancelled = False
        self._result: Any = None

    @property
    def done(self) -> bool:
        return self._done

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> Any:
        return self._result

    def start(self) -> Driver:
        if self._gen is not None:
            raise RuntimeError("Driver already started")
        self._gen = self._fn(wait, self.resolve)
        self._step(None)
        return self

    def resolve(self, value: Any = None) -> None:
        """Resume the suspended generator with ``value``."""
        if self._done or self._cancelled or self._gen is None:
            return
        if self._running:
            # Operation completed before the generator reached its yield
            self._queued = value
            return
        self._step(value)

    def cancel(self) -> None:
        """Stop the driver; pending and future resolves are discarded."""
        if self._done or self._cancelled:
            return
        self._cancelled = True
        if self._gen is not None and not self._running:
            self._gen.close()

    def _step(self, value: Any) -> None:
        assert self._gen is not None
        self._running = True
        try:
            while True:
                try:
                    yielded = self._gen.send(value)
                except StopIteration as stop:
                    self._finish(stop.value)
                    return
                except BaseException:
                    self._done = True
                    raise

                if isinstance(yielded, _Wait):
                    try:
                        yielded.start(self.resolve)
                    except BaseException:
                        self._done = True
                        self._gen.close()
                        raise

                if self._cancelled:
                    self._gen.close()
                    return

                if self._queued is _NOTHING:
                    return
                value, self._queued = self._queued, _NOTHING
        finally:
            self._running = False

    def _finish(self, result: Any) -> None:
        self._done = True
        self._result = result
        if self._callback is not None and not self._cancelled:
            self._callback(result)


def run_async(fn: DriverFn, callback: Callable[[Any], None] | None = None) -> Driver:
    """Create and start a driver for ``fn``."""
    return Driver(fn, callback).start()
