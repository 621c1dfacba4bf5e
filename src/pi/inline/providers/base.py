"""Provider contract shared by all backends.

A provider starts one request per ``request_completion`` call and reports its
outcome through the handlers: any number of ``on_data`` chunks followed by
exactly one of ``on_finish`` / ``on_error``. The returned function cancels the
request; after cancellation neither terminal callback fires.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from pi.inline.errors import InlineError, ProviderError, TransportError
from pi.inline.types import CancelFn, FinishReason, StreamHandlers

logger = logging.getLogger(__name__)

# Strong references to in-flight request tasks
_tasks: set[asyncio.Task[None]] = set()


class Provider(ABC):
    """A backend for one vendor API."""

    name: str = ""
    # Options dataclass (with a model field) used when a prompt has none
    options_type: type[Any] | None = None

    @abstractmethod
    def request_completion(
        self,
        handlers: StreamHandlers,
        params: Any,
        options: Any = None,
    ) -> CancelFn:
        """Start a request and return a function that cancels it."""


class RequestGuard:
    """Wraps handlers so that at most one terminal callback is delivered."""

    def __init__(self, handlers: StreamHandlers, label: str = "request") -> None:
        self._handlers = handlers
        self._label = label
        self.settled = False
        self.cancelled = False

    def data(self, chunk: str) -> None:
        if self.settled or self.cancelled or not chunk:
            return
        self._handlers.on_data(chunk)

    def finish(self, result: str, reason: FinishReason = "stop") -> None:
        if self._settle("finish"):
            self._handlers.on_finish(result, reason)

    def error(self, error: InlineError) -> None:
        if self._settle("error"):
            self._handlers.on_error(error)

    def _settle(self, kind: str) -> bool:
        if self.cancelled:
            return False
        if self.settled:
            logger.warning("Dropped duplicate %s for %s", kind, self._label)
            return False
        self.settled = True
        return True


def start_request(
    run: Callable[[RequestGuard], Awaitable[None]],
    handlers: StreamHandlers,
    label: str = "request",
) -> CancelFn:
    """Run ``run`` as a task on the running loop and return its cancel function.

    Failures are mapped onto ``on_error``: ``InlineError`` as-is, httpx errors
    as ``TransportError`` and anything else as ``ProviderError``. A run that
    returns without settling is reported as an error too.
    """
    guard = RequestGuard(handlers, label)

    async def _run() -> None:
        try:
            await run(guard)
        except asyncio.CancelledError:
            logger.debug("Cancelled %s", label)
            raise
        except InlineError as e:
            guard.error(e)
        except httpx.HTTPError as e:
            guard.error(TransportError(f"Network error: {e}"))
        except Exception as e:
            logger.exception("Unexpected failure in %s", label)
            guard.error(ProviderError(str(e) or type(e).__name__))
        else:
            if not guard.settled:
                guard.error(ProviderError(f"{label} ended without a result"))

    task = asyncio.get_running_loop().create_task(_run())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)

    def cancel() -> None:
        if guard.cancelled:
            return
        guard.cancelled = True
        task.cancel()

    return cancel
