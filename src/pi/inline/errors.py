"""Error taxonomy for completion requests.

Decode, provider and transport errors travel through ``on_error`` and end a
segment in the ``errored`` state. Configuration errors are raised at dispatch,
before any provider call is made.
"""

from __future__ import annotations

import json
from typing import Any


class InlineError(Exception):
    """Base error. ``payload`` holds the vendor payload verbatim, if any."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload = payload

    def describe(self) -> str:
        """Message plus the payload, formatted for a notification."""
        if self.payload is None:
            return self.message
        if isinstance(self.payload, str):
            return f"{self.message}\n{self.payload}"
        try:
            return f"{self.message}\n{json.dumps(self.payload, indent=2, default=str)}"
        except (TypeError, ValueError):
            return f"{self.message}\n{self.payload!r}"


class DecodeError(InlineError):
    """Provider payload could not be parsed or had the wrong shape."""


class ProviderError(InlineError):
    """The vendor reported a failure (quota, auth, invalid request, ...)."""


class TransportError(InlineError):
    """Network-level failure talking to the vendor."""


class ConfigurationError(InlineError):
    """Unknown prompt, missing secret or similar setup problem."""
