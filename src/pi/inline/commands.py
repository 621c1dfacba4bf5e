"""Command layer: what an editor binds to its user commands.

Position-based commands act on every segment containing the position, in
creation order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from pi.inline.errors import ConfigurationError
from pi.inline.flash import Flash, flash
from pi.inline.orchestrator import Notify, Orchestrator, log_notification
from pi.inline.prompts import Prompt
from pi.inline.types import Position, Region

_WORD_BOUNDARY_RE = re.compile(r"[\s\-_./:\\]")


@dataclass
class FuzzyMatch:
    matches: bool
    score: float


def fuzzy_match(query: str, text: str) -> FuzzyMatch:
    """All query characters must appear in order. Lower score = better match."""
    query_lower = query.lower()
    text_lower = text.lower()

    if not query_lower:
        return FuzzyMatch(matches=True, score=0)
    if len(query_lower) > len(text_lower):
        return FuzzyMatch(matches=False, score=0)

    query_index = 0
    score: float = 0
    last_match_index = -1
    consecutive_matches = 0

    for i, char in enumerate(text_lower):
        if query_index >= len(query_lower):
            break
        if char != query_lower[query_index]:
            continue

        if last_match_index == i - 1:
            consecutive_matches += 1
            score -= consecutive_matches * 5
        else:
            consecutive_matches = 0
            if last_match_index >= 0:
                score += (i - last_match_index - 1) * 2

        if i == 0 or _WORD_BOUNDARY_RE.match(text_lower[i - 1]):
            score -= 10

        score += i * 0.1
        last_match_index = i
        query_index += 1

    if query_index < len(query_lower):
        return FuzzyMatch(matches=False, score=0)
    return FuzzyMatch(matches=True, score=score)


def fuzzy_filter(items: Sequence[str], query: str) -> list[str]:
    """Matching items, best first. Ties keep their input order."""
    if not query.strip():
        return list(items)

    scored = []
    for index, item in enumerate(items):
        match = fuzzy_match(query, item)
        if match.matches:
            scored.append((match.score, index, item))
    scored.sort()
    return [item for _, _, item in scored]


def escape_name(name: str) -> str:
    return name.replace(" ", "\\ ")


def unescape_name(name: str) -> str:
    return name.replace("\\ ", " ")


class Commands:
    """Prompt lookup plus the per-position segment commands."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        prompts: dict[str, Prompt],
        default_prompt: str | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.config = orchestrator.config
        self.prompts = prompts
        self.default_prompt = default_prompt or self.config.default_prompt
        self._notify = notify or log_notification

    def get_prompt(self, name: str | None) -> Prompt:
        if name is None:
            if self.default_prompt is None:
                raise ConfigurationError("No prompt given and no default prompt configured")
            name = self.default_prompt
        prompt = self.prompts.get(unescape_name(name))
        if prompt is None:
            raise ConfigurationError(f"Prompt '{unescape_name(name)}' wasn't found")
        return prompt

    # --- Requests ---

    def complete(
        self,
        name: str | None = None,
        args: str = "",
        selection: Region | None = None,
        cursor: Position | None = None,
        filename: str | None = None,
    ) -> int:
        prompt = self.get_prompt(name)
        return self.orchestrator.request_completion(
            prompt, selection=selection, cursor=cursor, args=args, filename=filename
        )

    def complete_multi(
        self,
        names: Sequence[str],
        selection: Region | None = None,
        cursor: Position | None = None,
        filename: str | None = None,
    ) -> list[int]:
        if not names:
            raise ConfigurationError("At least one prompt name is required")
        # Look every name up before starting anything
        prompts = [self.get_prompt(name) for name in names]
        return self.orchestrator.request_multi_completion_streams(
            prompts, selection=selection, cursor=cursor, filename=filename
        )

    def complete_prompt_names(self, arglead: str = "") -> list[str]:
        names = [escape_name(name) for name in self.prompts]
        return fuzzy_filter(names, arglead)

    # --- Segments under a position ---

    def cancel(self, position: Position) -> list[int]:
        """Cancel every live segment at ``position``. Returns the cancelled ids."""
        cancelled = []
        for sid in self.registry.query(position):
            if self.orchestrator.cancel(sid):
                cancelled.append(sid)
            elif self.registry.get(sid).state != "cancelled":
                self.registry.highlight(sid, self.config.cancel_hl_group)
                self._notify("Not cancellable", logging.WARNING)
        return cancelled

    def delete(self, position: Position) -> Flash | None:
        """Flash the segments at ``position``, then delete them."""
        matches = self.registry.query(position)
        if not matches:
            return None

        def delete_matches() -> None:
            for sid in matches:
                if sid in self.registry:
                    self.orchestrator.delete(sid)

        settings = self.config.delete_flash
        return flash(self.registry, matches, settings.hl_group, settings.count, settings.interval, delete_matches)

    def show(self, position: Position) -> Flash | None:
        matches = self.registry.query(position)
        if not matches:
            return None
        settings = self.config.show_flash
        return flash(self.registry, matches, settings.hl_group, settings.count, settings.interval)

    def select(self, position: Position) -> Region | None:
        """Bounds of the oldest segment at ``position``."""
        matches = self.registry.query(position)
        if not matches:
            return None
        return self.registry.details(matches[0])
