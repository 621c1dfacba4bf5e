"""Layered JSON configuration.

Global settings live in ``~/.pi/inline.json`` and are overlaid by project
settings in ``<cwd>/.pi/inline.json``. Keys are camelCase in the files.
Unreadable files are skipped with a warning.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".pi"
CONFIG_FILE_NAME = "inline.json"


@dataclass
class FlashSettings:
    """Alternating highlight: ``count`` toggles, ``interval_ms`` apart."""

    count: int
    interval_ms: int
    hl_group: str

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000


@dataclass
class InlineConfig:
    hl_group: str = "Comment"
    cancel_hl_group: str = "Special"
    error_hl_group: str = "Error"
    flash_on_finish: bool = False
    default_prompt: str | None = None
    delete_flash: FlashSettings = field(default_factory=lambda: FlashSettings(6, 80, "DiffDelete"))
    show_flash: FlashSettings = field(default_factory=lambda: FlashSettings(10, 80, "DiffChange"))
    ack_flash: FlashSettings = field(default_factory=lambda: FlashSettings(4, 80, "DiffAdd"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InlineConfig:
        config = cls()
        config.hl_group = data.get("hlGroup", config.hl_group)
        config.cancel_hl_group = data.get("cancelHlGroup", config.cancel_hl_group)
        config.error_hl_group = data.get("errorHlGroup", config.error_hl_group)
        config.flash_on_finish = bool(data.get("flashOnFinish", config.flash_on_finish))
        config.default_prompt = data.get("defaultPrompt", config.default_prompt)
        config.delete_flash = _flash_from_dict(data.get("deleteFlash"), config.delete_flash)
        config.show_flash = _flash_from_dict(data.get("showFlash"), config.show_flash)
        config.ack_flash = _flash_from_dict(data.get("ackFlash"), config.ack_flash)
        return config


def _flash_from_dict(data: Any, default: FlashSettings) -> FlashSettings:
    if not isinstance(data, dict):
        return default
    return FlashSettings(
        count=int(data.get("count", default.count)),
        interval_ms=int(data.get("intervalMs", default.interval_ms)),
        hl_group=data.get("hlGroup", default.hl_group),
    )


def deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into ``base``; ``None`` values are skipped."""
    result = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_from_file(path: str) -> tuple[dict[str, Any], Exception | None]:
    if not os.path.exists(path):
        return {}, None
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return {}, e
    if not isinstance(data, dict):
        return {}, ValueError(f"Expected a JSON object in {path}")
    return data, None


def _default_agent_dir() -> str:
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME)


def load_config(cwd: str | None = None, agent_dir: str | None = None) -> InlineConfig:
    """Load global then project settings and merge them."""
    paths = [os.path.join(agent_dir or _default_agent_dir(), CONFIG_FILE_NAME)]
    if cwd:
        paths.append(os.path.join(cwd, CONFIG_DIR_NAME, CONFIG_FILE_NAME))

    merged: dict[str, Any] = {}
    for path in paths:
        data, error = _load_from_file(path)
        if error is not None:
            logger.warning("Ignoring unreadable settings file %s: %s", path, error)
            continue
        merged = deep_merge(merged, data)

    return InlineConfig.from_dict(merged)
