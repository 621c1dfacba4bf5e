"""pi-inline: stream LLM completions into tracked regions of a document."""

# Buffers
from pi.inline.buffer import Buffer, TextBuffer

# Commands
from pi.inline.commands import Commands

# Configuration
from pi.inline.config import FlashSettings, InlineConfig, load_config

# Async driver
from pi.inline.driver import Driver, run_async, wait

# Errors
from pi.inline.errors import (
    ConfigurationError,
    DecodeError,
    InlineError,
    ProviderError,
    TransportError,
)

# Secrets
from pi.inline.env import get_api_key

# Flash
from pi.inline.flash import Flash, flash

# Orchestration
from pi.inline.orchestrator import Orchestrator, SegmentEvent

# Prompts
from pi.inline.prompts import Prompt, builtin_prompts, user_prompt

# Providers
from pi.inline.providers.base import Provider

# Segments
from pi.inline.segments import Segment, SegmentRegistry

# Text helpers for prompt transforms
from pi.inline.text import (
    CodeBlock,
    TextBlock,
    extract_markdown_code_blocks,
    join_lines,
    trim_code_block,
    trim_quotes,
)

# Types
from pi.inline.types import (
    END_OF_LINE,
    InputContext,
    Mode,
    Position,
    Region,
    SegmentState,
    StreamHandlers,
)

__all__ = [
    # Buffers
    "Buffer",
    "TextBuffer",
    # Commands
    "Commands",
    # Configuration
    "FlashSettings",
    "InlineConfig",
    "load_config",
    # Async driver
    "Driver",
    "run_async",
    "wait",
    # Errors
    "ConfigurationError",
    "DecodeError",
    "InlineError",
    "ProviderError",
    "TransportError",
    # Secrets
    "get_api_key",
    # Flash
    "Flash",
    "flash",
    # Orchestration
    "Orchestrator",
    "SegmentEvent",
    # Prompts
    "Prompt",
    "builtin_prompts",
    "user_prompt",
    # Providers
    "Provider",
    # Segments
    "Segment",
    "SegmentRegistry",
    # Text helpers
    "CodeBlock",
    "TextBlock",
    "extract_markdown_code_blocks",
    "join_lines",
    "trim_code_block",
    "trim_quotes",
    # Types
    "END_OF_LINE",
    "InputContext",
    "Mode",
    "Position",
    "Region",
    "SegmentState",
    "StreamHandlers",
]
