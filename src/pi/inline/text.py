"""Text helpers for shaping completions before they land in the buffer."""

from __future__ import annotations

import re
from dataclasses import dataclass

_OPEN_QUOTES_RE = re.compile(r"^['\"`]+")
_FENCE_WITH_LANG_RE = re.compile(r"^```[^\n]+\n")
_FENCE_LINE_RE = re.compile(r"^```([\w-]*)")


def join_lines(lines: list[str]) -> str:
    return "\n".join(lines)


def trim_quotes(text: str) -> str:
    """Remove matching runs of surrounding quotes or backticks."""
    match = _OPEN_QUOTES_RE.match(text)
    if match is None:
        return text

    markers = match.group(0)
    result = text[len(markers) :]
    if result.endswith(markers):
        result = result[: -len(markers)]
    return result


def trim_code_block(text: str) -> str:
    """Strip a surrounding markdown code fence, keeping the code's own newlines."""
    if not (text.startswith("```") and text.endswith("```")) or len(text) < 6:
        return text

    if _FENCE_WITH_LANG_RE.match(text):
        body = _FENCE_WITH_LANG_RE.sub("", text, count=1)
        return re.sub(r"\n?```$", "", body)

    if text.startswith("```\n") and text.endswith("\n```"):
        return text[4:-4]

    return text[3:-3]


@dataclass
class TextBlock:
    text: str


@dataclass
class CodeBlock:
    code: str
    lang: str = ""


def extract_markdown_code_blocks(md_text: str) -> list[TextBlock | CodeBlock]:
    """Split markdown into alternating prose and fenced code blocks.

    Blank lines are dropped; each kept line ends with a newline.
    """
    blocks: list[TextBlock | CodeBlock] = []
    current: TextBlock | CodeBlock = TextBlock("")
    in_code = False

    for line in md_text.splitlines():
        if not line:
            continue

        fence = _FENCE_LINE_RE.match(line)
        if fence:
            in_code = not in_code
            if in_code:
                if isinstance(current, TextBlock) and current.text:
                    blocks.append(current)
                current = CodeBlock("", fence.group(1))
            else:
                blocks.append(current)
                current = TextBlock("")
        elif isinstance(current, CodeBlock):
            current.code += line + "\n"
        else:
            current.text += line + "\n"

    if isinstance(current, TextBlock) and current.text:
        blocks.append(current)
    elif isinstance(current, CodeBlock):
        # unterminated fence
        blocks.append(current)

    return blocks
