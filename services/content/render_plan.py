"""Map parsed message blocks to presentation variants.

The markdown check is a heuristic: prose it misses is shown as plain text,
which is always safe to display.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List

from models.content_blocks import TEXT, ParsedBlock
from services.content.block_parser import (
	extract_complete_blocks,
	has_incomplete_blocks,
	parse_message_content,
)

MARKDOWN = "markdown"

_MARKDOWN_PATTERNS = (
	re.compile(r"^#{1,6}\s", re.MULTILINE),  # headings
	re.compile(r"\*\*"),  # bold
	re.compile(r"```"),  # fenced code
	re.compile(r"\[.+\]\(.+\)"),  # links
	re.compile(r"^\s*[-*+]\s", re.MULTILINE),  # bullets
	re.compile(r"^\s*\d+\.\s", re.MULTILINE),  # numbered items
)


@dataclass(frozen=True)
class RenderItem:
	"""One presentational unit of a message."""

	kind: str
	block_id: str
	payload: Any
	streaming: bool = False


@dataclass
class RenderPlan:
	items: List[RenderItem] = field(default_factory=list)
	show_skeleton: bool = False


def looks_like_markdown(text: str) -> bool:
	"""Return True when ``text`` carries common markdown markers."""
	return any(pattern.search(text) for pattern in _MARKDOWN_PATTERNS)


def render_block(block: ParsedBlock, *, streaming: bool = False) -> RenderItem:
	"""Choose the renderer variant for a single parsed block."""
	if block.type != TEXT:
		return RenderItem(kind=block.type, block_id=block.id, payload=block.content)
	text = str(block.content)
	kind = MARKDOWN if looks_like_markdown(text) else TEXT
	return RenderItem(kind=kind, block_id=block.id, payload=text, streaming=streaming and kind == TEXT)


def plan_render(content: str, is_streaming: bool = False) -> RenderPlan:
	"""Build the render plan for a finished message or an in-flight buffer.

	While streaming only the part of the buffer up to the last closing
	sentinel is parsed; the tail is shown as streaming text and a skeleton is
	requested while a structured block is still open.
	"""
	if not is_streaming:
		return RenderPlan(items=[render_block(block) for block in parse_message_content(content)])

	complete, pending = extract_complete_blocks(content)
	if complete:
		items = [render_block(block) for block in parse_message_content(complete)]
		if pending.strip():
			items.append(render_block(ParsedBlock(type=TEXT, content=pending, id="streaming-text"), streaming=True))
	else:
		items = [render_block(ParsedBlock(type=TEXT, content=content, id="streaming-text-0"), streaming=True)]
	return RenderPlan(items=items, show_skeleton=has_incomplete_blocks(content))
