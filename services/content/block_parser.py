"""Split assistant replies into prose and sentinel-delimited structured blocks.

Replies embed JSON payloads between sentinels such as
``[MARKET_DATA]{...}[/MARKET_DATA]``. ``parse_message_content`` partitions a
buffer into text and decoded blocks; ``has_incomplete_blocks`` and
``extract_complete_blocks`` let a streaming consumer render the finished part
of a buffer while the rest is still arriving.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Tuple

from pydantic import ValidationError

from models.content_blocks import (
	MARKET_CARD,
	MARKET_LIST,
	NETWORK_GRAPH,
	TABLE,
	TEXT,
	MarketData,
	MarketListAdapter,
	NetworkGraphData,
	ParsedBlock,
	TableData,
)

logger = logging.getLogger(__name__)

Delimiters = Mapping[str, Tuple[str, str]]

DEFAULT_DELIMITERS: Dict[str, Tuple[str, str]] = {
	MARKET_CARD: ("[MARKET_DATA]", "[/MARKET_DATA]"),
	MARKET_LIST: ("[MARKET_LIST]", "[/MARKET_LIST]"),
	TABLE: ("[TABLE]", "[/TABLE]"),
	NETWORK_GRAPH: ("[NETWORK_GRAPH]", "[/NETWORK_GRAPH]"),
}

_DECODERS: Dict[str, Callable[[Any], Any]] = {
	MARKET_CARD: MarketData.model_validate,
	MARKET_LIST: MarketListAdapter.validate_python,
	TABLE: TableData.model_validate,
	NETWORK_GRAPH: NetworkGraphData.model_validate,
}


class StreamSplit(NamedTuple):
	"""A streaming buffer split into a renderable prefix and a pending tail."""

	complete: str
	pending: str


class _Match(NamedTuple):
	start: int
	end: int
	kind: str
	content: Any


def _block_pattern(opening: str, closing: str) -> re.Pattern:
	return re.compile(re.escape(opening) + r"(.*?)" + re.escape(closing), re.DOTALL)


def _decode(kind: str, raw: str) -> Any:
	return _DECODERS[kind](json.loads(raw.strip()))


def _find_blocks(content: str, delimiters: Delimiters) -> List[_Match]:
	found: List[_Match] = []
	for kind, (opening, closing) in delimiters.items():
		for match in _block_pattern(opening, closing).finditer(content):
			try:
				decoded = _decode(kind, match.group(1))
			except (ValueError, ValidationError) as exc:
				logger.warning("Failed to parse %s block at offset %d: %s", kind, match.start(), exc)
				continue
			found.append(_Match(match.start(), match.end(), kind, decoded))
	found.sort(key=lambda item: item.start)

	# Different kinds are scanned independently, so a block of one kind can
	# sit inside another's span; keep the left-most and drop the rest.
	accepted: List[_Match] = []
	for item in found:
		if accepted and item.start < accepted[-1].end:
			logger.warning("Dropping %s block at offset %d overlapping an earlier block", item.kind, item.start)
			continue
		accepted.append(item)
	return accepted


def parse_message_content(content: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> List[ParsedBlock]:
	"""Partition ``content`` into an ordered list of text and structured blocks.

	Text between blocks is trimmed and omitted when empty. Malformed payloads
	are logged and left in the surrounding text. Block ids are only unique
	within one call.
	"""
	parsed: List[ParsedBlock] = []
	counter = 0
	last_index = 0

	for block in _find_blocks(content, delimiters):
		if block.start > last_index:
			text = content[last_index:block.start].strip()
			if text:
				parsed.append(ParsedBlock(type=TEXT, content=text, id=f"{TEXT}-{counter}"))
				counter += 1
		parsed.append(ParsedBlock(type=block.kind, content=block.content, id=f"{block.kind}-{counter}"))
		counter += 1
		last_index = block.end

	if last_index < len(content):
		text = content[last_index:].strip()
		if text:
			parsed.append(ParsedBlock(type=TEXT, content=text, id=f"{TEXT}-{counter}"))

	if not parsed:
		return [ParsedBlock(type=TEXT, content=content, id=f"{TEXT}-0")]
	return parsed


def has_incomplete_blocks(content: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> bool:
	"""Return True when any kind has more opening than closing sentinels.

	Counting only; nesting and cross-kind pairing are not checked.
	"""
	for opening, closing in delimiters.values():
		if content.count(opening) > content.count(closing):
			return True
	return False


def extract_complete_blocks(content: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> StreamSplit:
	"""Split a streaming buffer after its right-most closing sentinel."""
	if not has_incomplete_blocks(content, delimiters):
		return StreamSplit(complete=content, pending="")

	last_complete = -1
	for _, closing in delimiters.values():
		index = content.rfind(closing)
		if index != -1:
			last_complete = max(last_complete, index + len(closing))

	if last_complete == -1:
		return StreamSplit(complete="", pending=content)
	return StreamSplit(complete=content[:last_complete], pending=content[last_complete:])
