"""Prompt helpers and status wording for the market chat assistant."""

from __future__ import annotations

from typing import Dict

TOOL_STATUS: Dict[str, str] = {
	"search_markets": "Searching markets...",
	"get_event": "Loading event details...",
	"get_market": "Fetching market data...",
	"compare_markets": "Comparing markets...",
	"list_tags": "Browsing categories...",
}


def tool_status(tool_name: str) -> str:
	"""Return the human-readable progress note for a tool call."""
	return TOOL_STATUS.get(tool_name, f"Using {tool_name}...")


def assistant_system_prompt() -> str:
	"""Return the trading assistant system prompt with the block vocabulary."""
	return (
		"You are a helpful prediction market assistant inside a learning app. "
		"Help users analyze markets and probabilities, find trending events, compare related markets, "
		"and explain how one market moving can cascade into others.\n\n"
		"Search strategy: call search_markets at most once per answer with focused keywords. "
		"If it returns nothing, say so and suggest a different query instead of retrying.\n\n"
		"Market fields: use the tool's \"question\" (or \"title\") as the title, never the slug. "
		"Build links as https://polymarket.com/event/{slug}, falling back to the id. "
		"Use the first outcome price as \"price\" and format volume with K/M/B suffixes.\n\n"
		"Whenever you present market data, use these blocks instead of markdown tables:\n"
		"[MARKET_DATA]\n"
		'{"title": "Will Bitcoin reach $100k by 2025?", "price": 0.65, "volume": "$2.5M", '
		'"direction": "UP", "url": "https://polymarket.com/event/bitcoin-100k-by-2025"}\n'
		"[/MARKET_DATA]\n"
		"[MARKET_LIST]\n"
		'[{"title": "...", "price": 0.35, "volume": "$1.2M", "direction": "neutral", "url": "..."}]\n'
		"[/MARKET_LIST]\n"
		"For non-market comparisons use [TABLE]{\"headers\": [...], \"rows\": [[...]]}[/TABLE]. "
		"For cascade relationships use "
		"[NETWORK_GRAPH]{\"nodes\": [{\"id\": \"m1\", \"label\": \"...\"}], "
		"\"edges\": [{\"source\": \"m1\", \"target\": \"m2\"}]}[/NETWORK_GRAPH].\n"
		"Each block must contain valid JSON only. Use markdown for explanatory prose."
	)


def tool_limit_message() -> str:
	return (
		"TOOL LIMIT REACHED. Answer with the information you already have from previous tool calls "
		"and do not call tools again."
	)


def tool_error_message(error: str) -> str:
	"""Translate a tool failure into guidance the model can relay."""
	if "Session not found" in error:
		return "The market data connection is temporarily unavailable. Offer a different search or topic."
	if "not found" in error:
		return "No markets found matching the criteria. Suggest broadening the search or a different topic."
	return f"Tool error: {error}. Suggest the user rephrase the question."
