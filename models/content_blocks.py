"""Payload shapes for structured blocks embedded in assistant replies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator

TEXT = "text"
MARKET_CARD = "market-card"
MARKET_LIST = "market-list"
TABLE = "table"
NETWORK_GRAPH = "network-graph"


class MarketData(BaseModel):
	"""A single prediction market as presented to the user.

	Attributes:
		title: Human-readable market question.
		price: Probability of the leading outcome, between 0 and 1.
		volume: Preformatted traded volume (e.g. "$2.5M").
		direction: UP, DOWN or NEUTRAL.
		url: Link to the market page.
	"""

	model_config = ConfigDict(extra="allow")

	title: str
	price: float
	volume: Optional[str] = None
	direction: Optional[str] = None
	url: Optional[str] = None
	change24h: Optional[float] = None
	liquidity: Optional[str] = None
	endDate: Optional[str] = None

	@field_validator("direction")
	@classmethod
	def _normalize_direction(cls, value: Optional[str]) -> Optional[str]:
		return value.strip().upper() if value else value


class TableData(BaseModel):
	model_config = ConfigDict(extra="allow")

	headers: List[str]
	rows: List[List[Any]]
	sortable: Optional[bool] = None


class GraphNode(BaseModel):
	model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

	id: str
	label: str
	type: Optional[str] = None


class GraphEdge(BaseModel):
	model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

	source: str
	target: str
	weight: Optional[float] = None


class NetworkGraphData(BaseModel):
	model_config = ConfigDict(extra="allow")

	nodes: List[GraphNode]
	edges: List[GraphEdge]


MarketListAdapter = TypeAdapter(List[MarketData])

BlockContent = Union[str, MarketData, List[MarketData], TableData, NetworkGraphData]


@dataclass(frozen=True)
class ParsedBlock:
	"""One segment of a parsed message, in document order."""

	type: str
	content: BlockContent
	id: str
