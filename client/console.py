"""Terminal chat client rendering streamed replies with rich."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from client.chat_store import ChatStore
from client.transport import ChatTransport
from models.content_blocks import (
	MARKET_CARD,
	MARKET_LIST,
	NETWORK_GRAPH,
	TABLE,
	MarketData,
	NetworkGraphData,
	TableData,
)
from services.content.render_plan import MARKDOWN, RenderItem, RenderPlan, plan_render
from utils.settings import Settings


def _percent(price: float) -> str:
	return f"{price * 100:.1f}%"


def _market_panel(market: MarketData) -> Panel:
	lines = [Text(market.title, style="bold"), Text(f"Probability: {_percent(market.price)}")]
	if market.volume:
		lines.append(Text(f"Volume: {market.volume}"))
	if market.direction:
		lines.append(Text(f"Direction: {market.direction}"))
	if market.url:
		lines.append(Text(market.url, style="underline cyan"))
	return Panel(Group(*lines), border_style="cyan")


def _market_table(markets: List[MarketData]) -> Table:
	table = Table(show_lines=False)
	for header in ("Market", "Probability", "Volume", "Direction"):
		table.add_column(header)
	for market in markets:
		table.add_row(market.title, _percent(market.price), market.volume or "-", market.direction or "-")
	return table


def _data_table(data: TableData) -> Table:
	table = Table()
	for header in data.headers:
		table.add_column(header)
	for row in data.rows:
		table.add_row(*("" if cell is None else str(cell) for cell in row))
	return table


def _graph_tree(graph: NetworkGraphData) -> Tree:
	labels = {node.id: node.label for node in graph.nodes}
	tree = Tree("Cascade graph")
	for node in graph.nodes:
		branch = tree.add(node.label)
		for edge in graph.edges:
			if edge.source == node.id:
				branch.add(f"→ {labels.get(edge.target, edge.target)}")
	return tree


def render_item(item: RenderItem) -> RenderableType:
	"""Turn one render item into a rich renderable."""
	if item.kind == MARKET_CARD:
		return _market_panel(item.payload)
	if item.kind == MARKET_LIST:
		return _market_table(item.payload)
	if item.kind == TABLE:
		return _data_table(item.payload)
	if item.kind == NETWORK_GRAPH:
		return _graph_tree(item.payload)
	if item.kind == MARKDOWN:
		return Markdown(item.payload)
	text = Text(item.payload)
	if item.streaming:
		text.append(" ▌", style="blink")
	return text


def render_plan(plan: RenderPlan, status: Optional[str] = None) -> RenderableType:
	parts: List[RenderableType] = [render_item(item) for item in plan.items]
	if plan.show_skeleton:
		parts.append(Text("Loading visualization...", style="dim italic"))
	if status:
		parts.append(Text(status, style="dim"))
	return Group(*parts)


class ConsoleView:
	"""Mirror store changes onto the terminal."""

	def __init__(self, store: ChatStore, console: Optional[Console] = None) -> None:
		self.console = console or Console()
		self.store = store
		self._live: Optional[Live] = None
		self._printed = len(store.messages)
		self._last_error: Optional[str] = None
		store.subscribe(self._on_change)

	def _on_change(self, store: ChatStore) -> None:
		if store.is_processing and self._live is None:
			self._live = Live(console=self.console, refresh_per_second=8)
			self._live.start()
		if self._live is not None:
			self._live.update(render_plan(store.streaming_plan(), store.status_message))
		if not store.is_processing and self._live is not None:
			self._live.stop()
			self._live = None
		for message in store.messages[self._printed:]:
			if message.role == "assistant":
				self.console.print(render_plan(plan_render(message.content)))
		self._printed = len(store.messages)
		if store.connection_error and store.connection_error != self._last_error:
			self.console.print(Text(store.connection_error, style="bold red"))
		self._last_error = store.connection_error


async def run_chat(url: str, user_id: str) -> None:
	store = ChatStore()
	ConsoleView(store)
	transport = ChatTransport(url, store)
	task = transport.connect(user_id)
	try:
		while not task.done():
			line = await asyncio.to_thread(input, "> ")
			if line.strip() in {"/quit", "/exit"}:
				break
			if line.strip():
				await transport.send_message(line.strip())
	except (EOFError, KeyboardInterrupt):
		pass
	finally:
		await transport.disconnect()


def main(argv: Optional[List[str]] = None) -> None:
	settings = Settings.from_env()
	parser = argparse.ArgumentParser(description="Chat with the market assistant from the terminal.")
	parser.add_argument("--url", default=settings.chat_ws_url, help="Gateway websocket URL")
	parser.add_argument("--user", required=True, help="User id to authenticate as")
	args = parser.parse_args(argv)
	logging.basicConfig(level=settings.log_level)
	asyncio.run(run_chat(args.url, args.user))


if __name__ == "__main__":
	main()
