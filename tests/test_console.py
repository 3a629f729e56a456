"""Tests for the rich terminal renderers."""

from __future__ import annotations

import io
import json

from rich.console import Console

from client.chat_store import ChatStore
from client.console import ConsoleView, render_plan
from services.content.render_plan import plan_render


def make_console() -> Console:
    return Console(file=io.StringIO(), width=100, force_terminal=False, color_system=None)


def rendered(console: Console) -> str:
    return console.file.getvalue()


def test_renders_every_block_kind():
    market = {"title": "Will BTC hit 100k?", "price": 0.35, "volume": "$2.5M", "direction": "up"}
    content = (
        "# Overview\n"
        f"[MARKET_DATA]{json.dumps(market)}[/MARKET_DATA]\n"
        f"[MARKET_LIST]{json.dumps([market])}[/MARKET_LIST]\n"
        '[TABLE]{"headers": ["Team", "Odds"], "rows": [["A", 0.4]]}[/TABLE]\n'
        '[NETWORK_GRAPH]{"nodes": [{"id": "a", "label": "Fed"}, {"id": "b", "label": "BTC"}],'
        ' "edges": [{"source": "a", "target": "b"}]}[/NETWORK_GRAPH]'
    )
    console = make_console()
    console.print(render_plan(plan_render(content)))
    output = rendered(console)

    assert "Overview" in output
    assert "Will BTC hit 100k?" in output
    assert "35.0%" in output
    assert "UP" in output
    assert "Odds" in output
    assert "Fed" in output and "BTC" in output


def test_skeleton_and_status_lines():
    console = make_console()
    console.print(render_plan(plan_render("Looking [MARKET_LIST][", is_streaming=True), "Searching markets..."))
    output = rendered(console)
    assert "Loading visualization..." in output
    assert "Searching markets..." in output


def test_view_prints_finished_replies_and_errors_once():
    store = ChatStore()
    console = make_console()
    ConsoleView(store, console)

    store.add_message("assistant", "Markets are calm.")
    store.set_connection_error("Failed to connect after multiple attempts")
    store.set_connected(False)
    output = rendered(console)

    assert output.count("Markets are calm.") == 1
    assert output.count("Failed to connect after multiple attempts") == 1
