"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from chatloop.llm.types import Conversation, Message
from chatloop.tools.base import Tool

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "tool": "cyan",
    "system": "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the chatloop CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Parameters", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            params = ", ".join(sorted((t.parameters or {}).get("properties", {})))
            table.add_row(t.name, params or "-", t.description)

        self.console.print(table)

    def format_conversation_list(self, conversations: list[Conversation]) -> None:
        if not conversations:
            self.console.print("[dim]No conversations found.[/dim]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Created", no_wrap=True)
        table.add_column("Title")

        for c in conversations:
            created = c.created_at.strftime("%Y-%m-%d %H:%M:%S") if c.created_at else "?"
            table.add_row(c.id, created, c.title or "")

        self.console.print(table)

    def format_messages(self, messages: list[Message]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for msg in messages:
            color = ROLE_COLORS.get(msg.role, "white")
            ts = msg.created_at.strftime("%H:%M:%S") if msg.created_at else ""

            if msg.role == "tool":
                content = f"{msg.tool_name}({msg.tool_call_id}) -> {(msg.content or '')[:100]}"
            elif msg.tool_calls:
                calls = ", ".join(
                    f"{tc.function_name}({tc.arguments_text[:60]})" for tc in msg.tool_calls
                )
                content = f"{(msg.content or '')[:60]} [tool calls: {calls}]"
            else:
                content = (msg.content or "")[:100]

            self.console.print(f"  [{color}]{ts} {msg.role:>10s}[/{color}]  {content}")

    def format_answer(self, content: str) -> None:
        if content:
            self.console.print(Markdown(content))

    def format_error(self, message: str) -> None:
        self.console.print(Panel(message, title="Error", border_style="red"))

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
