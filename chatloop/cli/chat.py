"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from chatloop.cli.output import OutputFormatter
from chatloop.errors import ChatloopError
from chatloop.llm.types import FinishReason
from chatloop.orchestrator.core import TurnOrchestrator


class ChatHandler:
    """
    Manages the interactive chat loop for one conversation.

    Each line of input runs one turn; the final answer is printed once the
    turn is over.
    """

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        conversation_id: str,
        console: Console | None = None,
        streaming: bool | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.conversation_id = conversation_id
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.streaming = streaming
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        cmd = command.strip().split(None, 1)[0].lower()

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/history":
            messages = await self.orchestrator.store.get_messages(self.conversation_id)
            self.formatter.format_messages(messages)
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(self.orchestrator.registry.list())
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit     - Exit the chat\n"
                "  /history  - Show conversation messages\n"
                "  /tools    - List available tools\n"
                "  /help     - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Run one turn for *user_input* and print the final answer."""
        try:
            with self.console.status("[dim]thinking...[/dim]"):
                result = await self.orchestrator.send_message(
                    self.conversation_id, user_input, streaming=self.streaming
                )
        except ChatloopError as e:
            self.formatter.format_error(str(e))
            return

        if result.content:
            self.formatter.format_answer(result.content)
        elif result.finish_reason is not FinishReason.STOP:
            self.console.print(f"[yellow]No answer ({result.finish_reason.value}).[/yellow]")

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            "[bold]chatloop[/bold]\n"
            f"[dim]Conversation {self.conversation_id}. "
            "Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            await self.handle_input(user_input)
