"""
Main CLI application for chatloop.

Usage:
    chatloop chat [--conversation ID] [--stream/--no-stream] [--profile NAME]
    chatloop ask TEXT [--conversation ID]
    chatloop conversations list|show|delete
    chatloop tools list
    chatloop config show|validate
    chatloop version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatloop.config import ChatloopConfig, load_config

app = typer.Typer(name="chatloop", help="chatloop - tool-calling chat client")
conversations_app = typer.Typer(help="Conversation management")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(conversations_app, name="conversations")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatloop.yaml",
        Path.cwd() / "chatloop.yml",
        Path.home() / ".config" / "chatloop" / "config.yaml",
        Path.home() / ".chatloop" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None, cli_overrides: dict | None = None) -> ChatloopConfig:
    try:
        return load_config(_get_config_path(), profile=profile, cli_overrides=cli_overrides)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)


def build_registry(cfg: ChatloopConfig):
    """Register the configured built-in tools and any allowed plugins."""
    from chatloop.tools.builtin import builtin_tools
    from chatloop.tools.registry import ToolRegistry

    registry = ToolRegistry()
    wanted = set(cfg.tools.builtin)
    for tool in builtin_tools():
        if wanted and tool.name not in wanted:
            continue
        registry.register(tool)

    registry.load_plugins(
        enabled=cfg.plugins.enabled,
        allow_distributions=set(cfg.plugins.allow_distributions) or None,
        allow_tools=set(cfg.plugins.allow_tools) or None,
    )

    for name in cfg.tools.disabled:
        registry.unregister(name)
    return registry


async def _open_store(cfg: ChatloopConfig):
    """Open the message store, or report why it cannot be opened and exit."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.errors import PersistenceError
    from chatloop.store.sqlite import SQLiteMessageStore

    try:
        store = SQLiteMessageStore(cfg.store.db_path)
        await store.init()
    except PersistenceError as e:
        OutputFormatter(console).format_error(str(e))
        raise typer.Exit(1)
    return store


async def _setup_stack(cfg: ChatloopConfig):
    """Wire up store, client, registry and orchestrator."""
    from chatloop.llm.providers.openai_compat import OpenAICompatClient
    from chatloop.orchestrator.core import TurnOrchestrator

    store = await _open_store(cfg)
    registry = build_registry(cfg)

    client = OpenAICompatClient(
        url=cfg.llm.api_base,
        model=cfg.llm.model,
        api_key=cfg.llm.resolve_api_key(),
        timeout=float(cfg.llm.timeout_seconds),
        max_retries=cfg.llm.max_retries,
    )

    orchestrator = TurnOrchestrator(
        store=store,
        client=client,
        registry=registry,
        streaming=cfg.orchestrator.streaming,
        max_rounds=cfg.orchestrator.max_rounds,
        on_bad_arguments=cfg.orchestrator.on_bad_arguments,
        system_prompt=cfg.orchestrator.system_prompt,
        tool_timeout=cfg.tools.timeout_seconds,
        fixed_tool_slots=cfg.stream.fixed_tool_slots,
    )
    return orchestrator, store


async def _resolve_conversation(store, conversation_id: str | None, title: str) -> str:
    if conversation_id:
        if await store.get_conversation(conversation_id) is None:
            console.print(f"[red]Conversation not found:[/red] {conversation_id}")
            raise typer.Exit(1)
        return conversation_id
    return await store.create_conversation(title)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Resume conversation ID"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream responses"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Start an interactive chat session."""
    from chatloop.cli.chat import ChatHandler

    cfg = _load(profile)

    async def _run():
        orchestrator, store = await _setup_stack(cfg)
        try:
            cid = await _resolve_conversation(store, conversation, "chat")
            handler = ChatHandler(orchestrator, cid, console=console, streaming=stream)
            await handler.run_loop()
        finally:
            await store.close()

    asyncio.run(_run())


@app.command()
def ask(
    text: str = typer.Argument(..., help="Message to send"),
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Conversation ID"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream responses"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Send one message and print the answer."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.errors import ChatloopError

    cfg = _load(profile)
    formatter = OutputFormatter(console)

    async def _run() -> int:
        orchestrator, store = await _setup_stack(cfg)
        try:
            cid = await _resolve_conversation(store, conversation, text[:60])
            result = await orchestrator.send_message(cid, text, streaming=stream)
        except ChatloopError as e:
            formatter.format_error(str(e))
            return 1
        finally:
            await store.close()
        formatter.format_answer(result.content)
        console.print(f"[dim]conversation {cid} ({result.finish_reason.value}, {result.rounds} round(s))[/dim]")
        return 0

    code = asyncio.run(_run())
    if code:
        raise typer.Exit(code)


@conversations_app.command("list")
def conversations_list():
    """List all conversations."""
    from chatloop.cli.output import OutputFormatter

    cfg = _load()

    async def _run():
        store = await _open_store(cfg)
        try:
            OutputFormatter(console).format_conversation_list(await store.list_conversations())
        finally:
            await store.close()

    asyncio.run(_run())


@conversations_app.command("show")
def conversations_show(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Show the messages of a conversation."""
    from chatloop.cli.output import OutputFormatter

    cfg = _load()

    async def _run():
        store = await _open_store(cfg)
        try:
            OutputFormatter(console).format_messages(await store.get_messages(conversation_id))
        finally:
            await store.close()

    asyncio.run(_run())


@conversations_app.command("delete")
def conversations_delete(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Delete a conversation and its messages."""
    cfg = _load()

    async def _run():
        store = await _open_store(cfg)
        try:
            await store.delete_conversation(conversation_id)
        finally:
            await store.close()
        console.print(f"Deleted conversation: {conversation_id}")

    asyncio.run(_run())


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from chatloop.cli.output import OutputFormatter

    registry = build_registry(_load())
    OutputFormatter(console).format_tool_list(registry.list())


@config_app.command("show")
def config_show():
    """Show effective config."""
    from chatloop.cli.output import OutputFormatter

    OutputFormatter(console).format_config(_load().to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show any type issues."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM: {cfg.llm.name} ({cfg.llm.model})")
    console.print(f"  Streaming: {cfg.orchestrator.streaming}")
    console.print(f"  Max rounds: {cfg.orchestrator.max_rounds}")
    console.print(f"  Bad arguments: {cfg.orchestrator.on_bad_arguments}")


@app.command()
def version():
    """Show version."""
    console.print(f"chatloop v{VERSION}")


def main():
    app()


if __name__ == "__main__":
    main()
