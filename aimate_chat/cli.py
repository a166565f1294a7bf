#!/usr/bin/env python3
"""
Terminal chat for aiMate
========================

Interactive streaming chat against the configured connection:

- Deltas print as they arrive.
- Ctrl+C while a response is streaming cancels it (partial text is kept).
- Tool calls that need approval are confirmed after the response ends.

Commands: /continue, /models, /tools, /quit
"""

import asyncio
import signal
import uuid
from datetime import datetime
from typing import Any, Dict, List

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from aimate_chat.agent.service import ChatOrchestrator
from aimate_chat.agent.structs import StreamState, ToolCall, ToolCallStatus
from aimate_chat.config.settings import Settings, load_settings
from aimate_chat.exceptions import AimateBaseError, ToolExecutionError
from aimate_chat.protocol.events import EventTypes
from aimate_chat.providers.openai_compat import OpenAICompatibleProvider
from aimate_chat.tools.local import CallableToolProvider
from aimate_chat.tools.registry import ToolRegistry
from aimate_chat.utils.logger import EventLogger, setup_logging

LOCAL_SERVER_ID = "local"

console = Console()


def _current_time() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _word_count(text: str) -> int:
    if not text.strip():
        raise ToolExecutionError("Nothing to count: text is empty", tool_name="word_count")
    return len(text.split())


def build_local_tools() -> CallableToolProvider:
    """A couple of harmless tools so tool gating can be tried from the terminal."""
    provider = CallableToolProvider()
    provider.register(
        LOCAL_SERVER_ID,
        "current_time",
        _current_time,
        description="Current local date and time (ISO 8601).",
        parameter_schema={"type": "object", "properties": {}},
    )
    provider.register(
        LOCAL_SERVER_ID,
        "word_count",
        _word_count,
        description="Count the words in a piece of text.",
        parameter_schema={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )
    return provider


class ChatCLI:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._conversation_id = str(uuid.uuid4())
        self._awaiting: List[ToolCall] = []

        registry = ToolRegistry()
        registry.register_provider(LOCAL_SERVER_ID, build_local_tools())
        self._registry = registry

        self._provider = OpenAICompatibleProvider(
            settings.connection, request_timeout=settings.request_timeout
        )
        self._chat = ChatOrchestrator(settings, self._provider, tool_registry=registry)

    async def start(self) -> None:
        if self._settings.log_level == "DEBUG":
            await EventLogger(self._chat.bus).start()

        await self._chat.subscribe(EventTypes.STREAM_CHUNK, self._print_chunk)
        await self._chat.subscribe(EventTypes.WARNING, self._print_warning)
        await self._chat.subscribe(EventTypes.ERROR, self._print_error)
        await self._chat.subscribe(EventTypes.RETRY_SCHEDULED, self._print_retry)
        await self._chat.subscribe(
            EventTypes.TOOL_CONFIRMATION_REQUESTED, self._queue_confirmation
        )
        await self._chat.subscribe(EventTypes.TOOL_CALL_UPDATED, self._print_tool)

    # --- Event handlers ---

    async def _print_chunk(self, data: Dict[str, Any]) -> None:
        console.print(data["chunk"], end="", markup=False, highlight=False)

    async def _print_warning(self, data: Dict[str, Any]) -> None:
        console.print(f"\n[yellow]! {data.get('message')}[/]")

    async def _print_error(self, data: Dict[str, Any]) -> None:
        console.print(f"\n[red]x {data.get('message')}[/]")

    async def _print_retry(self, data: Dict[str, Any]) -> None:
        console.print(
            f"[dim]retrying ({data.get('retry')}) in {data.get('delay_seconds', 0):.1f}s...[/]"
        )

    async def _queue_confirmation(self, data: Dict[str, Any]) -> None:
        self._awaiting.append(data["tool_call"])

    async def _print_tool(self, data: Dict[str, Any]) -> None:
        call: ToolCall = data["tool_call"]
        if call.status == ToolCallStatus.COMPLETED:
            console.print(f"[green]tool {call.tool_name}:[/] {call.result.result}")
        elif call.status == ToolCallStatus.FAILED:
            console.print(f"[red]tool {call.tool_name} failed:[/] {call.error}")

    # --- Loop ---

    async def run(self) -> None:
        await self.start()
        console.print(
            Panel(
                f"Model [bold]{self._settings.model}[/] at {self._settings.connection.base_url}\n"
                "Ctrl+C cancels a response. /quit exits.",
                title="aiMate",
                box=box.ROUNDED,
            )
        )
        try:
            while True:
                text = await asyncio.to_thread(Prompt.ask, "[bold cyan]you[/]", console=console)
                text = text.strip()
                if not text:
                    continue
                if text in ("/quit", "/exit"):
                    break
                await self._dispatch(text)
        finally:
            await self._chat.close()

    async def _dispatch(self, text: str) -> None:
        if text == "/models":
            await self._show_models()
        elif text == "/tools":
            await self._show_tools()
        elif text == "/continue":
            await self._stream(self._chat.continue_message(self._conversation_id))
        else:
            await self._stream(self._chat.send_message(self._conversation_id, text))

    async def _stream(self, operation) -> None:
        console.print("[bold magenta]assistant[/] ", end="")
        loop = asyncio.get_running_loop()
        cancel_installed = False
        try:
            loop.add_signal_handler(
                signal.SIGINT, self._chat.cancel, self._conversation_id
            )
            cancel_installed = True
        except (NotImplementedError, RuntimeError):
            pass

        try:
            outcome = await operation
        except AimateBaseError as e:
            console.print(f"\n[red]{e.user_hint}[/]")
            return
        finally:
            if cancel_installed:
                loop.remove_signal_handler(signal.SIGINT)

        if outcome.state == StreamState.CANCELLED:
            console.print("\n[dim](cancelled)[/]", end="")
        console.print()
        await self._confirm_tools()

    async def _confirm_tools(self) -> None:
        pending, self._awaiting = self._awaiting, []
        for call in pending:
            approved = await asyncio.to_thread(
                Confirm.ask,
                f"Run tool [bold]{call.server_id}/{call.tool_name}[/] with {call.parameters}?",
                console=console,
            )
            if approved:
                await self._chat.approve_tool_call(call.id)
            else:
                await self._chat.decline_tool_call(call.id)

    async def _show_models(self) -> None:
        try:
            models = await self._provider.list_models()
        except AimateBaseError as e:
            console.print(f"[red]{e.user_hint}[/]")
            return
        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column("Model")
        for model_id in models:
            table.add_row(model_id)
        console.print(table)

    async def _show_tools(self) -> None:
        definitions = await self._registry.discover()
        table = Table(box=box.SIMPLE)
        table.add_column("Server")
        table.add_column("Tool")
        table.add_column("Description")
        for definition in definitions:
            table.add_row(definition.server_id, definition.name, definition.description)
        console.print(table)


def main() -> int:
    try:
        settings = load_settings()
    except AimateBaseError as e:
        console.print(f"[red]{e.message}[/]")
        return 2

    setup_logging(settings.log_level)
    try:
        asyncio.run(ChatCLI(settings).run())
    except KeyboardInterrupt:
        console.print("\n[dim]bye[/]")
    except AimateBaseError as e:
        console.print(f"[red]{e.user_hint}[/]")
        return 1
    return 0
