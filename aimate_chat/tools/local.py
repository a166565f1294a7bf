import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from aimate_chat.agent.structs import ToolDefinition, ToolExecutionResult
from aimate_chat.exceptions import ToolError

from .base import ToolProvider


class CallableToolProvider(ToolProvider):
    """
    Exposes plain Python callables as tools.

    Coroutine functions are awaited; regular functions run in a worker
    thread so they cannot block the event loop.
    """

    def __init__(self):
        self._tools: Dict[Tuple[str, str], Tuple[ToolDefinition, Callable[..., Any]]] = {}
        self._logger = logging.getLogger("CallableToolProvider")

    def register(
        self,
        server_id: str,
        name: str,
        func: Callable[..., Any],
        description: str = "",
        parameter_schema: Optional[Dict[str, Any]] = None,
    ) -> ToolDefinition:
        definition = ToolDefinition(
            server_id=server_id,
            name=name,
            description=description or (inspect.getdoc(func) or ""),
            parameter_schema=parameter_schema or {},
        )
        self._tools[(server_id, name)] = (definition, func)
        return definition

    async def discover(self, server_id: str) -> List[ToolDefinition]:
        return [d for (sid, _), (d, _) in self._tools.items() if sid == server_id]

    async def execute(
        self, server_id: str, tool_name: str, parameters: Dict[str, Any]
    ) -> ToolExecutionResult:
        entry = self._tools.get((server_id, tool_name))
        if entry is None:
            return ToolExecutionResult(
                success=False, error_message=f"Unknown tool: {tool_name}"
            )

        _, func = entry
        start_time = time.monotonic()
        try:
            if inspect.iscoroutinefunction(func):
                result = await func(**parameters)
            else:
                result = await asyncio.to_thread(func, **parameters)
        except ToolError as e:
            # Domain specific errors (safe)
            self._logger.warning("Tool %s failed: %s", tool_name, e.user_hint)
            return ToolExecutionResult(
                success=False,
                error_message=e.user_hint,
                execution_time_ms=(time.monotonic() - start_time) * 1000,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._logger.exception("Unexpected error in tool %s", tool_name)
            return ToolExecutionResult(
                success=False,
                error_message=f"System Error: {e}",
                execution_time_ms=(time.monotonic() - start_time) * 1000,
            )

        return ToolExecutionResult(
            success=True,
            result=result,
            execution_time_ms=(time.monotonic() - start_time) * 1000,
        )
