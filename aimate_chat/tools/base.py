from abc import ABC, abstractmethod
from typing import Any, Dict, List

from aimate_chat.agent.structs import ToolDefinition, ToolExecutionResult


class ToolProvider(ABC):
    """
    Contract for anything that can advertise and run tools for a server id
    (an MCP bridge, a local function table, a remote service).
    """

    @abstractmethod
    async def discover(self, server_id: str) -> List[ToolDefinition]:
        """List the tools available on ``server_id``."""
        pass

    @abstractmethod
    async def execute(
        self, server_id: str, tool_name: str, parameters: Dict[str, Any]
    ) -> ToolExecutionResult:
        """
        Run one tool.

        Returns:
            ToolExecutionResult: ``success=False`` with an error message for
            tool-level failures. Transport failures may raise instead.
        """
        pass
