"""
Tool Registry - discovery cache over registered tool providers.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from aimate_chat.agent.structs import ToolDefinition, ToolExecutionResult
from aimate_chat.exceptions import ToolNotFoundError

from .base import ToolProvider

ToolKey = Tuple[str, str]


class ToolRegistry:
    """
    Maps server ids to providers and caches what each provider advertises,
    keyed by ``(server_id, tool_name)``.
    """

    def __init__(self):
        self._providers: Dict[str, ToolProvider] = {}
        self._definitions: Dict[ToolKey, ToolDefinition] = {}
        self._discovered: set = set()
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger("ToolRegistry")

    def register_provider(self, server_id: str, provider: ToolProvider) -> None:
        """
        Attach ``provider`` to ``server_id``. Replaces any previous provider
        and drops its cached definitions.
        """
        self._providers[server_id] = provider
        self._discovered.discard(server_id)
        for key in [k for k in self._definitions if k[0] == server_id]:
            del self._definitions[key]

    @property
    def server_ids(self) -> List[str]:
        return list(self._providers.keys())

    async def discover(self, server_id: Optional[str] = None) -> List[ToolDefinition]:
        """
        Refresh the cache for one server (or all of them).

        A failing provider is logged and contributes no tools.
        """
        targets = [server_id] if server_id else self.server_ids
        found: List[ToolDefinition] = []

        for target in targets:
            provider = self._providers.get(target)
            if provider is None:
                self._logger.warning("No tool provider registered for server %s", target)
                continue

            try:
                definitions = await provider.discover(target)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._logger.error("Tool discovery failed for %s: %s", target, e)
                continue

            async with self._lock:
                for key in [k for k in self._definitions if k[0] == target]:
                    del self._definitions[key]
                for definition in definitions:
                    self._definitions[(target, definition.name)] = definition
                self._discovered.add(target)

            self._logger.debug("Discovered %d tools on %s", len(definitions), target)
            found.extend(definitions)

        return found

    async def get_definition(
        self, server_id: str, tool_name: str
    ) -> Optional[ToolDefinition]:
        """Look up a tool, discovering its server on first use."""
        if server_id not in self._discovered and server_id in self._providers:
            await self.discover(server_id)
        async with self._lock:
            return self._definitions.get((server_id, tool_name))

    def list_tools(self) -> List[ToolDefinition]:
        return list(self._definitions.values())

    async def execute(
        self, server_id: str, tool_name: str, parameters: Dict[str, Any]
    ) -> ToolExecutionResult:
        """
        Execute a discovered tool.

        Raises:
            ToolNotFoundError: If the server or tool is unknown.
        """
        definition = await self.get_definition(server_id, tool_name)
        provider = self._providers.get(server_id)
        if definition is None or provider is None:
            available = [k[1] for k in self._definitions if k[0] == server_id]
            raise ToolNotFoundError(
                f"Tool '{tool_name}' not found on server '{server_id}'. Available: {available}",
                tool_name=tool_name,
                server_id=server_id,
            )
        return await provider.execute(server_id, tool_name, parameters)
