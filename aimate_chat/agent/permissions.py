import logging
from typing import Dict, Mapping, Union

from aimate_chat.agent.structs import ToolPermission

logger = logging.getLogger("Permissions")

PermissionTable = Mapping[str, Mapping[str, Union[ToolPermission, str]]]

DEFAULT_PERMISSION = ToolPermission.ASK


def resolve_permission(
    table: PermissionTable, server_id: str, tool_name: str
) -> ToolPermission:
    """
    Permission for ``server_id``/``tool_name``; ``ask`` unless configured.

    Consulted once, when the tool call is constructed.
    """
    raw = (table or {}).get(server_id, {}).get(tool_name)
    if raw is None:
        return DEFAULT_PERMISSION

    try:
        return ToolPermission(raw)
    except ValueError:
        logger.warning(
            "Ignoring invalid permission %r for %s/%s", raw, server_id, tool_name
        )
        return DEFAULT_PERMISSION


def normalize_table(table: PermissionTable) -> Dict[str, Dict[str, ToolPermission]]:
    """Copy of ``table`` with every value resolved to a ToolPermission."""
    return {
        server: {tool: resolve_permission(table, server, tool) for tool in tools}
        for server, tools in (table or {}).items()
    }
