import asyncio
import dataclasses
import logging
import time
import uuid
from typing import Dict, Iterable, List, Optional

from aimate_chat.agent.core.state_machine import check_tool_transition
from aimate_chat.agent.permissions import PermissionTable, normalize_table, resolve_permission
from aimate_chat.agent.structs import (
    ParsedToolCall,
    ToolCall,
    ToolCallStatus,
    ToolExecutionResult,
    ToolPermission,
)
from aimate_chat.exceptions import (
    ToolCallNotFoundError,
    ToolError,
    ToolInputValidationError,
    ToolStateError,
)
from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes
from aimate_chat.tools.registry import ToolRegistry
from aimate_chat.tools.validation import validate_parameters


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


class ToolExecutionGate:
    """
    The Safe Runner.

    Owns the tool-call registry, applies the permission gate when a call is
    constructed, and drives each call through its lifecycle:

    - ``never``  -> declined (provider never invoked)
    - ``always`` -> pending -> running -> completed | failed
    - ``ask``    -> awaiting_approval, then approve() or decline()

    Records are immutable; every update replaces the record by id.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permissions: Optional[PermissionTable] = None,
        bus: Optional[EventBus] = None,
        timeout_seconds: Optional[float] = 60.0,
    ):
        self._registry = registry
        self._permissions = normalize_table(permissions or {})
        self._bus = bus
        self._timeout = timeout_seconds
        self._calls: Dict[str, ToolCall] = {}
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger("ToolExecutionGate")

    # --- Queries ---

    @property
    def calls(self) -> List[ToolCall]:
        return list(self._calls.values())

    def get(self, call_id: str) -> ToolCall:
        call = self._calls.get(call_id)
        if call is None:
            raise ToolCallNotFoundError(f"Unknown tool call: {call_id}", call_id=call_id)
        return call

    def calls_for_message(self, message_id: str) -> List[ToolCall]:
        return [c for c in self._calls.values() if c.message_id == message_id]

    def set_permissions(self, permissions: PermissionTable) -> None:
        """Affects calls constructed from now on only."""
        self._permissions = normalize_table(permissions or {})

    # --- Construction ---

    async def create_calls(
        self, parsed: Iterable[ParsedToolCall], message_id: Optional[str] = None
    ) -> List[ToolCall]:
        """Register one tool call per parsed invocation, gated by permission."""
        created = []
        for item in parsed:
            permission = resolve_permission(
                self._permissions, item.server_id, item.tool_name
            )
            call = await self._create(
                item.server_id, item.tool_name, item.parameters, permission, message_id
            )
            created.append(call)
        return created

    async def _create(
        self,
        server_id: str,
        tool_name: str,
        parameters: Dict,
        permission: ToolPermission,
        message_id: Optional[str],
        status: Optional[ToolCallStatus] = None,
    ) -> ToolCall:
        now = time.time()
        if status is None:
            status = {
                ToolPermission.NEVER: ToolCallStatus.DECLINED,
                ToolPermission.ALWAYS: ToolCallStatus.PENDING,
                ToolPermission.ASK: ToolCallStatus.AWAITING_APPROVAL,
            }[permission]

        if status == ToolCallStatus.DECLINED:
            call = ToolCall(
                id=_new_call_id(),
                server_id=server_id,
                tool_name=tool_name,
                parameters=dict(parameters),
                status=ToolCallStatus.DECLINED,
                permission=permission,
                started_at=now,
                error="Tool execution is not permitted",
                completed_at=now,
                message_id=message_id,
            )
        else:
            call = ToolCall(
                id=_new_call_id(),
                server_id=server_id,
                tool_name=tool_name,
                parameters=dict(parameters),
                status=status,
                permission=permission,
                started_at=now,
                message_id=message_id,
            )

        async with self._lock:
            self._calls[call.id] = call

        self._logger.info(
            "Tool call %s created for %s/%s (%s)",
            call.id,
            server_id,
            tool_name,
            call.status.value,
        )
        await self._emit(EventTypes.TOOL_CALL_CREATED, call)
        if call.status == ToolCallStatus.AWAITING_APPROVAL:
            await self._emit(EventTypes.TOOL_CONFIRMATION_REQUESTED, call)
        return call

    # --- User decisions ---

    async def approve(self, call_id: str) -> ToolCall:
        """awaiting_approval -> pending, then run it. Returns the final record."""
        await self._transition(call_id, ToolCallStatus.PENDING)
        return await self._execute(call_id)

    async def decline(self, call_id: str) -> ToolCall:
        return await self._transition(
            call_id,
            ToolCallStatus.DECLINED,
            error="Declined by user",
            completed_at=time.time(),
        )

    async def retry(self, call_id: str) -> ToolCall:
        """
        Re-run a finished call as a new call with the same permission.

        The retry request itself counts as approval for ``ask`` tools.
        """
        original = self.get(call_id)
        if not original.status.is_terminal:
            raise ToolStateError(
                f"Tool call {call_id} is still {original.status.value}",
                call_id=call_id,
                current=original.status,
            )

        permission = original.permission
        call = await self._create(
            original.server_id,
            original.tool_name,
            original.parameters,
            permission,
            original.message_id,
            status=(
                ToolCallStatus.DECLINED
                if permission == ToolPermission.NEVER
                else ToolCallStatus.PENDING
            ),
        )

        if call.status == ToolCallStatus.PENDING:
            return await self._execute(call.id)
        return call

    # --- Execution ---

    async def run_pending(self, call_ids: Optional[Iterable[str]] = None) -> List[ToolCall]:
        """Execute every pending call (or the given ones) concurrently."""
        if call_ids is None:
            targets = [c.id for c in self.calls if c.status == ToolCallStatus.PENDING]
        else:
            targets = [
                cid for cid in call_ids
                if self.get(cid).status == ToolCallStatus.PENDING
            ]
        if not targets:
            return []
        return list(await asyncio.gather(*(self._execute(cid) for cid in targets)))

    async def _execute(self, call_id: str) -> ToolCall:
        call = self.get(call_id)

        # 1. Validation Barrier
        definition = await self._registry.get_definition(call.server_id, call.tool_name)
        if definition is None:
            return await self._fail(
                call_id, f"Tool not found: {call.server_id}/{call.tool_name}"
            )

        errors = validate_parameters(definition.parameter_schema, call.parameters)
        if errors:
            rejection = ToolInputValidationError(
                "Invalid parameters: " + "; ".join(errors),
                tool_name=call.tool_name,
                errors=errors,
            )
            self._logger.warning("Tool call %s rejected: %s", call_id, rejection.message)
            return await self._fail(call_id, rejection.message)

        # 2. Atomic Execution with Timeout
        await self._transition(call_id, ToolCallStatus.RUNNING)
        self._logger.info("Executing %s/%s (ID: %s)", call.server_id, call.tool_name, call_id)
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._registry.execute(call.server_id, call.tool_name, call.parameters),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self._logger.error("Tool %s timed out after %ss", call.tool_name, self._timeout)
            return await self._fail(
                call_id, f"Execution timed out after {self._timeout} seconds."
            )
        except ToolError as e:
            # Domain specific errors (safe)
            self._logger.warning("Tool %s failed: %s", call.tool_name, e.user_hint)
            return await self._fail(call_id, e.message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Unexpected crashes (catch-all barrier)
            self._logger.exception("Unexpected error in tool %s", call.tool_name)
            return await self._fail(call_id, f"System Error: {e}")

        if not result.execution_time_ms:
            result = dataclasses.replace(
                result, execution_time_ms=(time.monotonic() - start_time) * 1000
            )

        if result.success:
            return await self._transition(
                call_id, ToolCallStatus.COMPLETED, result=result, completed_at=time.time()
            )
        return await self._fail(
            call_id, result.error_message or "Tool reported failure", result=result
        )

    async def _fail(
        self, call_id: str, error: str, result: Optional[ToolExecutionResult] = None
    ) -> ToolCall:
        return await self._transition(
            call_id,
            ToolCallStatus.FAILED,
            error=error,
            result=result,
            completed_at=time.time(),
        )

    async def _transition(self, call_id: str, status: ToolCallStatus, **changes) -> ToolCall:
        """Check the transition table, then merge the new record by id."""
        async with self._lock:
            current = self.get(call_id)
            check_tool_transition(current.status, status, call_id)
            updated = dataclasses.replace(current, status=status, **changes)
            self._calls[call_id] = updated

        await self._emit(EventTypes.TOOL_CALL_UPDATED, updated)
        return updated

    async def _emit(self, event_type: EventTypes, call: ToolCall) -> None:
        if self._bus is not None:
            await self._bus.emit(event_type, {"tool_call": call})
