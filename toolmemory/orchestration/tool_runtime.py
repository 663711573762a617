from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from toolmemory.core.types import (
    CreatedResource,
    ToolCallRecord,
    ToolExecutionContext,
    ToolResult,
    ToolResultMetadata,
)
from toolmemory.orchestration.tool_memory import TTL, ToolMemory
from toolmemory.storage.models import ToolMemoryEntry
from toolmemory.utils.paths import resolve_parameter_templates

log = logging.getLogger("app.tool_runtime")

Executor = Callable[[str, Dict[str, Any], ToolExecutionContext], Awaitable[Union[ToolResult, Mapping[str, Any]]]]


def result_from_entry(entry: ToolMemoryEntry) -> ToolResult:
    declared = entry.resource_types
    return ToolResult(
        success=bool(entry.success),
        data=entry.output,
        error=entry.error,
        metadata=ToolResultMetadata(
            execution_time_ms=0,
            tokens_used=0,
            cached=True,
            resources_created=[CreatedResource(id=rid, type=declared.get(rid)) for rid in entry.resource_ids],
        ),
    )


class ToolRuntime:
    """Runs tools for one pipeline session through the tool memory cache."""

    def __init__(self, memory: ToolMemory, executor: Executor, context: ToolExecutionContext):
        self.memory = memory
        self.executor = executor
        self.context = context
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _claim(self, key: str) -> AsyncIterator[None]:
        # A key's lock lives only while some call holds or waits on it
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def execute(
        self,
        tool_name: str,
        params: Dict[str, Any],
        *,
        use_cache: bool = True,
        ttl: Optional[TTL] = None,
        resolve_templates: bool = False,
    ) -> ToolResult:
        session_id = self.context.session_id
        tenant_id = self.context.tenant_id
        if resolve_templates and session_id:
            params = resolve_parameter_templates(
                params, await self.memory.get_session_results(session_id, tenant_id),
            )
        if not (use_cache and session_id):
            return await self._run(tool_name, params)

        # Identical concurrent calls wait here and pick up the first one's entry
        async with self._claim(f"{tool_name}:{self.memory.hash_params(params)}"):
            cached = await self.memory.find_previous(tool_name, params, session_id, tenant_id)
            if cached is not None:
                log.info({"event": "tool_cache_hit", "tool": tool_name, "session_id": session_id, "entry_id": cached.id})
                return result_from_entry(cached)
            result = await self._run(tool_name, params)
            await self.memory.store(tool_name, params, result, session_id, tenant_id, ttl)
            return result

    async def _run(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        start = time.perf_counter()
        try:
            raw = await self.executor(tool_name, params, self.context)
            result = raw if isinstance(raw, ToolResult) else ToolResult.model_validate(raw)
        except Exception as exc:
            log.warning({"event": "tool_failed", "tool": tool_name, "error": str(exc)}, exc_info=True)
            result = ToolResult(success=False, error=str(exc) or exc.__class__.__name__)
        if result.metadata.execution_time_ms is None:
            result.metadata.execution_time_ms = round((time.perf_counter() - start) * 1000, 3)
        return result

    async def execute_sequence(self, calls: List[Dict[str, Any]]) -> List[ToolCallRecord]:
        """Run calls in order; stops after the first failed call."""
        records: List[ToolCallRecord] = []
        for call in calls:
            record = await self._record(call)
            records.append(record)
            if not record.result.success:
                break
        return records

    async def execute_parallel(self, calls: List[Dict[str, Any]]) -> List[ToolCallRecord]:
        return list(await asyncio.gather(*(self._record(call) for call in calls)))

    async def _record(self, call: Dict[str, Any]) -> ToolCallRecord:
        started_at = datetime.now(UTC)
        result = await self.execute(call["name"], call.get("params", {}))
        return ToolCallRecord(
            tool_name=call["name"],
            input=call.get("params", {}),
            result=result,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )
