# toolmemory/orchestration/tool_memory.py
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from toolmemory.core.metrics import TM_EVICTED, TM_EXPIRED, TM_LOOKUPS, TM_STORED
from toolmemory.core.settings import AppSettings, get_settings
from toolmemory.core.types import (
    DEFAULT_RESOURCE_TYPE,
    RESOURCE_TYPES,
    ResourceReference,
    SessionStats,
    ToolResult,
)
from toolmemory.storage.models import ToolMemoryEntry
from toolmemory.storage.repo import ToolMemoryRepo
from toolmemory.utils.hashing import canon_params, input_hash
from toolmemory.utils.paths import get_path

log = logging.getLogger("app.tool_memory")

TTL = Union[timedelta, int, float]

_NAME_FIELDS = ("name", "audienceName", "chartName")
_UNSET: Any = object()


def utcnow() -> datetime:
    # Stored timestamps are naive UTC
    return datetime.now(UTC).replace(tzinfo=None)


def infer_resource_type(tool_name: str) -> str:
    """Fallback type for resources whose executor did not declare one.

    First vocabulary word contained in the tool name wins.
    """
    lowered = tool_name.lower()
    for kind in RESOURCE_TYPES:
        if kind in lowered:
            return kind
    return DEFAULT_RESOURCE_TYPE


def _as_timedelta(ttl: Optional[TTL]) -> Optional[timedelta]:
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        return ttl
    return timedelta(seconds=ttl)


class ToolMemory:
    """Session-scoped memory of tool executions.

    Deduplicates repeated invocations, keeps outputs for a bounded time and
    lets later pipeline steps read earlier outputs back by tool name.
    """

    def __init__(
        self,
        repo: Optional[ToolMemoryRepo] = None,
        settings: Optional[AppSettings] = None,
        *,
        default_ttl: Optional[TTL] = _UNSET,
        max_entries_per_session: Optional[int] = None,
        enable_deduplication: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.repo = repo or ToolMemoryRepo()
        if default_ttl is _UNSET:
            default_ttl = self.settings.tool_memory_default_ttl_sec
        self.default_ttl = _as_timedelta(default_ttl)
        self.max_entries_per_session = (
            max_entries_per_session
            if max_entries_per_session is not None
            else self.settings.tool_memory_max_entries_per_session
        )
        self.enable_deduplication = (
            enable_deduplication
            if enable_deduplication is not None
            else self.settings.tool_memory_enable_dedup
        )
        self.clock = clock

    @property
    def eviction_batch(self) -> int:
        return max(1, math.ceil(self.max_entries_per_session * self.settings.tool_memory_eviction_fraction))

    def hash_params(self, params: Mapping[str, Any]) -> str:
        return input_hash(params, self.settings.TOOL_ARGS_HASH_ALGO, self.settings.TOOL_ARGS_HASH_LENGTH)

    async def find_previous(
        self, tool_name: str, params: Mapping[str, Any], session_id: str, tenant_id: str,
    ) -> Optional[ToolMemoryEntry]:
        """Newest successful, unexpired entry for the same call, or None."""
        if not self.enable_deduplication:
            TM_LOOKUPS.labels(result="disabled").inc()
            return None
        entry = self.repo.find_latest_success(
            tenant_id,
            session_id,
            tool_name,
            self.hash_params(params),
            canon_params(params),
            self.clock(),
        )
        result = "hit" if entry is not None else "miss"
        TM_LOOKUPS.labels(result=result).inc()
        log.debug({"event": f"tool_memory_{result}", "tool": tool_name, "session_id": session_id, "tenant_id": tenant_id})
        return entry

    async def store(
        self,
        tool_name: str,
        params: Mapping[str, Any],
        result: Union[ToolResult, Mapping[str, Any]],
        session_id: str,
        tenant_id: str,
        ttl: Optional[TTL] = None,
    ) -> ToolMemoryEntry:
        if not isinstance(result, ToolResult):
            result = ToolResult.model_validate(result)
        now = self.clock()
        lifetime = _as_timedelta(ttl) if ttl is not None else self.default_ttl
        meta = result.metadata
        resources = meta.resources_created

        entry = ToolMemoryEntry(
            tenant_id=tenant_id,
            session_id=session_id,
            tool_name=tool_name,
            input_hash=self.hash_params(params),
            input_json=canon_params(params),
            output_json=json.dumps(result.data if result.success else {}, ensure_ascii=False),
            resource_ids_json=json.dumps([r.id for r in resources]),
            resource_types_json=json.dumps({r.id: r.type for r in resources if r.type}),
            execution_time_ms=meta.execution_time_ms or 0,
            tokens_used=meta.tokens_used or 0,
            success=result.success,
            error=None if result.success else (result.error or "unknown error"),
            created_at=now,
            expires_at=now + lifetime if lifetime is not None else None,
        )
        entry, evicted = self.repo.insert_with_eviction(
            entry, max_entries=self.max_entries_per_session, evict_count=self.eviction_batch,
        )

        TM_STORED.labels(outcome="success" if result.success else "failure").inc()
        if evicted:
            TM_EVICTED.inc(evicted)
            log.info({"event": "tool_memory_evicted", "session_id": session_id, "tenant_id": tenant_id, "removed": evicted})
        log.debug({"event": "tool_memory_stored", "tool": tool_name, "entry_id": entry.id, "success": result.success})
        return entry

    async def get_session_resources(self, session_id: str, tenant_id: str) -> List[ResourceReference]:
        refs: List[ResourceReference] = []
        for entry in self.repo.list_session(tenant_id, session_id, success_only=True):
            ids = entry.resource_ids
            if not ids:
                continue
            declared = entry.resource_types
            output = entry.output
            name = next((output[f] for f in _NAME_FIELDS if isinstance(output.get(f), str)), None)
            for rid in ids:
                refs.append(ResourceReference(
                    type=declared.get(rid) or infer_resource_type(entry.tool_name),
                    id=rid,
                    name=name,
                ))
        return refs

    async def get_session_results(self, session_id: str, tenant_id: str) -> Dict[str, Any]:
        """Latest output per tool name plus ``<tool>_<n>`` keys for every call (n from 1)."""
        results: Dict[str, Any] = {}
        calls: Dict[str, int] = {}
        for entry in self.repo.list_session(tenant_id, session_id, success_only=True):
            output = entry.output
            calls[entry.tool_name] = calls.get(entry.tool_name, 0) + 1
            results[entry.tool_name] = output
            results[f"{entry.tool_name}_{calls[entry.tool_name]}"] = output
        return results

    async def get_session_history(self, session_id: str, tenant_id: str) -> Dict[str, List[Any]]:
        history: Dict[str, List[Any]] = {}
        for entry in self.repo.list_session(tenant_id, session_id, success_only=True):
            history.setdefault(entry.tool_name, []).append(entry.output)
        return history

    async def resolve_reference(self, path: str, session_id: str, tenant_id: str, default: Any = None) -> Any:
        """Value at a dot path such as ``create_audience.audienceId``; ``default`` if absent."""
        return get_path(await self.get_session_results(session_id, tenant_id), path, default)

    async def get_session_stats(self, session_id: str, tenant_id: str) -> SessionStats:
        stats = SessionStats()
        for entry in self.repo.list_session(tenant_id, session_id):
            stats.total_calls += 1
            if entry.success:
                stats.successful_calls += 1
            else:
                stats.failed_calls += 1
            stats.total_execution_time_ms += entry.execution_time_ms or 0
            stats.total_tokens_used += entry.tokens_used or 0
            stats.resources_created += len(entry.resource_ids)
        return stats

    async def cleanup_expired(self) -> int:
        removed = self.repo.delete_expired(self.clock())
        if removed:
            TM_EXPIRED.inc(removed)
        log.info({"event": "tool_memory_cleanup", "removed": removed})
        return removed

    async def clear_session(self, session_id: str, tenant_id: str) -> None:
        removed = self.repo.delete_session(tenant_id, session_id)
        log.info({"event": "tool_memory_session_cleared", "session_id": session_id, "tenant_id": tenant_id, "removed": removed})
