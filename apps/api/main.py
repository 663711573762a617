# apps/api/main.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from toolmemory.core.logging import configure_logging, request_logging_middleware
from toolmemory.core.settings import get_settings
from toolmemory.orchestration.tool_memory import ToolMemory
from toolmemory.utils.paths import MISSING

settings = get_settings()
configure_logging(level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.middleware("http")(request_logging_middleware)

_memory: ToolMemory | None = None


def get_memory() -> ToolMemory:
    global _memory
    if _memory is None:
        _memory = ToolMemory()
    return _memory


def tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    # Caller authentication happens upstream; the gateway forwards the resolved org id
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="missing X-Tenant-Id header")
    return x_tenant_id


class LookupIn(BaseModel):
    tool_name: str
    params: Dict[str, Any] = Field(default_factory=dict)


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/config")
async def config() -> JSONResponse:
    memory = get_memory()
    return JSONResponse(content={
        "app_name": settings.app_name,
        "env": settings.app_env,
        "db_dialect": settings.db_dialect,
        "log_level": settings.log_level,
        "tool_memory": {
            "default_ttl_sec": int(memory.default_ttl.total_seconds()) if memory.default_ttl is not None else None,
            "max_entries_per_session": memory.max_entries_per_session,
            "eviction_batch": memory.eviction_batch,
            "deduplication": memory.enable_deduplication,
            "hash_algo": settings.TOOL_ARGS_HASH_ALGO,
        },
    })


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/sessions/{session_id}/lookup")
async def lookup(session_id: str, body: LookupIn, tenant: str = Depends(tenant_id)) -> JSONResponse:
    entry = await get_memory().find_previous(body.tool_name, body.params, session_id, tenant)
    return JSONResponse(content={"hit": entry is not None, "entry": entry.to_dict() if entry else None})


@app.get("/sessions/{session_id}/stats")
async def session_stats(session_id: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    stats = await get_memory().get_session_stats(session_id, tenant)
    return JSONResponse(content=stats.model_dump())


@app.get("/sessions/{session_id}/resources")
async def session_resources(session_id: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    refs = await get_memory().get_session_resources(session_id, tenant)
    return JSONResponse(content={"resources": [r.model_dump(exclude_none=True) for r in refs]})


@app.get("/sessions/{session_id}/results")
async def session_results(session_id: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    return JSONResponse(content={"results": await get_memory().get_session_results(session_id, tenant)})


@app.get("/sessions/{session_id}/history")
async def session_history(session_id: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    return JSONResponse(content={"history": await get_memory().get_session_history(session_id, tenant)})


@app.get("/sessions/{session_id}/resolve")
async def resolve(session_id: str, path: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    value = await get_memory().resolve_reference(path, session_id, tenant, default=MISSING)
    if value is MISSING:
        return JSONResponse(content={"path": path, "found": False, "value": None})
    return JSONResponse(content={"path": path, "found": True, "value": value})


@app.delete("/sessions/{session_id}")
async def clear_session(session_id: str, tenant: str = Depends(tenant_id)) -> JSONResponse:
    await get_memory().clear_session(session_id, tenant)
    return JSONResponse(content={"cleared": True})


@app.post("/maintenance/cleanup-expired")
async def cleanup_expired() -> JSONResponse:
    return JSONResponse(content={"removed": await get_memory().cleanup_expired()})
