# toolmemory/storage/models.py
from __future__ import annotations

import json
from datetime import datetime, UTC
from typing import Any, Dict, List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ToolMemoryEntry(Base):
    """One persisted tool invocation. Rows are append-only."""

    __tablename__ = "tool_memory_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    session_id = Column(String(128), nullable=False)
    tool_name = Column(String(128), nullable=False)
    input_hash = Column(String(128), nullable=False)
    input_json = Column(Text, nullable=False)  # canonical params, compared on hash match

    output_json = Column(Text, nullable=False, default="{}")
    resource_ids_json = Column(Text, nullable=False, default="[]")
    resource_types_json = Column(Text, nullable=False, default="{}")  # id -> declared type

    execution_time_ms = Column(Float, nullable=False, default=0)
    tokens_used = Column(Float, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
    error = Column(Text, nullable=True)

    # naive UTC
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    expires_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_tool_memory_dedup_key", "tenant_id", "session_id", "tool_name", "input_hash"),
        Index("ix_tool_memory_session_created", "tenant_id", "session_id", "created_at"),
        Index("ix_tool_memory_expires_at", "expires_at"),
    )

    @property
    def output(self) -> Dict[str, Any]:
        return json.loads(self.output_json or "{}")

    @property
    def resource_ids(self) -> List[str]:
        return json.loads(self.resource_ids_json or "[]")

    @property
    def resource_types(self) -> Dict[str, str]:
        return json.loads(self.resource_types_json or "{}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "input_hash": self.input_hash,
            "output": self.output,
            "resource_ids": self.resource_ids,
            "execution_time_ms": self.execution_time_ms,
            "tokens_used": self.tokens_used,
            "success": bool(self.success),
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
