# toolmemory/storage/repo.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, sessionmaker

from toolmemory.storage.database import get_session_factory
from toolmemory.storage.models import ToolMemoryEntry


class ToolMemoryRepo:
    """Persistence for tool memory entries.

    Every session-scoped query filters on (tenant_id, session_id); only the
    expiry sweep works across tenants.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._sessions = session_factory or get_session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        with self._sessions() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def insert_with_eviction(
        self, entry: ToolMemoryEntry, *, max_entries: int, evict_count: int,
    ) -> Tuple[ToolMemoryEntry, int]:
        """Insert ``entry``, first dropping the oldest ``evict_count`` rows of
        its session when the session already holds ``max_entries`` or more.

        Count, delete and insert share one transaction.
        """
        evicted = 0
        with self.session_scope() as s:
            count = self._session_query(s, entry.tenant_id, entry.session_id).count()
            if count >= max_entries and evict_count > 0:
                oldest = [
                    row_id
                    for (row_id,) in self._session_query(s, entry.tenant_id, entry.session_id)
                    .with_entities(ToolMemoryEntry.id)
                    .order_by(ToolMemoryEntry.created_at.asc(), ToolMemoryEntry.id.asc())
                    .limit(evict_count)
                ]
                if oldest:
                    evicted = (
                        s.query(ToolMemoryEntry)
                        .filter(ToolMemoryEntry.id.in_(oldest))
                        .delete(synchronize_session=False)
                    )
            s.add(entry)
            s.flush()
            s.refresh(entry)
        return entry, evicted

    def find_latest_success(
        self,
        tenant_id: str,
        session_id: str,
        tool_name: str,
        input_hash: str,
        input_json: str,
        now: datetime,
    ) -> Optional[ToolMemoryEntry]:
        with self.session_scope() as s:
            return (
                self._session_query(s, tenant_id, session_id)
                .filter(
                    ToolMemoryEntry.tool_name == tool_name,
                    ToolMemoryEntry.input_hash == input_hash,
                    ToolMemoryEntry.input_json == input_json,
                    ToolMemoryEntry.success.is_(True),
                    or_(ToolMemoryEntry.expires_at.is_(None), ToolMemoryEntry.expires_at > now),
                )
                .order_by(ToolMemoryEntry.created_at.desc(), ToolMemoryEntry.id.desc())
                .first()
            )

    def list_session(
        self, tenant_id: str, session_id: str, *, success_only: bool = False,
    ) -> List[ToolMemoryEntry]:
        """Entries of one session, oldest first."""
        with self.session_scope() as s:
            q = self._session_query(s, tenant_id, session_id)
            if success_only:
                q = q.filter(ToolMemoryEntry.success.is_(True))
            return list(q.order_by(ToolMemoryEntry.created_at.asc(), ToolMemoryEntry.id.asc()))

    def count_session(self, tenant_id: str, session_id: str) -> int:
        with self.session_scope() as s:
            return self._session_query(s, tenant_id, session_id).count()

    def delete_expired(self, now: datetime) -> int:
        with self.session_scope() as s:
            return (
                s.query(ToolMemoryEntry)
                .filter(ToolMemoryEntry.expires_at.is_not(None), ToolMemoryEntry.expires_at <= now)
                .delete(synchronize_session=False)
            )

    def delete_session(self, tenant_id: str, session_id: str) -> int:
        with self.session_scope() as s:
            return self._session_query(s, tenant_id, session_id).delete(synchronize_session=False)

    @staticmethod
    def _session_query(s: Session, tenant_id: str, session_id: str):
        return s.query(ToolMemoryEntry).filter(
            ToolMemoryEntry.tenant_id == tenant_id,
            ToolMemoryEntry.session_id == session_id,
        )
