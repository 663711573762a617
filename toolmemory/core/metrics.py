# toolmemory/core/metrics.py
from __future__ import annotations

from prometheus_client import Counter

TM_LOOKUPS = Counter('tool_memory_lookups_total', 'Dedup lookups by result', ['result'])
TM_STORED = Counter('tool_memory_stored_total', 'Entries persisted by outcome', ['outcome'])
TM_EVICTED = Counter('tool_memory_evicted_total', 'Entries removed by per-session eviction')
TM_EXPIRED = Counter('tool_memory_expired_total', 'Entries removed by the expiry sweeper')
