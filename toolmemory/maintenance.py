"""One-shot expiry sweep for external schedulers (cron, k8s CronJob).

    python -m toolmemory.maintenance
"""
from __future__ import annotations

import asyncio
import logging

from toolmemory.core.logging import configure_logging
from toolmemory.core.settings import get_settings
from toolmemory.orchestration.tool_memory import ToolMemory


async def run_cleanup(memory: ToolMemory | None = None) -> int:
    memory = memory or ToolMemory()
    return await memory.cleanup_expired()


def main() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level)
    removed = asyncio.run(run_cleanup())
    logging.getLogger("app.maintenance").info({"event": "cleanup_done", "removed": removed})


if __name__ == "__main__":
    main()
