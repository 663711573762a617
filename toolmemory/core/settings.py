# toolmemory/core/settings.py
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    app_env: str = "dev"
    app_name: str = "Tool Memory Service"
    app_host: str = "127.0.0.1"
    app_port: int = 8000

    log_level: str = "INFO"
    db_url: str = "sqlite:///data/tool_memory.db"

    # Tool memory cache
    tool_memory_default_ttl_sec: Optional[int] = Field(default=3600, validation_alias="TOOL_MEMORY_DEFAULT_TTL_SEC")
    tool_memory_max_entries_per_session: int = Field(default=100, validation_alias="TOOL_MEMORY_MAX_ENTRIES_PER_SESSION")
    tool_memory_eviction_fraction: float = Field(default=0.10, validation_alias="TOOL_MEMORY_EVICTION_FRACTION")
    tool_memory_enable_dedup: bool = Field(default=True, validation_alias="TOOL_MEMORY_ENABLE_DEDUP")

    # Input hashing (None keeps the full digest)
    TOOL_ARGS_HASH_ALGO: str = Field(default="sha256", validation_alias="TOOL_ARGS_HASH_ALGO")
    TOOL_ARGS_HASH_LENGTH: Optional[int] = Field(default=None, validation_alias="TOOL_ARGS_HASH_LENGTH")

    @property
    def db_dialect(self) -> str:
        return self.db_url.split(":", 1)[0] if ":" in self.db_url else self.db_url


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings()
