from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36 Edg/133.0.0.0"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GUARDBOT_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    enabled_groups: Annotated[list[str], NoDecode] = Field(default_factory=list)
    db_path: Path = Path("data/guardbot.sqlite3")
    page_size: int = Field(default=20, ge=1)
    request_timeout_s: float = Field(default=10.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    collect_concurrency: int = Field(default=3, ge=1)
    snapshot_history_limit: int = Field(default=100, ge=1)
    change_history_limit: int = Field(default=100, ge=1)
    owner_cache_ttl_seconds: int = Field(default=86400, ge=1)
    collect_cron_hour: str = "*"
    collect_cron_minute: str = "0"
    manual_cooldown_seconds: float = 8.0

    @field_validator("enabled_groups", mode="before")
    @classmethod
    def _parse_groups(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, int):
            return [str(value)]
        if isinstance(value, str):
            chunks = [p.strip() for p in value.split(",") if p.strip()]
            return chunks
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        raise ValueError("GUARDBOT_ENABLED_GROUPS must be comma separated string or list")


settings = Settings()
