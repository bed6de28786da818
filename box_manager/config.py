"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the store, the web app and the CLI."""

    model_config = SettingsConfigDict(
        env_prefix="BOX_MANAGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Box Manager",
        description="Human friendly name shown by the API.",
    )
    environment: Literal["development", "test", "production"] = Field(
        default="development",
        description="Deployment environment flag.",
    )
    storage_backend: Literal["json", "sql", "memory"] = Field(
        default="json",
        description="Where the inventory snapshot is persisted.",
    )
    data_path: Path = Field(
        default=Path("box_manager_data.json"),
        description="JSON document used by the json storage backend.",
    )
    database_url: str = Field(
        default="sqlite:///./box_manager.db",
        description="SQLAlchemy URL used by the sql storage backend.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    default_vans: list[str] = Field(
        default_factory=lambda: ["Van 1", "Van 2", "Van 3"],
        description="Vans seeded on first run and after a wipe.",
    )
    export_dir: Path = Field(
        default=Path("exports"),
        description="Directory that receives files written by the CLI.",
    )
    log_level: str = Field(default="INFO")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    @field_validator("default_vans")
    @classmethod
    def _strip_vans(cls, value: list[str]) -> list[str]:
        vans = [name.strip() for name in value if name and name.strip()]
        if not vans:
            raise ValueError("At least one default van is required")
        return vans

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
