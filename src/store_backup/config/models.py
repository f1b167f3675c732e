"""Pydantic models for connection profiles and backup settings."""

from typing import Literal

from pydantic import BaseModel, Field


class DatabaseProfile(BaseModel):
    """Database connection profile from backup.toml."""

    url: str
    provider: Literal["supabase", "postgres"] = "supabase"
    description: str = ""
    key: str | None = None              # Supabase service role key
    db_password: str | None = None      # For [YOUR-PASSWORD] placeholder substitution
    db_schema: str = Field(default="public", alias="schema")

    model_config = {"populate_by_name": True}


class BackupSettings(BaseModel):
    """Snapshot format and engine tuning from the ``[backup]`` section."""

    format: str = "elfaroukgroup-backup"
    version: str = "2.0"
    schema_tag: str = "elfaroukgroup"
    foreign_format_suffix: str = "-backup"
    batch_insert_size: int = Field(default=500, gt=0)
    export_page_size: int = Field(default=1000, gt=0)
    export_reset_delay: float = 3.0
    import_reset_delay: float = 5.0
    canonical_checksums: bool = False


class BackupConfig(BaseModel):
    """Complete configuration from backup.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    backup: BackupSettings = Field(default_factory=BackupSettings)
