"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: LOPEN_MEMORY_
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".lopen-memory"
DEFAULT_SKILLS_DIR = Path.home() / ".agents" / "skills"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LOPEN_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    db: Path | None = Field(default=None, description="Explicit database file (LOPEN_MEMORY_DB)")
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Data storage directory")
    db_name: str = Field(default="lopen-memory.db", description="SQLite database name")

    # Agent skill installation
    skills_dir: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("LOPEN_MEMORY_SKILLS_DIR", "AGENTS_SKILLS_DIR"),
        description="Directory agent skills are installed into",
    )

    # Logging
    log_level: str = Field(default="WARNING", description="Log level name")
    log_file: Path | None = Field(default=None, description="Optional log file")

    @property
    def db_path(self) -> Path:
        if self.db is not None:
            return self.db
        return self.data_dir / self.db_name

    def resolve_db_path(self, override: str | Path | None = None) -> Path:
        """Database location: explicit flag > environment > default under home."""
        if override:
            return Path(override)
        return self.db_path

    def resolve_skills_dir(self, override: str | Path | None = None) -> Path:
        if override:
            return Path(override)
        return self.skills_dir or DEFAULT_SKILLS_DIR


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
