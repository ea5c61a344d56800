"""Configuration settings for memory-vault."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

# Directory name used for project-local and global stores
DATA_DIR_NAME = ".memory-vault"
DB_FILE_NAME = "memory.db"


class Settings(BaseSettings):
    """memory-vault configuration."""

    # Database location
    db_path: Path | None = Field(
        default=None,
        description="Explicit path to the SQLite database (overrides everything else)",
    )
    project_dir: Path | None = Field(
        default=None,
        description="Project root; the database lives in <project_dir>/.memory-vault/",
    )

    # Persistence backend
    backend: str = Field(
        default="sqlite",
        description=(
            "Persistence backend: 'sqlite' (file-backed transactional engine) or "
            "'snapshot' (in-memory database re-serialized to disk after every write)"
        ),
    )
    busy_timeout_seconds: float = Field(
        default=30.0, description="Seconds to wait for a locked database"
    )
    recover_corrupt: bool = Field(
        default=False,
        description=(
            "Move an unreadable database aside and start fresh instead of failing. "
            "The original file is kept as <name>.corrupt-<timestamp>."
        ),
    )

    # Input limits
    max_field_length: int = Field(
        default=10_000, ge=1, description="Maximum characters per stored text field"
    )
    search_limit: int = Field(default=50, ge=1, description="Maximum results per keyword search")

    # Capacity ceilings (active rows, oldest evicted first)
    max_decisions: int = Field(default=1000, ge=1, description="Maximum active decisions")
    max_discoveries: int = Field(default=500, ge=1, description="Maximum active discoveries")

    # Age-based expiry
    session_retention_days: int = Field(
        default=90, ge=0, description="Days to keep ended sessions"
    )
    resolved_question_retention_days: int = Field(
        default=30, ge=0, description="Days to keep resolved open questions"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(
        default="pretty", description="Log format: 'pretty' (human-readable) or 'json' (structured)"
    )

    model_config = {"env_prefix": "MEMORY_VAULT_"}


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()


def resolve_db_path(settings: Settings, cwd: Path | None = None) -> Path:
    """Work out where the database file lives.

    Resolution order:
        1. ``settings.db_path`` (MEMORY_VAULT_DB_PATH)
        2. ``settings.project_dir`` (MEMORY_VAULT_PROJECT_DIR)
        3. ``<cwd>/.memory-vault/`` when cwd already has one or is a git checkout
        4. ``~/.memory-vault/`` as the global fallback

    Args:
        settings: Active settings.
        cwd: Directory to treat as the working directory (defaults to Path.cwd()).

    Returns:
        Path to the database file (not guaranteed to exist yet).
    """
    if settings.db_path is not None:
        return settings.db_path.expanduser()

    if settings.project_dir is not None:
        return settings.project_dir.expanduser() / DATA_DIR_NAME / DB_FILE_NAME

    cwd = cwd or Path.cwd()
    if (cwd / DATA_DIR_NAME).exists() or (cwd / ".git").exists():
        return cwd / DATA_DIR_NAME / DB_FILE_NAME

    return Path.home() / DATA_DIR_NAME / DB_FILE_NAME


def ensure_data_dir(db_path: Path) -> None:
    """Ensure data directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
