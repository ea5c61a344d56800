"""Connection handling and the shared write path for Storage."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from memory_vault.backend import Backend, open_backend
from memory_vault.config import Settings, get_settings, resolve_db_path
from memory_vault.errors import SecretDetectedError, ValidationError
from memory_vault.logging import get_logger
from memory_vault.migrations import get_schema_version, init_schema
from memory_vault.models import ArchivableKind
from memory_vault.sanitize import sanitize_fields
from memory_vault.security import check_fields_for_secrets

log = get_logger("storage")

_KIND_VALUES = {k.value for k in ArchivableKind}


def escape_like(query: str) -> str:
    """Escape LIKE wildcards so the query matches literally."""
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def parse_kind(kind: ArchivableKind | str) -> ArchivableKind:
    """Resolve a kind name, rejecting anything outside the archivable set."""
    if isinstance(kind, ArchivableKind):
        return kind
    try:
        return ArchivableKind(kind)
    except ValueError:
        raise ValidationError(
            f"Invalid kind {kind!r}. Use: {[k.value for k in ArchivableKind]}"
        ) from None


def parse_kinds(kinds: list[ArchivableKind | str] | None) -> list[ArchivableKind]:
    """Validate every requested kind before anything runs. None means all kinds."""
    if kinds is None:
        return list(ArchivableKind)
    invalid = [k for k in kinds if not isinstance(k, ArchivableKind) and k not in _KIND_VALUES]
    if invalid:
        raise ValidationError(
            f"Invalid kind(s): {', '.join(map(str, invalid))}. "
            f"Use: {[k.value for k in ArchivableKind]}"
        )
    parsed: list[ArchivableKind] = []
    for kind in kinds:
        member = parse_kind(kind)
        if member not in parsed:
            parsed.append(member)
    return parsed


class StorageBase:
    """Owns the backend handle, the lock and the sanitize/secret-gate step."""

    def __init__(self, settings: Settings | None = None, cwd: Path | None = None):
        self.settings = settings or get_settings()
        self._lock = threading.RLock()  # Reentrant lock for nested calls
        self._call_depth = 0
        self.backend: Backend = open_backend(
            self.settings, resolve_db_path(self.settings, cwd), on_connect=init_schema
        )
        log.info("Storage initialized with db_path={}", self.backend.path)

    @property
    def db_path(self) -> Path:
        return self.backend.path

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read operations with thread safety."""
        with self._lock:
            yield self.backend.connection()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for transactions with thread safety."""
        with self._lock:
            with self.backend.transaction() as conn:
                yield conn

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.backend.close()

    def get_schema_version(self) -> int:
        """Get current database schema version."""
        with self._connection() as conn:
            return get_schema_version(conn)

    # ========== Write Path ==========

    def _require(self, **fields: str | None) -> None:
        """Reject blank required fields.

        Raises:
            ValidationError: Naming the first missing field.
        """
        for name, value in fields.items():
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} cannot be empty")

    def _prepare(self, **fields: str | None) -> dict[str, str | None]:
        """Truncate every field, then run the secret gate over the result.

        Returns:
            The sanitized fields, ready to bind.

        Raises:
            SecretDetectedError: If any field looks like a credential.
        """
        sanitized = sanitize_fields(fields, self.settings.max_field_length)
        scan = check_fields_for_secrets(sanitized)
        if scan.contains_secret:
            log.warning(
                "Blocked write: {} in field(s) {}",
                ", ".join(scan.signature_names),
                ", ".join(scan.matches),
            )
            raise SecretDetectedError(scan)
        return sanitized

    def _visibility(self, include_archived: bool) -> str:
        """WHERE fragment implementing the active-only default."""
        return "1=1" if include_archived else "archived_at IS NULL"

    def _like_clause(self, columns: tuple[str, ...]) -> str:
        return "(" + " OR ".join(f"{col} LIKE ? ESCAPE '\\'" for col in columns) + ")"

    def _search_params(self, query: str, columns: tuple[str, ...]) -> tuple[str, ...]:
        """Build LIKE parameters for a keyword search.

        Raises:
            ValidationError: If the query is blank.
        """
        if not query or not query.strip():
            raise ValidationError("query cannot be empty")
        pattern = f"%{escape_like(query.strip())}%"
        return tuple(pattern for _ in columns)
