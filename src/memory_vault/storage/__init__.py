"""Record store for memory-vault.

``Storage`` is assembled from per-kind mixins over ``StorageBase``, which owns
the backend handle, the lock and the sanitize/secret-gate write path.
"""

from __future__ import annotations

from pathlib import Path

from memory_vault.backend import reconnecting
from memory_vault.errors import (
    BackendUnavailableError,
    MemoryVaultError,
    SchemaVersionError,
    SecretDetectedError,
    StoreCorruptedError,
    ValidationError,
)
from memory_vault.models import (
    ArchivableKind,
    ArchiveStats,
    Decision,
    Discovery,
    Entity,
    KindStats,
    MaintenanceResult,
    OpenQuestion,
    Preference,
    QuestionStatus,
    SearchResults,
    Session,
)
from memory_vault.storage.base import StorageBase, escape_like, parse_kind, parse_kinds
from memory_vault.storage.entity_crud import EntityCrudMixin
from memory_vault.storage.knowledge_crud import KnowledgeCrudMixin
from memory_vault.storage.preference_crud import PreferenceCrudMixin
from memory_vault.storage.question_crud import QuestionCrudMixin
from memory_vault.storage.retention import RetentionMixin
from memory_vault.storage.session_crud import SessionCrudMixin

__all__ = [
    "ArchivableKind",
    "ArchiveStats",
    "BackendUnavailableError",
    "Decision",
    "Discovery",
    "Entity",
    "KindStats",
    "MaintenanceResult",
    "MemoryVaultError",
    "OpenQuestion",
    "Preference",
    "QuestionStatus",
    "SchemaVersionError",
    "SearchResults",
    "SecretDetectedError",
    "Session",
    "Storage",
    "StoreCorruptedError",
    "ValidationError",
    "escape_like",
    "parse_kind",
    "parse_kinds",
]


class Storage(
    KnowledgeCrudMixin,
    EntityCrudMixin,
    QuestionCrudMixin,
    SessionCrudMixin,
    PreferenceCrudMixin,
    RetentionMixin,
    StorageBase,
):
    """SQLite-backed store for decisions, discoveries, entities, questions,
    sessions and preferences.

    Usage:
        storage = Storage(Settings(db_path=Path("/tmp/memory.db")))
        storage.add_decision("auth", "Use JWT", rationale="Stateless")
        storage.search("jwt").decisions
        storage.close()
    """

    @property
    def path(self) -> Path:
        """Database file location."""
        return self.db_path

    @reconnecting
    def search(self, query: str, include_archived: bool = False) -> SearchResults:
        """Keyword search across decisions, discoveries, entities and open questions.

        Raises:
            ValidationError: If the query is blank.
        """
        return SearchResults(
            decisions=self.search_decisions(query, include_archived),
            discoveries=self.search_discoveries(query, include_archived),
            entities=self.search_entities(query, include_archived),
            questions=self.search_questions(query, include_archived),
        )

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
