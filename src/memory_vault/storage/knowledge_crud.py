"""Decision and discovery CRUD mixin for Storage.

Both kinds are capacity-bounded: every insert runs the maintenance pass inside
the same transaction, so a completed write never leaves the store above its
ceiling.
"""

from __future__ import annotations

import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.errors import ValidationError
from memory_vault.logging import get_logger
from memory_vault.models import ArchivableKind, Decision, Discovery, parse_timestamp

log = get_logger("storage.knowledge_crud")


def row_to_decision(row: sqlite3.Row) -> Decision:
    return Decision(
        id=row["id"],
        topic=row["topic"],
        decision=row["decision"],
        rationale=row["rationale"],
        alternatives=row["alternatives"],
        source=row["source"],
        decided_at=parse_timestamp(row["decided_at"]),
        archived_at=parse_timestamp(row["archived_at"]),
    )


def row_to_discovery(row: sqlite3.Row) -> Discovery:
    return Discovery(
        id=row["id"],
        category=row["category"],
        name=row["name"],
        location=row["location"],
        description=row["description"],
        metadata=row["metadata"],
        confidence=row["confidence"],
        discovered_at=parse_timestamp(row["discovered_at"]),
        archived_at=parse_timestamp(row["archived_at"]),
    )


class KnowledgeCrudMixin:
    """Mixin providing decision and discovery methods for Storage."""

    # ========== Decisions ==========

    @reconnecting
    def add_decision(
        self,
        topic: str,
        decision: str,
        rationale: str | None = None,
        alternatives: str | None = None,
        source: str = "user",
    ) -> int:
        """Record a decision.

        Args:
            topic: Short subject, e.g. "auth".
            decision: What was decided.
            rationale: Why.
            alternatives: Options that were rejected.
            source: Who made the call (defaults to "user").

        Returns:
            The new decision id.

        Raises:
            ValidationError: If topic or decision is blank.
            SecretDetectedError: If any field looks like a credential.
        """
        self._require(topic=topic, decision=decision)
        fields = self._prepare(
            topic=topic,
            decision=decision,
            rationale=rationale,
            alternatives=alternatives,
            source=source or "user",
        )

        with self.transaction() as conn:
            decision_id = conn.execute(
                """
                INSERT INTO decisions (topic, decision, rationale, alternatives, source)
                VALUES (?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    fields["topic"],
                    fields["decision"],
                    fields["rationale"],
                    fields["alternatives"],
                    fields["source"],
                ),
            ).fetchone()[0]
            self._maintain(conn)

        log.info("Stored decision id={} topic={!r}", decision_id, fields["topic"])
        return decision_id

    @reconnecting
    def get_decision(self, decision_id: int, include_archived: bool = False) -> Decision | None:
        """Get a decision by ID."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM decisions WHERE id = ? AND {self._visibility(include_archived)}",
                (decision_id,),
            ).fetchone()
            return row_to_decision(row) if row else None

    @reconnecting
    def search_decisions(self, query: str, include_archived: bool = False) -> list[Decision]:
        """Case-insensitive substring search over topic, decision and rationale."""
        columns = ArchivableKind.DECISIONS.search_columns
        params = self._search_params(query, columns)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM decisions
                WHERE {self._like_clause(columns)} AND {self._visibility(include_archived)}
                ORDER BY decided_at DESC, id DESC
                LIMIT ?
                """,
                (*params, self.settings.search_limit),
            ).fetchall()
            return [row_to_decision(row) for row in rows]

    @reconnecting
    def get_recent_decisions(self, limit: int = 10) -> list[Decision]:
        """Most recent active decisions."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM decisions
                WHERE archived_at IS NULL
                ORDER BY decided_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [row_to_decision(row) for row in rows]

    # ========== Discoveries ==========

    @reconnecting
    def add_discovery(
        self,
        category: str,
        name: str,
        location: str | None = None,
        description: str | None = None,
        metadata: str | None = None,
        confidence: float = 1.0,
    ) -> int:
        """Record a discovery.

        Raises:
            ValidationError: If category or name is blank, or confidence is
                outside 0.0-1.0.
            SecretDetectedError: If any field looks like a credential.
        """
        self._require(category=category, name=name)
        if confidence is None:
            confidence = 1.0
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"confidence must be between 0.0 and 1.0, got {confidence}")
        fields = self._prepare(
            category=category,
            name=name,
            location=location,
            description=description,
            metadata=metadata,
        )

        with self.transaction() as conn:
            discovery_id = conn.execute(
                """
                INSERT INTO discoveries (
                    category, name, location, description, metadata, confidence
                )
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    fields["category"],
                    fields["name"],
                    fields["location"],
                    fields["description"],
                    fields["metadata"],
                    confidence,
                ),
            ).fetchone()[0]
            self._maintain(conn)

        log.info(
            "Stored discovery id={} category={} name={!r}",
            discovery_id,
            fields["category"],
            fields["name"],
        )
        return discovery_id

    @reconnecting
    def get_discovery(
        self, discovery_id: int, include_archived: bool = False
    ) -> Discovery | None:
        """Get a discovery by ID."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM discoveries WHERE id = ? AND {self._visibility(include_archived)}",
                (discovery_id,),
            ).fetchone()
            return row_to_discovery(row) if row else None

    @reconnecting
    def search_discoveries(self, query: str, include_archived: bool = False) -> list[Discovery]:
        """Case-insensitive substring search over name, description and location."""
        columns = ArchivableKind.DISCOVERIES.search_columns
        params = self._search_params(query, columns)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM discoveries
                WHERE {self._like_clause(columns)} AND {self._visibility(include_archived)}
                ORDER BY discovered_at DESC, id DESC
                LIMIT ?
                """,
                (*params, self.settings.search_limit),
            ).fetchall()
            return [row_to_discovery(row) for row in rows]

    @reconnecting
    def get_discoveries_by_category(self, category: str) -> list[Discovery]:
        """Active discoveries in a category, ordered by name."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM discoveries
                WHERE category = ? AND archived_at IS NULL
                ORDER BY name
                """,
                (category,),
            ).fetchall()
            return [row_to_discovery(row) for row in rows]

    @reconnecting
    def get_all_discoveries(self) -> list[Discovery]:
        """All active discoveries, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM discoveries
                WHERE archived_at IS NULL
                ORDER BY discovered_at DESC, id DESC
                """
            ).fetchall()
            return [row_to_discovery(row) for row in rows]

    @reconnecting
    def get_recent_discoveries(self, limit: int = 10) -> list[Discovery]:
        """Most recent active discoveries."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM discoveries
                WHERE archived_at IS NULL
                ORDER BY discovered_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [row_to_discovery(row) for row in rows]
