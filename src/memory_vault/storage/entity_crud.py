"""Entity CRUD mixin for Storage."""

from __future__ import annotations

import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.logging import get_logger
from memory_vault.models import ArchivableKind, Entity, parse_timestamp

log = get_logger("storage.entity_crud")


def row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        relationships=row["relationships"],
        attributes=row["attributes"],
        location=row["location"],
        updated_at=parse_timestamp(row["updated_at"]),
        archived_at=parse_timestamp(row["archived_at"]),
    )


class EntityCrudMixin:
    """Mixin providing entity methods for Storage."""

    @reconnecting
    def upsert_entity(
        self,
        name: str,
        description: str | None = None,
        relationships: str | None = None,
        attributes: str | None = None,
        location: str | None = None,
    ) -> int:
        """Create or replace an entity by name.

        Re-remembering a name overwrites every field, refreshes updated_at and
        brings an archived entity back to active.

        Returns:
            The entity id (stable across upserts).
        """
        self._require(name=name)
        fields = self._prepare(
            name=name,
            description=description,
            relationships=relationships,
            attributes=attributes,
            location=location,
        )

        with self.transaction() as conn:
            entity_id = conn.execute(
                """
                INSERT INTO entities (
                    name, description, relationships, attributes, location, updated_at
                )
                VALUES (?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(name) DO UPDATE SET
                    description = excluded.description,
                    relationships = excluded.relationships,
                    attributes = excluded.attributes,
                    location = excluded.location,
                    updated_at = excluded.updated_at,
                    archived_at = NULL
                RETURNING id
                """,
                (
                    fields["name"],
                    fields["description"],
                    fields["relationships"],
                    fields["attributes"],
                    fields["location"],
                ),
            ).fetchone()[0]

        log.info("Upserted entity id={} name={!r}", entity_id, fields["name"])
        return entity_id

    @reconnecting
    def get_entity(self, name: str, include_archived: bool = False) -> Entity | None:
        """Get an entity by its name."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM entities WHERE name = ? AND {self._visibility(include_archived)}",
                (name,),
            ).fetchone()
            return row_to_entity(row) if row else None

    @reconnecting
    def get_all_entities(self) -> list[Entity]:
        """All active entities, ordered by name."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM entities WHERE archived_at IS NULL ORDER BY name"
            ).fetchall()
            return [row_to_entity(row) for row in rows]

    @reconnecting
    def search_entities(self, query: str, include_archived: bool = False) -> list[Entity]:
        """Case-insensitive substring search over name and description."""
        columns = ArchivableKind.ENTITIES.search_columns
        params = self._search_params(query, columns)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM entities
                WHERE {self._like_clause(columns)} AND {self._visibility(include_archived)}
                ORDER BY updated_at DESC, id DESC
                LIMIT ?
                """,
                (*params, self.settings.search_limit),
            ).fetchall()
            return [row_to_entity(row) for row in rows]
