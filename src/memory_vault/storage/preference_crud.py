"""Preference CRUD mixin for Storage."""

from __future__ import annotations

import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.logging import get_logger
from memory_vault.models import Preference, parse_timestamp

log = get_logger("storage.preference_crud")


def row_to_preference(row: sqlite3.Row) -> Preference:
    return Preference(
        id=row["id"],
        category=row["category"],
        key=row["key"],
        value=row["value"],
        notes=row["notes"],
        updated_at=parse_timestamp(row["updated_at"]),
    )


class PreferenceCrudMixin:
    """Mixin providing preference methods for Storage."""

    @reconnecting
    def set_preference(
        self, category: str, key: str, value: str, notes: str | None = None
    ) -> int:
        """Create or replace the preference for (category, key). Returns its id."""
        self._require(category=category, key=key, value=value)
        fields = self._prepare(category=category, key=key, value=value, notes=notes)

        with self.transaction() as conn:
            pref_id = conn.execute(
                """
                INSERT INTO preferences (category, key, value, notes, updated_at)
                VALUES (?, ?, ?, ?, datetime('now'))
                ON CONFLICT(category, key) DO UPDATE SET
                    value = excluded.value,
                    notes = excluded.notes,
                    updated_at = excluded.updated_at
                RETURNING id
                """,
                (fields["category"], fields["key"], fields["value"], fields["notes"]),
            ).fetchone()[0]

        log.info("Set preference {}.{}", fields["category"], fields["key"])
        return pref_id

    @reconnecting
    def get_preference(self, category: str, key: str) -> Preference | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM preferences WHERE category = ? AND key = ?",
                (category, key),
            ).fetchone()
            return row_to_preference(row) if row else None

    @reconnecting
    def get_preferences_by_category(self, category: str) -> list[Preference]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM preferences WHERE category = ? ORDER BY key",
                (category,),
            ).fetchall()
            return [row_to_preference(row) for row in rows]

    @reconnecting
    def get_all_preferences(self) -> list[Preference]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM preferences ORDER BY category, key").fetchall()
            return [row_to_preference(row) for row in rows]
