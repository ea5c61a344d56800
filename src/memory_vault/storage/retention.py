"""Retention mixin for Storage: capacity eviction, age expiry and the archive lifecycle.

Row state per archivable kind::

    Active -> Archived -> Active (restore)
                       -> Purged (prune / purge_archived)
    Active -> Purged (capacity eviction, age prune)

Every multi-kind operation validates the full kind list before issuing a
statement, and runs all of its statements in one transaction.
"""

from __future__ import annotations

import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.errors import ValidationError
from memory_vault.logging import get_logger
from memory_vault.models import (
    ArchivableKind,
    ArchiveStats,
    KindStats,
    MaintenanceResult,
    QuestionStatus,
)
from memory_vault.storage.base import parse_kind, parse_kinds
from memory_vault.storage.entity_crud import row_to_entity
from memory_vault.storage.knowledge_crud import row_to_decision, row_to_discovery
from memory_vault.storage.question_crud import row_to_question

log = get_logger("storage.retention")

_ROW_CONVERTERS = {
    ArchivableKind.DECISIONS: row_to_decision,
    ArchivableKind.DISCOVERIES: row_to_discovery,
    ArchivableKind.ENTITIES: row_to_entity,
    ArchivableKind.OPEN_QUESTIONS: row_to_question,
}


def _age_modifier(days: int) -> str:
    """SQLite datetime() modifier for a non-negative age in days."""
    if days is None or days < 0:
        raise ValidationError(f"days must be a non-negative integer, got {days}")
    return f"-{int(days)} days"


def _clean_ids(ids: list[int]) -> list[int]:
    try:
        return sorted({int(i) for i in ids})
    except (TypeError, ValueError):
        raise ValidationError(f"ids must be integers, got {ids!r}") from None


class RetentionMixin:
    """Mixin providing retention and archive methods for Storage."""

    # ========== Maintenance ==========

    def _capacity_limits(self) -> dict[ArchivableKind, int]:
        return {
            ArchivableKind.DECISIONS: self.settings.max_decisions,
            ArchivableKind.DISCOVERIES: self.settings.max_discoveries,
        }

    def _evict_oldest(self, conn: sqlite3.Connection, kind: ArchivableKind, ceiling: int) -> int:
        """Hard-delete the oldest active rows until the active count equals ceiling."""
        table, date_col = kind.table, kind.date_column
        count = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE archived_at IS NULL"
        ).fetchone()[0]
        excess = count - ceiling
        if excess <= 0:
            return 0

        deleted = conn.execute(
            f"""
            DELETE FROM {table} WHERE id IN (
                SELECT id FROM {table}
                WHERE archived_at IS NULL
                ORDER BY {date_col} ASC, id ASC
                LIMIT ?
            )
            """,
            (excess,),
        ).rowcount
        log.info("Evicted {} oldest {} (ceiling={})", deleted, table, ceiling)
        return deleted

    def _expire(self, conn: sqlite3.Connection) -> tuple[int, int]:
        """Delete ended sessions and resolved questions past their retention windows."""
        sessions = conn.execute(
            """
            DELETE FROM sessions
            WHERE ended_at IS NOT NULL
              AND datetime(ended_at) < datetime('now', ?)
            """,
            (_age_modifier(self.settings.session_retention_days),),
        ).rowcount
        questions = conn.execute(
            """
            DELETE FROM open_questions
            WHERE status = ?
              AND resolved_at IS NOT NULL
              AND datetime(resolved_at) < datetime('now', ?)
            """,
            (
                QuestionStatus.RESOLVED.value,
                _age_modifier(self.settings.resolved_question_retention_days),
            ),
        ).rowcount
        if sessions or questions:
            log.info("Expired {} sessions and {} resolved questions", sessions, questions)
        return sessions, questions

    def _maintain(self, conn: sqlite3.Connection) -> MaintenanceResult:
        """Capacity eviction plus age expiry on an open transaction."""
        limits = self._capacity_limits()
        result = MaintenanceResult(
            decisions_evicted=self._evict_oldest(
                conn, ArchivableKind.DECISIONS, limits[ArchivableKind.DECISIONS]
            ),
            discoveries_evicted=self._evict_oldest(
                conn, ArchivableKind.DISCOVERIES, limits[ArchivableKind.DISCOVERIES]
            ),
        )
        result.sessions_expired, result.questions_expired = self._expire(conn)
        return result

    @reconnecting
    def enforce_capacity(self) -> list[ArchiveStats]:
        """Evict down to the configured ceilings. Returns rows evicted per bounded kind."""
        with self.transaction() as conn:
            return [
                ArchiveStats(kind, self._evict_oldest(conn, kind, ceiling))
                for kind, ceiling in self._capacity_limits().items()
            ]

    @reconnecting
    def expire_stale(self) -> MaintenanceResult:
        """Run age expiry only. Eviction counts in the result stay zero."""
        with self.transaction() as conn:
            sessions, questions = self._expire(conn)
        return MaintenanceResult(sessions_expired=sessions, questions_expired=questions)

    @reconnecting
    def run_maintenance(self) -> MaintenanceResult:
        """Run capacity eviction and age expiry together."""
        with self.transaction() as conn:
            return self._maintain(conn)

    # ========== Archive / Restore ==========

    @reconnecting
    def archive_older_than(
        self, days: int, kinds: list[ArchivableKind | str] | None = None
    ) -> list[ArchiveStats]:
        """Archive active rows whose natural timestamp is at least ``days`` old."""
        modifier = _age_modifier(days)
        selected = parse_kinds(kinds)

        stats = []
        with self.transaction() as conn:
            for kind in selected:
                affected = conn.execute(
                    f"""
                    UPDATE {kind.table}
                    SET archived_at = datetime('now')
                    WHERE archived_at IS NULL
                      AND datetime({kind.date_column}) <= datetime('now', ?)
                    """,
                    (modifier,),
                ).rowcount
                stats.append(ArchiveStats(kind, affected))

        log.info("Archived rows older than {} days: {}", days, _format_stats(stats))
        return stats

    @reconnecting
    def archive_by_ids(self, kind: ArchivableKind | str, ids: list[int]) -> int:
        """Archive specific active rows. Already-archived ids are left alone."""
        kind = parse_kind(kind)
        ids = _clean_ids(ids)
        if not ids:
            return 0

        placeholders = ",".join("?" * len(ids))
        with self.transaction() as conn:
            affected = conn.execute(
                f"""
                UPDATE {kind.table}
                SET archived_at = datetime('now')
                WHERE archived_at IS NULL AND id IN ({placeholders})
                """,
                ids,
            ).rowcount

        log.info("Archived {} {} by id", affected, kind.table)
        return affected

    @reconnecting
    def restore_by_ids(self, kind: ArchivableKind | str, ids: list[int]) -> int:
        """Clear archived_at on specific rows. Active ids are left alone."""
        kind = parse_kind(kind)
        ids = _clean_ids(ids)
        if not ids:
            return 0

        placeholders = ",".join("?" * len(ids))
        with self.transaction() as conn:
            affected = conn.execute(
                f"""
                UPDATE {kind.table}
                SET archived_at = NULL
                WHERE archived_at IS NOT NULL AND id IN ({placeholders})
                """,
                ids,
            ).rowcount

        log.info("Restored {} {} by id", affected, kind.table)
        return affected

    @reconnecting
    def restore_all(self, kinds: list[ArchivableKind | str] | None = None) -> list[ArchiveStats]:
        """Restore every archived row in the given kinds."""
        selected = parse_kinds(kinds)

        stats = []
        with self.transaction() as conn:
            for kind in selected:
                affected = conn.execute(
                    f"UPDATE {kind.table} SET archived_at = NULL WHERE archived_at IS NOT NULL"
                ).rowcount
                stats.append(ArchiveStats(kind, affected))

        log.info("Restored archived rows: {}", _format_stats(stats))
        return stats

    # ========== Prune ==========

    @reconnecting
    def prune_older_than(
        self,
        days: int,
        kinds: list[ArchivableKind | str] | None = None,
        archived_only: bool = False,
    ) -> list[ArchiveStats]:
        """Permanently delete rows at least ``days`` old.

        Args:
            days: Age threshold against each kind's natural timestamp.
            kinds: Kinds to prune (None = all archivable kinds).
            archived_only: Only delete rows that are already archived.
        """
        modifier = _age_modifier(days)
        selected = parse_kinds(kinds)
        archived_filter = "AND archived_at IS NOT NULL" if archived_only else ""

        stats = []
        with self.transaction() as conn:
            for kind in selected:
                affected = conn.execute(
                    f"""
                    DELETE FROM {kind.table}
                    WHERE datetime({kind.date_column}) <= datetime('now', ?)
                    {archived_filter}
                    """,
                    (modifier,),
                ).rowcount
                stats.append(ArchiveStats(kind, affected))

        log.warning(
            "Pruned rows older than {} days{}: {}",
            days,
            " (archived only)" if archived_only else "",
            _format_stats(stats),
        )
        return stats

    @reconnecting
    def purge_archived(self, kinds: list[ArchivableKind | str] | None = None) -> list[ArchiveStats]:
        """Permanently delete every archived row, regardless of age."""
        selected = parse_kinds(kinds)

        stats = []
        with self.transaction() as conn:
            for kind in selected:
                affected = conn.execute(
                    f"DELETE FROM {kind.table} WHERE archived_at IS NOT NULL"
                ).rowcount
                stats.append(ArchiveStats(kind, affected))

        log.warning("Purged archived rows: {}", _format_stats(stats))
        return stats

    # ========== Inspection ==========

    @reconnecting
    def get_memory_stats(self) -> dict[str, KindStats]:
        """Active and archived counts for every archivable kind."""
        stats = {}
        with self._connection() as conn:
            for kind in ArchivableKind:
                row = conn.execute(
                    f"""
                    SELECT
                        SUM(CASE WHEN archived_at IS NULL THEN 1 ELSE 0 END) AS active,
                        SUM(CASE WHEN archived_at IS NOT NULL THEN 1 ELSE 0 END) AS archived
                    FROM {kind.table}
                    """
                ).fetchone()
                stats[kind.value] = KindStats(
                    active=row["active"] or 0, archived=row["archived"] or 0
                )
        return stats

    @reconnecting
    def get_archived_entries(self, kind: ArchivableKind | str, limit: int | None = None) -> list:
        """Archived rows of one kind, most recently archived first."""
        kind = parse_kind(kind)
        sql = (
            f"SELECT * FROM {kind.table} WHERE archived_at IS NOT NULL "
            "ORDER BY archived_at DESC, id DESC"
        )
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)

        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [_ROW_CONVERTERS[kind](row) for row in rows]


def _format_stats(stats: list[ArchiveStats]) -> str:
    return ", ".join(f"{s.kind.value}={s.affected}" for s in stats) or "none"
