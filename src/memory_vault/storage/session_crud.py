"""Session CRUD mixin for Storage.

A session with ``ended_at IS NULL`` is the current one. A unique partial index
guarantees at most one such row; ``start_session`` hands back the existing
current session rather than opening a second.
"""

from __future__ import annotations

import json
import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.logging import get_logger
from memory_vault.models import Session, parse_timestamp

log = get_logger("storage.session_crud")


def _load_key_files(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        # Truncated JSON no longer parses; hand back the stored text as-is
        return [raw]
    return [str(item) for item in value] if isinstance(value, list) else [str(value)]


def _load_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    if raw.startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return [str(tag) for tag in value]
    # Older rows hold a comma-joined string
    return [tag for tag in raw.split(",") if tag]


def row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        started_at=parse_timestamp(row["started_at"]),
        ended_at=parse_timestamp(row["ended_at"]),
        summary=row["summary"],
        work_in_progress=row["work_in_progress"],
        next_steps=row["next_steps"],
        key_files=_load_key_files(row["key_files"]),
        tags=_load_tags(row["tags"]),
    )


class SessionCrudMixin:
    """Mixin providing session methods for Storage."""

    @reconnecting
    def start_session(self) -> int:
        """Open a session, or return the id of the one already open."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM sessions WHERE ended_at IS NULL ORDER BY id DESC LIMIT 1"
            ).fetchone()
            if row:
                log.debug("Reusing current session id={}", row["id"])
                return row["id"]
            session_id = conn.execute(
                "INSERT INTO sessions (started_at) VALUES (datetime('now')) RETURNING id"
            ).fetchone()[0]

        log.info("Started session id={}", session_id)
        return session_id

    @reconnecting
    def end_session(
        self,
        session_id: int,
        summary: str,
        work_in_progress: str | None = None,
        next_steps: str | None = None,
        key_files: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> bool:
        """Close a session with its summary and run the maintenance pass.

        Returns:
            True if the session existed and was updated.
        """
        self._require(summary=summary)
        fields = self._prepare(
            summary=summary,
            work_in_progress=work_in_progress,
            next_steps=next_steps,
            key_files=json.dumps(key_files) if key_files else None,
            tags=json.dumps(tags) if tags else None,
        )

        with self.transaction() as conn:
            self._maintain(conn)
            cursor = conn.execute(
                """
                UPDATE sessions
                SET ended_at = datetime('now'),
                    summary = ?,
                    work_in_progress = ?,
                    next_steps = ?,
                    key_files = ?,
                    tags = ?
                WHERE id = ?
                """,
                (
                    fields["summary"],
                    fields["work_in_progress"],
                    fields["next_steps"],
                    fields["key_files"],
                    fields["tags"],
                    session_id,
                ),
            )
            ended = cursor.rowcount > 0

        if ended:
            log.info("Ended session id={}", session_id)
        else:
            log.warning("end_session: no session with id={}", session_id)
        return ended

    @reconnecting
    def get_session(self, session_id: int) -> Session | None:
        """Get a session by ID."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            return row_to_session(row) if row else None

    @reconnecting
    def get_current_session(self) -> Session | None:
        """The open session, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE ended_at IS NULL ORDER BY started_at DESC, id DESC"
            ).fetchone()
            return row_to_session(row) if row else None

    @reconnecting
    def get_last_session(self, ended_only: bool = False) -> Session | None:
        """The most recently started session.

        Args:
            ended_only: Skip the current session and return the last ended one.
        """
        where = "WHERE ended_at IS NOT NULL" if ended_only else ""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM sessions {where} ORDER BY started_at DESC, id DESC LIMIT 1"
            ).fetchone()
            return row_to_session(row) if row else None
