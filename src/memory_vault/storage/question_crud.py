"""Open question CRUD mixin for Storage."""

from __future__ import annotations

import sqlite3

from memory_vault.backend import reconnecting
from memory_vault.logging import get_logger
from memory_vault.models import ArchivableKind, OpenQuestion, QuestionStatus, parse_timestamp

log = get_logger("storage.question_crud")


def row_to_question(row: sqlite3.Row) -> OpenQuestion:
    return OpenQuestion(
        id=row["id"],
        question=row["question"],
        context=row["context"],
        status=QuestionStatus(row["status"] or QuestionStatus.OPEN.value),
        resolution=row["resolution"],
        created_at=parse_timestamp(row["created_at"]),
        resolved_at=parse_timestamp(row["resolved_at"]),
        archived_at=parse_timestamp(row["archived_at"]),
    )


class QuestionCrudMixin:
    """Mixin providing open question methods for Storage."""

    @reconnecting
    def add_question(self, question: str, context: str | None = None) -> int:
        """Record an open question. Returns its id."""
        self._require(question=question)
        fields = self._prepare(question=question, context=context)

        with self.transaction() as conn:
            question_id = conn.execute(
                "INSERT INTO open_questions (question, context) VALUES (?, ?) RETURNING id",
                (fields["question"], fields["context"]),
            ).fetchone()[0]

        log.info("Stored open question id={}", question_id)
        return question_id

    @reconnecting
    def resolve_question(self, question_id: int, resolution: str) -> bool:
        """Mark an active question resolved.

        Returns:
            True if a question was updated, False if no active question has that id.
        """
        self._require(resolution=resolution)
        fields = self._prepare(resolution=resolution)

        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE open_questions
                SET status = ?, resolution = ?, resolved_at = datetime('now')
                WHERE id = ? AND archived_at IS NULL
                """,
                (QuestionStatus.RESOLVED.value, fields["resolution"], question_id),
            )
            resolved = cursor.rowcount > 0

        if resolved:
            log.info("Resolved question id={}", question_id)
        return resolved

    @reconnecting
    def get_question(
        self, question_id: int, include_archived: bool = False
    ) -> OpenQuestion | None:
        """Get a question by ID, whatever its status."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM open_questions WHERE id = ? AND "
                f"{self._visibility(include_archived)}",
                (question_id,),
            ).fetchone()
            return row_to_question(row) if row else None

    @reconnecting
    def get_open_questions(self) -> list[OpenQuestion]:
        """Active questions still awaiting resolution, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM open_questions
                WHERE status = ? AND archived_at IS NULL
                ORDER BY created_at DESC, id DESC
                """,
                (QuestionStatus.OPEN.value,),
            ).fetchall()
            return [row_to_question(row) for row in rows]

    @reconnecting
    def search_questions(self, query: str, include_archived: bool = False) -> list[OpenQuestion]:
        """Case-insensitive substring search over question and context."""
        columns = ArchivableKind.OPEN_QUESTIONS.search_columns
        params = self._search_params(query, columns)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM open_questions
                WHERE {self._like_clause(columns)} AND {self._visibility(include_archived)}
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (*params, self.settings.search_limit),
            ).fetchall()
            return [row_to_question(row) for row in rows]
