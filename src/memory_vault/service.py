"""Caller-facing operations over the record store.

Every method returns a response model. Storage errors are converted here:
secret blocks become ``blocked`` responses, validation and backend failures
become ``success=False`` responses with the error message.
"""

from __future__ import annotations

import functools
import sqlite3

from memory_vault.errors import MemoryVaultError, SecretDetectedError
from memory_vault.helpers import REMEMBER_FIELDS, RECALL_TYPES, parse_confidence
from memory_vault.logging import get_logger
from memory_vault.models import ArchiveStats
from memory_vault.responses import (
    ActionResponse,
    ContextResponse,
    DecisionResponse,
    DiscoveryResponse,
    EntityResponse,
    KindStatsResponse,
    LifecycleResponse,
    PreferenceResponse,
    QuestionResponse,
    RecallResponse,
    SessionResponse,
    SessionStartResponse,
    StatusResponse,
    error_response,
    success_response,
)
from memory_vault.security import format_secret_warning
from memory_vault.storage import Storage

log = get_logger("service")

# Number of recent decisions carried into session context
CONTEXT_DECISIONS = 5


def handles_errors(method):
    """Convert storage exceptions into error responses."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SecretDetectedError as e:
            return error_response(
                format_secret_warning(e.result),
                blocked=True,
                secrets=e.result.signature_names,
            )
        except MemoryVaultError as e:
            log.warning("{} failed: {}", method.__name__, e)
            return error_response(str(e))
        except sqlite3.Error as e:
            log.error("{} failed with a database error: {}", method.__name__, e)
            return error_response(f"Database error: {e}")

    return wrapper


def _lifecycle(stats: list[ArchiveStats]) -> LifecycleResponse:
    return LifecycleResponse(
        affected={s.kind.value: s.affected for s in stats},
    )


class MemoryService:
    """Remember, recall, session and lifecycle operations over a Storage."""

    def __init__(self, storage: Storage):
        self.storage = storage

    # ========== Remember ==========

    @handles_errors
    def remember(self, kind: str, **fields) -> ActionResponse:
        """Store one record.

        Args:
            kind: decision, preference, discovery, entity or question.
            **fields: The kind's fields (see ``REMEMBER_FIELDS``). None values
                are treated as absent.
        """
        log.debug("remember() called: kind={} fields={}", kind, sorted(fields))

        allowed = REMEMBER_FIELDS.get(kind)
        if allowed is None:
            return error_response(f"Unknown kind {kind!r}. Use: {list(REMEMBER_FIELDS)}")
        unknown = sorted(set(fields) - set(allowed))
        if unknown:
            return error_response(f"Unknown field(s) for {kind}: {', '.join(unknown)}")
        fields = {name: value for name, value in fields.items() if value is not None}

        if kind == "decision":
            record_id = self.storage.add_decision(
                topic=fields.get("topic"),
                decision=fields.get("decision"),
                rationale=fields.get("rationale"),
                alternatives=fields.get("alternatives"),
                source=fields.get("source") or "user",
            )
            return success_response(
                f"Remembered decision #{record_id}: {fields['topic']}", id=record_id
            )

        if kind == "preference":
            record_id = self.storage.set_preference(
                category=fields.get("category"),
                key=fields.get("key"),
                value=fields.get("value"),
                notes=fields.get("notes"),
            )
            return success_response(
                f"Remembered preference {fields['category']}/{fields['key']}", id=record_id
            )

        if kind == "discovery":
            record_id = self.storage.add_discovery(
                category=fields.get("category"),
                name=fields.get("name"),
                location=fields.get("location"),
                description=fields.get("description"),
                metadata=fields.get("metadata"),
                confidence=parse_confidence(fields.get("confidence")),
            )
            return success_response(
                f"Remembered discovery #{record_id}: {fields['name']}", id=record_id
            )

        if kind == "entity":
            record_id = self.storage.upsert_entity(
                name=fields.get("name"),
                description=fields.get("description"),
                relationships=fields.get("relationships"),
                attributes=fields.get("attributes"),
                location=fields.get("location"),
            )
            return success_response(f"Remembered entity: {fields['name']}", id=record_id)

        record_id = self.storage.add_question(
            question=fields.get("question"), context=fields.get("context")
        )
        return success_response(f"Recorded open question #{record_id}", id=record_id)

    # ========== Recall ==========

    @handles_errors
    def recall(
        self,
        type: str = "all",
        query: str | None = None,
        category: str | None = None,
        include_archived: bool = False,
    ) -> RecallResponse | ActionResponse:
        """Look records up by type, optionally filtered by a keyword query.

        Without a query, ``all`` returns recent decisions plus every preference.
        With one, ``all`` searches decisions, discoveries, entities and questions.
        """
        if type not in RECALL_TYPES:
            return error_response(f"Unknown recall type {type!r}. Use: {list(RECALL_TYPES)}")
        if query is not None and not query.strip():
            query = None

        storage = self.storage
        response = RecallResponse(query=query)

        if type == "session":
            session = storage.get_last_session()
            response.session = SessionResponse.model_validate(session) if session else None
        elif type == "preferences":
            prefs = (
                storage.get_preferences_by_category(category)
                if category
                else storage.get_all_preferences()
            )
            response.preferences = [PreferenceResponse.model_validate(p) for p in prefs]
        elif type == "decisions":
            decisions = (
                storage.search_decisions(query, include_archived)
                if query
                else storage.get_recent_decisions(10)
            )
            response.decisions = [DecisionResponse.model_validate(d) for d in decisions]
        elif type == "discoveries":
            if query:
                discoveries = storage.search_discoveries(query, include_archived)
            elif category:
                discoveries = storage.get_discoveries_by_category(category)
            else:
                discoveries = storage.get_all_discoveries()
            response.discoveries = [DiscoveryResponse.model_validate(d) for d in discoveries]
        elif type == "entities":
            entities = (
                storage.search_entities(query, include_archived)
                if query
                else storage.get_all_entities()
            )
            response.entities = [EntityResponse.model_validate(e) for e in entities]
        elif type == "questions":
            questions = (
                storage.search_questions(query, include_archived)
                if query
                else storage.get_open_questions()
            )
            response.questions = [QuestionResponse.model_validate(q) for q in questions]
        elif query:
            results = storage.search(query, include_archived)
            response.decisions = [DecisionResponse.model_validate(d) for d in results.decisions]
            response.discoveries = [
                DiscoveryResponse.model_validate(d) for d in results.discoveries
            ]
            response.entities = [EntityResponse.model_validate(e) for e in results.entities]
            response.questions = [QuestionResponse.model_validate(q) for q in results.questions]
        else:
            response.decisions = [
                DecisionResponse.model_validate(d)
                for d in storage.get_recent_decisions(CONTEXT_DECISIONS)
            ]
            response.preferences = [
                PreferenceResponse.model_validate(p) for p in storage.get_all_preferences()
            ]

        if response.total == 0:
            response.message = (
                f'No memories found matching "{query}"' if query else "No memories found"
            )
        else:
            response.message = f"Found {response.total} result(s)"
        return response

    # ========== Sessions ==========

    def _context_fields(self, decision_limit: int) -> dict:
        storage = self.storage
        previous = storage.get_last_session(ended_only=True)
        return {
            "previous_session": SessionResponse.model_validate(previous) if previous else None,
            "decisions": [
                DecisionResponse.model_validate(d)
                for d in storage.get_recent_decisions(decision_limit)
            ],
            "preferences": [
                PreferenceResponse.model_validate(p) for p in storage.get_all_preferences()
            ],
            "open_questions": [
                QuestionResponse.model_validate(q) for q in storage.get_open_questions()
            ],
            "db_path": str(storage.path),
        }

    @handles_errors
    def load_context(self, decision_limit: int = 10) -> ContextResponse | ActionResponse:
        """Context saved by earlier sessions, without opening a new one."""
        response = ContextResponse(**self._context_fields(decision_limit))
        response.message = (
            "Prior context loaded" if response.has_content else "No previous context found."
        )
        return response

    @handles_errors
    def session_start(self) -> SessionStartResponse | ActionResponse:
        """Open (or resume) a session and load the context saved before it."""
        fields = self._context_fields(CONTEXT_DECISIONS)
        session_id = self.storage.start_session()
        return SessionStartResponse(
            message=f"Session #{session_id} started", session_id=session_id, **fields
        )

    @handles_errors
    def session_end(
        self,
        summary: str,
        work_in_progress: str | None = None,
        next_steps: str | None = None,
        key_files: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> ActionResponse:
        """Close the current session, opening one first if none is active."""
        storage = self.storage
        current = storage.get_current_session()
        session_id = current.id if current else storage.start_session()
        storage.end_session(
            session_id,
            summary,
            work_in_progress=work_in_progress,
            next_steps=next_steps,
            key_files=key_files,
            tags=tags,
        )
        return success_response(f"Session #{session_id} saved", id=session_id)

    @handles_errors
    def resolve_question(self, question_id: int, resolution: str) -> ActionResponse:
        if self.storage.resolve_question(question_id, resolution):
            return success_response(f"Question #{question_id} resolved", id=question_id)
        return error_response(f"Question #{question_id} not found")

    # ========== Status ==========

    @handles_errors
    def status(self) -> StatusResponse | ActionResponse:
        storage = self.storage
        stats = storage.get_memory_stats()
        last_session = storage.get_last_session()
        return StatusResponse(
            db_path=str(storage.path),
            backend=storage.settings.backend,
            schema_version=storage.get_schema_version(),
            kinds={
                kind: KindStatsResponse(active=s.active, archived=s.archived)
                for kind, s in stats.items()
            },
            preferences=len(storage.get_all_preferences()),
            open_questions=len(storage.get_open_questions()),
            last_session=SessionResponse.model_validate(last_session) if last_session else None,
        )

    # ========== Lifecycle ==========

    @handles_errors
    def archive(
        self,
        days: int | None = None,
        kinds: list[str] | None = None,
        ids: list[int] | None = None,
    ) -> LifecycleResponse | ActionResponse:
        """Archive by age, or by id within a single kind."""
        if ids:
            if not kinds or len(kinds) != 1:
                return error_response("Archiving by id needs exactly one kind")
            affected = self.storage.archive_by_ids(kinds[0], ids)
            return LifecycleResponse(
                message=f"Archived {affected} entries", affected={kinds[0]: affected}
            )
        if days is None:
            return error_response("Provide days or ids")
        stats = self.storage.archive_older_than(days, kinds)
        response = _lifecycle(stats)
        response.message = f"Archived {response.total} entries older than {days} days"
        return response

    @handles_errors
    def restore(
        self, kinds: list[str] | None = None, ids: list[int] | None = None
    ) -> LifecycleResponse | ActionResponse:
        """Restore specific ids within a single kind, or everything archived."""
        if ids:
            if not kinds or len(kinds) != 1:
                return error_response("Restoring by id needs exactly one kind")
            affected = self.storage.restore_by_ids(kinds[0], ids)
            return LifecycleResponse(
                message=f"Restored {affected} entries", affected={kinds[0]: affected}
            )
        stats = self.storage.restore_all(kinds)
        response = _lifecycle(stats)
        response.message = f"Restored {response.total} archived entries"
        return response

    @handles_errors
    def prune(
        self,
        days: int | None = None,
        kinds: list[str] | None = None,
        archived_only: bool = False,
        purge_archived: bool = False,
    ) -> LifecycleResponse | ActionResponse:
        """Permanently delete by age, or purge the whole archived set."""
        if purge_archived:
            stats = self.storage.purge_archived(kinds)
            response = _lifecycle(stats)
            response.message = f"Permanently deleted {response.total} archived entries"
            return response
        if days is None:
            return error_response("Provide days or purge_archived")
        stats = self.storage.prune_older_than(days, kinds, archived_only=archived_only)
        response = _lifecycle(stats)
        suffix = " (archived only)" if archived_only else ""
        response.message = (
            f"Permanently deleted {response.total} entries older than {days} days{suffix}"
        )
        return response
