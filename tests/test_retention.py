"""Tests for capacity eviction, age expiry and the archive/restore/prune lifecycle."""

import pytest

from memory_vault.config import Settings
from memory_vault.storage import (
    ArchivableKind,
    QuestionStatus,
    Storage,
    ValidationError,
)


@pytest.fixture
def storage(tmp_path):
    """Create a storage instance with temp database."""
    settings = Settings(db_path=tmp_path / "test.db")
    stor = Storage(settings)
    yield stor
    stor.close()


@pytest.fixture
def small_storage(tmp_path):
    """Storage with tiny capacity ceilings."""
    settings = Settings(db_path=tmp_path / "small.db", max_decisions=3, max_discoveries=2)
    stor = Storage(settings)
    yield stor
    stor.close()


def age_row(storage, table, column, row_id, days):
    """Backdate a row's timestamp column by ``days``."""
    with storage.transaction() as conn:
        conn.execute(
            f"UPDATE {table} SET {column} = datetime('now', ?) WHERE id = ?",
            (f"-{days} days", row_id),
        )


def partition(storage, kind):
    """(active ids, archived ids) for one kind."""
    with storage._connection() as conn:
        rows = conn.execute(f"SELECT id, archived_at FROM {kind} ORDER BY id").fetchall()
    active = {r["id"] for r in rows if r["archived_at"] is None}
    archived = {r["id"] for r in rows if r["archived_at"] is not None}
    return active, archived


# ========== Capacity Eviction ==========


class TestCapacityEviction:
    """Oldest active rows are hard-deleted once a ceiling is exceeded."""

    def test_decisions_bounded(self, small_storage):
        ids = [small_storage.add_decision("t", f"decision {i}") for i in range(5)]

        active, _ = partition(small_storage, "decisions")
        assert active == set(ids[-3:])

    def test_discoveries_bounded(self, small_storage):
        ids = [small_storage.add_discovery("c", f"discovery {i}") for i in range(4)]

        active, _ = partition(small_storage, "discoveries")
        assert active == set(ids[-2:])

    def test_evicts_by_timestamp_not_insertion_order(self, small_storage):
        ids = [small_storage.add_decision("t", f"decision {i}") for i in range(3)]
        # Make the newest row the oldest by timestamp
        age_row(small_storage, "decisions", "decided_at", ids[2], 10)

        new_id = small_storage.add_decision("t", "decision 3")

        active, _ = partition(small_storage, "decisions")
        assert active == {ids[0], ids[1], new_id}

    def test_archived_rows_do_not_count(self, small_storage):
        ids = [small_storage.add_decision("t", f"decision {i}") for i in range(3)]
        small_storage.archive_by_ids("decisions", [ids[0]])

        small_storage.add_decision("t", "decision 3")

        active, archived = partition(small_storage, "decisions")
        assert len(active) == 3
        assert archived == {ids[0]}

    def test_enforce_capacity_after_lowering_ceiling(self, tmp_path):
        path = tmp_path / "test.db"
        with Storage(Settings(db_path=path)) as stor:
            for i in range(6):
                stor.add_decision("t", f"decision {i}")

        with Storage(Settings(db_path=path, max_decisions=2)) as stor:
            stats = stor.enforce_capacity()
            evicted = {s.kind: s.affected for s in stats}
            assert evicted[ArchivableKind.DECISIONS] == 4
            assert evicted[ArchivableKind.DISCOVERIES] == 0
            assert stor.get_memory_stats()["decisions"].active == 2

    def test_entities_and_preferences_have_no_ceiling(self, small_storage):
        for i in range(5):
            small_storage.upsert_entity(f"Entity{i}")
            small_storage.set_preference("cat", f"key{i}", "v")

        assert len(small_storage.get_all_entities()) == 5
        assert len(small_storage.get_all_preferences()) == 5


# ========== Age Expiry ==========


class TestAgeExpiry:
    """Ended sessions and resolved questions are deleted past their windows."""

    def test_old_ended_session_expired(self, storage):
        old = storage.start_session()
        storage.end_session(old, "Old work")
        age_row(storage, "sessions", "ended_at", old, 91)

        result = storage.expire_stale()
        assert result.sessions_expired == 1
        assert storage.get_session(old) is None

    def test_recent_and_open_sessions_kept(self, storage):
        ended = storage.start_session()
        storage.end_session(ended, "Recent work")
        current = storage.start_session()
        age_row(storage, "sessions", "started_at", current, 400)

        assert storage.expire_stale().sessions_expired == 0
        assert storage.get_session(ended) is not None
        assert storage.get_session(current) is not None

    def test_old_resolved_question_expired(self, storage):
        resolved = storage.add_question("Resolved long ago?")
        storage.resolve_question(resolved, "Yes")
        age_row(storage, "open_questions", "resolved_at", resolved, 31)

        still_open = storage.add_question("Still open?")
        age_row(storage, "open_questions", "created_at", still_open, 365)

        result = storage.expire_stale()
        assert result.questions_expired == 1
        assert storage.get_question(resolved) is None
        assert storage.get_question(still_open).status == QuestionStatus.OPEN

    def test_expiry_runs_on_insert(self, storage):
        old = storage.start_session()
        storage.end_session(old, "Old work")
        age_row(storage, "sessions", "ended_at", old, 120)

        storage.add_decision("t", "trigger maintenance")
        assert storage.get_session(old) is None

    def test_run_maintenance_totals(self, small_storage):
        for i in range(3):
            small_storage.add_decision("t", f"decision {i}")
        with small_storage.transaction() as conn:
            conn.execute("INSERT INTO decisions (topic, decision) VALUES ('t', 'extra')")

        result = small_storage.run_maintenance()
        assert result.decisions_evicted == 1
        assert result.total == 1


# ========== Archive / Restore ==========


class TestArchive:
    """Soft delete and restore."""

    def test_archive_older_than(self, storage):
        old = storage.add_decision("t", "old decision")
        new = storage.add_decision("t", "new decision")
        age_row(storage, "decisions", "decided_at", old, 40)

        stats = storage.archive_older_than(30, ["decisions"])
        assert [(s.kind, s.affected) for s in stats] == [(ArchivableKind.DECISIONS, 1)]

        assert storage.get_decision(old) is None
        assert storage.get_decision(old, include_archived=True).is_archived
        assert storage.get_decision(new) is not None

    def test_archive_all_kinds_by_default(self, storage):
        storage.add_decision("t", "d")
        storage.add_discovery("c", "n")
        storage.upsert_entity("E")
        storage.add_question("Q?")

        stats = storage.archive_older_than(0)
        assert {s.kind for s in stats} == set(ArchivableKind)
        assert all(s.affected == 1 for s in stats)

        counts = storage.get_memory_stats()
        assert all(c.active == 0 and c.archived == 1 for c in counts.values())

    def test_archive_is_idempotent(self, storage):
        decision_id = storage.add_decision("t", "d")
        assert storage.archive_by_ids("decisions", [decision_id]) == 1
        first_stamp = storage.get_decision(decision_id, include_archived=True).archived_at

        assert storage.archive_by_ids("decisions", [decision_id]) == 0
        assert storage.archive_older_than(0, ["decisions"])[0].affected == 0
        assert storage.get_decision(decision_id, include_archived=True).archived_at == first_stamp

    def test_restore_active_row_is_noop(self, storage):
        decision_id = storage.add_decision("t", "d")
        assert storage.restore_by_ids("decisions", [decision_id]) == 0

    def test_archive_restore_round_trip(self, storage):
        ids = [storage.add_decision("t", f"d{i}") for i in range(4)]
        storage.archive_by_ids("decisions", [ids[0]])
        before = partition(storage, "decisions")

        storage.archive_by_ids("decisions", [ids[1], ids[2]])
        storage.restore_by_ids("decisions", [ids[1], ids[2]])

        assert partition(storage, "decisions") == before

    def test_restore_all(self, storage):
        storage.add_decision("t", "d")
        storage.upsert_entity("E")
        storage.archive_older_than(0)

        stats = storage.restore_all(["decisions"])
        assert stats[0].affected == 1
        assert storage.get_memory_stats()["entities"].archived == 1

        storage.restore_all()
        assert all(c.archived == 0 for c in storage.get_memory_stats().values())

    def test_archived_rows_hidden_from_reads(self, storage):
        decision_id = storage.add_decision("auth", "Use sessions")
        storage.upsert_entity("Session", description="Server-side state")
        question_id = storage.add_question("Session length?")
        storage.archive_older_than(0)

        assert storage.search_decisions("sessions") == []
        assert storage.get_recent_decisions() == []
        assert storage.get_entity("Session") is None
        assert storage.get_all_entities() == []
        assert storage.get_open_questions() == []
        assert storage.get_question(question_id) is None
        assert storage.search("session").total == 0

        assert [d.id for d in storage.search_decisions("sessions", include_archived=True)] == [
            decision_id
        ]
        assert storage.search("session", include_archived=True).total == 3

    def test_get_archived_entries(self, storage):
        keep = storage.add_decision("t", "keep")
        gone = storage.add_decision("t", "gone")
        storage.archive_by_ids(ArchivableKind.DECISIONS, [gone])

        archived = storage.get_archived_entries("decisions")
        assert [d.id for d in archived] == [gone]
        assert keep not in [d.id for d in archived]

    def test_resolve_archived_question_fails(self, storage):
        question_id = storage.add_question("Archived?")
        storage.archive_by_ids("open_questions", [question_id])
        assert storage.resolve_question(question_id, "Yes") is False

    def test_upsert_restores_archived_entity(self, storage):
        entity_id = storage.upsert_entity("User", description="v1")
        storage.archive_by_ids("entities", [entity_id])

        assert storage.upsert_entity("User", description="v2") == entity_id
        entity = storage.get_entity("User")
        assert entity.description == "v2"
        assert not entity.is_archived


# ========== Prune ==========


class TestPrune:
    """Hard delete by age or of the archived set."""

    def test_prune_older_than(self, storage):
        old = storage.add_discovery("c", "old")
        new = storage.add_discovery("c", "new")
        age_row(storage, "discoveries", "discovered_at", old, 100)

        stats = storage.prune_older_than(90, ["discoveries"])
        assert stats[0].affected == 1
        assert storage.get_discovery(old, include_archived=True) is None
        assert storage.get_discovery(new) is not None

    def test_prune_archived_only(self, storage):
        active_old = storage.add_decision("t", "active old")
        archived_old = storage.add_decision("t", "archived old")
        age_row(storage, "decisions", "decided_at", active_old, 100)
        age_row(storage, "decisions", "decided_at", archived_old, 100)
        storage.archive_by_ids("decisions", [archived_old])

        storage.prune_older_than(90, ["decisions"], archived_only=True)

        assert storage.get_decision(active_old) is not None
        assert storage.get_decision(archived_old, include_archived=True) is None

    def test_purge_archived(self, storage):
        keep = storage.add_decision("t", "keep")
        gone = storage.add_decision("t", "gone")
        entity_id = storage.upsert_entity("Gone")
        storage.archive_by_ids("decisions", [gone])
        storage.archive_by_ids("entities", [entity_id])

        stats = storage.purge_archived()
        assert sum(s.affected for s in stats) == 2
        assert storage.get_decision(keep) is not None
        assert all(c.archived == 0 for c in storage.get_memory_stats().values())

    def test_purged_rows_cannot_be_restored(self, storage):
        decision_id = storage.add_decision("t", "d")
        storage.archive_by_ids("decisions", [decision_id])
        storage.purge_archived(["decisions"])

        assert storage.restore_by_ids("decisions", [decision_id]) == 0


# ========== Validation ==========


class TestKindValidation:
    """Unknown kinds are rejected before any row is touched."""

    @pytest.mark.parametrize(
        "operation",
        [
            lambda s: s.archive_older_than(0, ["decisions", "sessions"]),
            lambda s: s.restore_all(["decisions", "users; DROP TABLE decisions"]),
            lambda s: s.prune_older_than(0, ["preferences", "decisions"]),
            lambda s: s.purge_archived(["bogus"]),
            lambda s: s.archive_by_ids("sessions", [1]),
            lambda s: s.restore_by_ids("nope", [1]),
            lambda s: s.get_archived_entries("preferences"),
        ],
    )
    def test_invalid_kind_affects_nothing(self, storage, operation):
        decision_id = storage.add_decision("t", "d")
        storage.archive_by_ids("decisions", [storage.add_decision("t", "archived")])
        before = storage.get_memory_stats()

        with pytest.raises(ValidationError):
            operation(storage)

        assert storage.get_memory_stats() == before
        assert storage.get_decision(decision_id) is not None

    def test_negative_days_rejected(self, storage):
        storage.add_decision("t", "d")
        with pytest.raises(ValidationError):
            storage.archive_older_than(-1)
        with pytest.raises(ValidationError):
            storage.prune_older_than(-5)
        assert storage.get_memory_stats()["decisions"].active == 1

    def test_kind_accepts_enum_and_string(self, storage):
        decision_id = storage.add_decision("t", "d")
        assert storage.archive_by_ids(ArchivableKind.DECISIONS, [decision_id]) == 1
        assert storage.restore_by_ids("decisions", [decision_id]) == 1

    def test_empty_id_list(self, storage):
        assert storage.archive_by_ids("decisions", []) == 0


# ========== End to End ==========


def test_remember_search_archive_restore_flow(storage):
    decision_id = storage.add_decision("auth", "use X")

    assert [d.id for d in storage.search("auth").decisions] == [decision_id]

    storage.archive_by_ids("decisions", [decision_id])
    assert storage.search("auth").total == 0

    storage.restore_by_ids("decisions", [decision_id])
    found = storage.search("auth")
    assert [d.id for d in found.decisions] == [decision_id]
    assert found.total == 1
