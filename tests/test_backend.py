"""Tests for persistence backends, corruption handling and schema migrations."""

import sqlite3
from unittest.mock import patch

import pytest

from memory_vault.backend import (
    SnapshotBackend,
    SQLiteBackend,
    is_unavailable_error,
    open_backend,
    reconnecting,
)
from memory_vault.config import Settings
from memory_vault.migrations import SCHEMA, SCHEMA_VERSION, get_table_columns, init_schema
from memory_vault.service import MemoryService
from memory_vault.storage import (
    BackendUnavailableError,
    SchemaVersionError,
    Storage,
    StoreCorruptedError,
)

GARBAGE = b"this file is definitely not a sqlite database\n" * 100


@pytest.fixture(params=["sqlite", "snapshot"])
def backend_name(request):
    return request.param


# ========== Backends ==========


class TestBackends:
    """Both backends behave the same through Storage."""

    def test_data_survives_reopen(self, tmp_path, backend_name):
        settings = Settings(db_path=tmp_path / "vault.db", backend=backend_name)
        with Storage(settings) as stor:
            decision_id = stor.add_decision("db", "Use SQLite")
            stor.set_preference("style", "indent", "4 spaces")

        with Storage(settings) as stor:
            assert stor.get_decision(decision_id).decision == "Use SQLite"
            assert stor.get_preference("style", "indent").value == "4 spaces"
            assert stor.get_schema_version() == SCHEMA_VERSION

    def test_failed_transaction_rolls_back(self, tmp_path, backend_name):
        settings = Settings(db_path=tmp_path / "vault.db", backend=backend_name)
        with Storage(settings) as stor:
            with pytest.raises(sqlite3.IntegrityError):
                with stor.transaction() as conn:
                    conn.execute("INSERT INTO decisions (topic, decision) VALUES ('t', 'd')")
                    conn.execute("INSERT INTO decisions (topic) VALUES ('missing decision')")

        with Storage(settings) as stor:
            assert stor.get_recent_decisions() == []

    def test_snapshot_writes_plain_database_file(self, tmp_path):
        path = tmp_path / "vault.db"
        with Storage(Settings(db_path=path, backend="snapshot")) as stor:
            stor.add_decision("t", "snapshotted")

        conn = sqlite3.connect(path)
        try:
            rows = conn.execute("SELECT decision FROM decisions").fetchall()
        finally:
            conn.close()
        assert rows == [("snapshotted",)]
        assert not (tmp_path / "vault.db.tmp").exists()

    def test_snapshot_loads_wal_database(self, tmp_path):
        """A file written by the sqlite backend opens under the snapshot backend."""
        path = tmp_path / "vault.db"
        with Storage(Settings(db_path=path)) as stor:
            stor.add_discovery("pattern", "Repository layer")

        with Storage(Settings(db_path=path, backend="snapshot")) as stor:
            assert [d.name for d in stor.get_all_discoveries()] == ["Repository layer"]

    def test_open_backend_selects_class(self, tmp_path):
        path = tmp_path / "vault.db"
        assert isinstance(open_backend(Settings(), path), SQLiteBackend)
        assert isinstance(open_backend(Settings(backend="snapshot"), path), SnapshotBackend)

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown backend"):
            open_backend(Settings(backend="postgres"), tmp_path / "vault.db")

    def test_execute_helpers(self, tmp_path, backend_name):
        backend = open_backend(
            Settings(backend=backend_name), tmp_path / "vault.db", on_connect=init_schema
        )
        try:
            backend.executemany(
                "INSERT INTO preferences (category, key, value) VALUES (?, ?, ?)",
                [("a", "x", "1"), ("a", "y", "2")],
            )
            backend.executescript("UPDATE preferences SET value = value || '!';")

            rows = backend.execute("SELECT key, value FROM preferences ORDER BY key").fetchall()
            assert [tuple(r) for r in rows] == [("x", "1!"), ("y", "2!")]
        finally:
            backend.close()

    def test_close_then_reuse_reopens(self, tmp_path):
        with Storage(Settings(db_path=tmp_path / "vault.db")) as stor:
            stor.add_decision("t", "before close")
            stor.close()
            assert len(stor.get_recent_decisions()) == 1

    def test_snapshot_write_failure_is_reported_and_not_kept(self, tmp_path):
        path = tmp_path / "vault.db"
        with Storage(Settings(db_path=path, backend="snapshot")) as stor:
            service = MemoryService(stor)
            assert service.remember("decision", topic="t", decision="saved").success

            blocker = tmp_path / "vault.db.tmp"
            blocker.mkdir()
            result = service.remember("decision", topic="t", decision="lost")
            assert not result.success
            assert "could not be saved" in result.message

            blocker.rmdir()
            assert [d.decision for d in stor.get_recent_decisions()] == ["saved"]

        with Storage(Settings(db_path=path, backend="snapshot")) as stor:
            assert [d.decision for d in stor.get_recent_decisions()] == ["saved"]

    def test_snapshot_open_fails_cleanly_when_unwritable(self, tmp_path):
        path = tmp_path / "vault.db"
        (tmp_path / "vault.db.tmp").mkdir()

        stor = Storage(Settings(db_path=path, backend="snapshot"))
        with pytest.raises(BackendUnavailableError):
            stor.get_recent_decisions()
        stor.close()


# ========== Corruption ==========


class TestCorruption:
    """An unreadable file is reported, or quarantined when recovery is enabled."""

    def test_corrupt_file_raises_and_is_untouched(self, tmp_path):
        path = tmp_path / "vault.db"
        path.write_bytes(GARBAGE)

        stor = Storage(Settings(db_path=path))
        with pytest.raises(StoreCorruptedError, match="left untouched"):
            stor.get_recent_decisions()
        stor.close()

        assert path.read_bytes() == GARBAGE
        assert list(tmp_path.glob("*.corrupt-*")) == []

    def test_recover_corrupt_quarantines_file(self, tmp_path):
        path = tmp_path / "vault.db"
        path.write_bytes(GARBAGE)

        with Storage(Settings(db_path=path, recover_corrupt=True)) as stor:
            stor.add_decision("t", "fresh start")
            assert len(stor.get_recent_decisions()) == 1

        quarantined = list(tmp_path.glob("vault.db.corrupt-*"))
        assert len(quarantined) == 1
        assert quarantined[0].read_bytes() == GARBAGE


# ========== Reconnect ==========


class TestReconnect:
    """Unavailable-store errors are retried once after reopening."""

    def test_is_unavailable_error(self):
        readonly = sqlite3.OperationalError("attempt to write a readonly database")
        assert is_unavailable_error(readonly)
        assert is_unavailable_error(sqlite3.OperationalError("database is locked"))
        assert not is_unavailable_error(sqlite3.OperationalError("no such table: foo"))
        assert not is_unavailable_error(sqlite3.IntegrityError("readonly"))

    def test_retries_once_after_reconnect(self, tmp_path):
        with Storage(Settings(db_path=tmp_path / "vault.db")) as stor:
            stor.add_decision("t", "warm up")
            calls = []

            def flaky(self):
                calls.append(1)
                if len(calls) == 1:
                    raise sqlite3.OperationalError("attempt to write a readonly database")
                return self.get_recent_decisions()

            with patch.object(stor.backend, "reconnect", wraps=stor.backend.reconnect) as reconnect:
                result = reconnecting(flaky)(stor)

            assert len(result) == 1
            assert len(calls) == 2
            reconnect.assert_called_once()

    def test_persistent_failure_raises_unavailable(self, tmp_path):
        with Storage(Settings(db_path=tmp_path / "vault.db")) as stor:

            def always_readonly(self):
                raise sqlite3.OperationalError("attempt to write a readonly database")

            with pytest.raises(BackendUnavailableError, match="unavailable for writing"):
                reconnecting(always_readonly)(stor)

    def test_other_errors_not_retried(self, tmp_path):
        with Storage(Settings(db_path=tmp_path / "vault.db")) as stor:
            calls = []

            def broken(self):
                calls.append(1)
                raise sqlite3.OperationalError("no such table: nowhere")

            with pytest.raises(sqlite3.OperationalError, match="no such table"):
                reconnecting(broken)(stor)
            assert len(calls) == 1


# ========== Migrations ==========


def create_v1_database(path):
    """Write a database laid out like schema version 1."""
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.execute("INSERT INTO decisions (topic, decision) VALUES ('db', 'Use SQLite')")
    for started in ("2024-01-01 09:00:00", "2024-01-02 09:00:00", "2024-01-03 09:00:00"):
        conn.execute("INSERT INTO sessions (started_at) VALUES (?)", (started,))
    conn.commit()
    conn.close()


class TestMigrations:
    """Schema upgrades and version checks."""

    def test_v1_upgrade_adds_archive_columns(self, tmp_path):
        path = tmp_path / "old.db"
        create_v1_database(path)

        with Storage(Settings(db_path=path)) as stor:
            assert stor.get_schema_version() == SCHEMA_VERSION
            with stor._connection() as conn:
                for table in ("decisions", "discoveries", "entities", "open_questions"):
                    assert "archived_at" in get_table_columns(conn, table)
            assert stor.get_recent_decisions()[0].decision == "Use SQLite"

    def test_v1_upgrade_keeps_only_newest_session_open(self, tmp_path):
        path = tmp_path / "old.db"
        create_v1_database(path)

        with Storage(Settings(db_path=path)) as stor:
            current = stor.get_current_session()
            assert current.id == 3
            assert stor.get_session(1).ended_at is not None
            assert stor.get_session(2).ended_at is not None

    def test_newer_schema_rejected(self, tmp_path):
        path = tmp_path / "future.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT)")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION + 1,))
        conn.commit()
        conn.close()

        stor = Storage(Settings(db_path=path))
        with pytest.raises(SchemaVersionError, match="newer than supported"):
            stor.get_recent_decisions()
        stor.close()

    def test_init_schema_is_rerunnable(self, tmp_path):
        conn = sqlite3.connect(tmp_path / "vault.db")
        try:
            init_schema(conn)
            init_schema(conn)
            versions = conn.execute("SELECT version FROM schema_version").fetchall()
        finally:
            conn.close()
        assert versions == [(SCHEMA_VERSION,)]
