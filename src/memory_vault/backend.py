"""Persistence backends for the record store.

Two strategies share one interface:

- ``SQLiteBackend``: a file-backed SQLite database in WAL mode. Every committed
  transaction is durable when ``transaction()`` exits.
- ``SnapshotBackend``: an in-memory SQLite database that is re-serialized to
  the file after every committed transaction. Fine for low write volume, but
  unsafe with more than one process writing the same file.

Both hand out ``sqlite3.Connection`` objects with ``sqlite3.Row`` rows, so the
record store issues the same parameterized statements against either.
"""

import functools
import os
import sqlite3
from collections.abc import Callable, Iterable, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from memory_vault.config import Settings, ensure_data_dir
from memory_vault.errors import BackendUnavailableError, StoreCorruptedError
from memory_vault.logging import get_logger

log = get_logger("backend")

# Substrings of sqlite3.OperationalError messages that mean "reopen and retry"
_UNAVAILABLE_MARKERS = (
    "readonly",
    "read-only",
    "unable to open",
    "database is locked",
    "disk i/o error",
)


def is_unavailable_error(exc: sqlite3.Error) -> bool:
    """True if the error means the store is temporarily unwritable."""
    message = str(exc).lower()
    return isinstance(exc, sqlite3.OperationalError) and any(
        marker in message for marker in _UNAVAILABLE_MARKERS
    )


class Backend:
    """Base backend: owns one connection, opens it lazily, reopens on demand.

    Subclasses implement ``_open_connection`` and, if they need to, ``persist``.
    """

    def __init__(
        self,
        path: Path,
        *,
        busy_timeout: float = 30.0,
        recover_corrupt: bool = False,
        on_connect: Callable[[sqlite3.Connection], None] | None = None,
    ):
        self._path = path
        self._busy_timeout = busy_timeout
        self._recover_corrupt = recover_corrupt
        self._on_connect = on_connect
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _open_connection(self) -> sqlite3.Connection:
        raise NotImplementedError

    def persist(self) -> None:
        """Make committed changes durable. No-op for engines that already are."""

    def connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            ensure_data_dir(self._path)
            try:
                self._conn = self._initialize()
            except sqlite3.OperationalError:
                raise
            except sqlite3.DatabaseError as e:
                if not self._recover_corrupt:
                    raise StoreCorruptedError(
                        f"Cannot read database {self._path}: {e}. The file was left "
                        "untouched; move it aside or set MEMORY_VAULT_RECOVER_CORRUPT=1."
                    ) from e
                self._quarantine(e)
                self._conn = self._initialize()
            self.persist()
        return self._conn

    def _initialize(self) -> sqlite3.Connection:
        """Open a connection and run the schema hook on it."""
        conn = None
        try:
            conn = self._open_connection()
            if self._on_connect is not None:
                self._on_connect(conn)
            conn.commit()
        except Exception:
            if conn is not None:
                conn.close()
            raise
        return conn

    def _quarantine(self, error: Exception) -> None:
        """Move an unreadable database aside so a fresh one can be created."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        target = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        os.replace(self._path, target)
        for suffix in ("-wal", "-shm"):
            sidecar = self._path.with_name(self._path.name + suffix)
            if sidecar.exists():
                os.replace(sidecar, target.with_name(target.name + suffix))
        log.error(
            "Database {} is unreadable ({}); moved to {} and starting a fresh store",
            self._path,
            error,
            target,
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error, then persist."""
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        self.persist()

    def execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        """Run one statement on the current connection (no implicit commit)."""
        return self.connection().execute(sql, params)

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence]) -> sqlite3.Cursor:
        return self.connection().executemany(sql, seq_of_params)

    def executescript(self, script: str) -> None:
        """Run a multi-statement script, then persist."""
        self.connection().executescript(script)
        self.persist()

    def reconnect(self) -> None:
        """Drop the current connection and open a new one."""
        log.warning("Reconnecting to {}", self._path)
        self.close()
        self.connection()

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class SQLiteBackend(Backend):
    """File-backed SQLite with WAL journaling."""

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._path),
            check_same_thread=False,
            timeout=self._busy_timeout,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout * 1000)}")
        return conn


class SnapshotBackend(Backend):
    """In-memory SQLite, written out whole after every committed transaction."""

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self._path.exists() and self._path.stat().st_size > 0:
            data = bytearray(self._path.read_bytes())
            # WAL images cannot be opened in memory; flip the header to rollback mode
            if len(data) >= 20 and data[18] == 2 and data[19] == 2:
                data[18] = data[19] = 1
            conn.deserialize(bytes(data))
            log.debug("Loaded snapshot {} ({} bytes)", self._path, len(data))
        return conn

    def persist(self) -> None:
        if self._conn is None:
            return
        data = self._conn.serialize()
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            if tmp_path.is_file():
                tmp_path.unlink()
            # The in-memory copy is ahead of the file; drop it so the next
            # connection reloads the last good snapshot
            self.close()
            log.error("Could not write snapshot {}: {}", self._path, e)
            raise BackendUnavailableError(
                f"Database {self._path} could not be saved: {e}. The change was not kept."
            ) from e


BACKENDS: dict[str, type[Backend]] = {
    "sqlite": SQLiteBackend,
    "snapshot": SnapshotBackend,
}


def open_backend(
    settings: Settings,
    path: Path,
    on_connect: Callable[[sqlite3.Connection], None] | None = None,
) -> Backend:
    """Build the backend named by ``settings.backend``."""
    try:
        backend_cls = BACKENDS[settings.backend]
    except KeyError:
        raise ValueError(
            f"Unknown backend {settings.backend!r}. Use: {sorted(BACKENDS)}"
        ) from None
    return backend_cls(
        path,
        busy_timeout=settings.busy_timeout_seconds,
        recover_corrupt=settings.recover_corrupt,
        on_connect=on_connect,
    )


def reconnecting(method):
    """Retry a storage method once after reopening an unavailable backend.

    Only the outermost decorated call retries; nested calls run inside the
    outer call's connection and let errors propagate to it.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        # Depth is only meaningful to the thread holding the lock
        with self._lock:
            if self._call_depth > 0:
                return method(self, *args, **kwargs)
            self._call_depth += 1
            try:
                try:
                    return method(self, *args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not is_unavailable_error(e):
                        raise
                    log.warning("{} failed ({}); retrying after reconnect", method.__name__, e)
                try:
                    self.backend.reconnect()
                    return method(self, *args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not is_unavailable_error(e):
                        raise
                    raise BackendUnavailableError(
                        f"Database {self.backend.path} is unavailable for writing: {e}"
                    ) from e
            finally:
                self._call_depth -= 1

    return wrapper
