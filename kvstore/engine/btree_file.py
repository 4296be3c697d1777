"""
BTreeFile - Handle on a single-file transactional B+tree.

The file is an SQLite database used purely as a sorted B-tree store:
every bucket is a ``WITHOUT ROWID`` table clustered on a BLOB primary key,
so rows are kept and iterated in byte-lexicographic key order. The database
runs in WAL mode, which gives readers a point-in-time snapshot that never
blocks the single writer.
"""

import fcntl
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from kvstore.models.exceptions import ClosedError, EngineError, OpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Catalog of buckets: name -> numeric id of the backing table
_CATALOG_DDL = (
    "CREATE TABLE IF NOT EXISTS buckets ("
    "name BLOB PRIMARY KEY, "
    "id INTEGER NOT NULL UNIQUE"
    ") WITHOUT ROWID"
)

_BUCKET_DDL = (
    "CREATE TABLE {table} ("
    "key BLOB PRIMARY KEY, "
    "value BLOB NOT NULL"
    ") WITHOUT ROWID"
)


def _table_name(bucket_id: int) -> str:
    return f"bucket_{int(bucket_id)}"


class Cursor:
    """
    Ordered iterator over the entries of one bucket.

    A cursor is positioned with first() or seek() and advanced with next().
    Each call returns a (key, value) tuple, or None once the bucket is
    exhausted. Returned bytes are owned by the caller.
    """

    def __init__(self, bucket: "Bucket") -> None:
        self._bucket = bucket
        self._rows: sqlite3.Cursor | None = None

    def first(self) -> tuple[bytes, bytes] | None:
        """Position on the smallest key of the bucket."""
        sql = f"SELECT key, value FROM {self._bucket.table} ORDER BY key"
        return self._position(sql, ())

    def seek(self, key: bytes) -> tuple[bytes, bytes] | None:
        """
        Position on the first key greater than or equal to ``key``.

        Args:
            key: Key to seek to.

        Returns:
            The entry at the new position, or None if every key is smaller.
        """
        sql = (
            f"SELECT key, value FROM {self._bucket.table} "
            f"WHERE key >= ? ORDER BY key"
        )
        return self._position(sql, (bytes(key),))

    def next(self) -> tuple[bytes, bytes] | None:
        """Advance to the next key."""
        if self._rows is None:
            return None

        self._bucket.tx._check_active()
        row = self._rows.fetchone()
        if row is None:
            self._rows = None
            return None
        return bytes(row[0]), bytes(row[1])

    def _position(self, sql: str, params: tuple) -> tuple[bytes, bytes] | None:
        self._rows = self._bucket.tx._open_cursor(sql, params)
        return self.next()


class Bucket:
    """
    Top-level sorted collection of (key, value) pairs inside a B+tree file.

    A Bucket is only valid for the lifetime of the transaction that
    produced it.
    """

    def __init__(self, tx: "Transaction", name: bytes, table: str) -> None:
        self.tx = tx
        self.name = name
        self.table = table

    def get(self, key: bytes) -> bytes | None:
        """Return the value stored under ``key``, or None if absent."""
        row = self.tx._execute(
            f"SELECT value FROM {self.table} WHERE key = ?", (bytes(key),)
        ).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, key: bytes, value: bytes) -> None:
        """Insert or overwrite ``key``."""
        self.tx._require_writable()
        self.tx._execute(
            f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
            (bytes(key), bytes(value)),
        )

    def delete(self, key: bytes) -> None:
        """Remove ``key``. Absent keys are ignored."""
        self.tx._require_writable()
        self.tx._execute(f"DELETE FROM {self.table} WHERE key = ?", (bytes(key),))

    def cursor(self) -> Cursor:
        return Cursor(self)

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """Iterate over every (key, value) pair in ascending key order."""
        cursor = self.cursor()
        item = cursor.first()
        while item is not None:
            yield item
            item = cursor.next()


class Transaction:
    """
    A read-only snapshot or the single mutable view of a B+tree file.

    Obtained from BTreeFile.view()/update() or the matching context
    managers; never constructed directly by callers.
    """

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self.writable = writable
        self._active = True
        self._cursors: list[sqlite3.Cursor] = []

    def bucket(self, name: bytes) -> Bucket | None:
        """Return the bucket called ``name``, or None if it does not exist."""
        row = self._execute(
            "SELECT id FROM buckets WHERE name = ?", (bytes(name),)
        ).fetchone()
        if row is None:
            return None
        return Bucket(self, bytes(name), _table_name(row[0]))

    def create_bucket_if_not_exists(self, name: bytes) -> Bucket:
        """
        Return the bucket called ``name``, creating it if needed.

        Raises:
            EngineError: If the transaction is read-only.
        """
        self._require_writable()
        bucket = self.bucket(name)
        if bucket is not None:
            return bucket

        (bucket_id,) = self._execute(
            "SELECT COALESCE(MAX(id), 0) + 1 FROM buckets"
        ).fetchone()
        table = _table_name(bucket_id)
        self._execute(_BUCKET_DDL.format(table=table))
        self._execute(
            "INSERT INTO buckets (name, id) VALUES (?, ?)", (bytes(name), bucket_id)
        )
        logger.debug(f"Created bucket {bytes(name)!r} as {table}")
        return Bucket(self, bytes(name), table)

    def buckets(self) -> Iterator[tuple[bytes, Bucket]]:
        """Iterate over every bucket in ascending name order."""
        rows = self._execute("SELECT name, id FROM buckets ORDER BY name").fetchall()
        for name, bucket_id in rows:
            yield bytes(name), Bucket(self, bytes(name), _table_name(bucket_id))

    def _check_active(self) -> None:
        if not self._active:
            raise EngineError("Transaction has already ended")

    def _require_writable(self) -> None:
        self._check_active()
        if not self.writable:
            raise EngineError("Cannot modify data in a read-only transaction")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self._check_active()
        return self._conn.execute(sql, params)

    def _open_cursor(self, sql: str, params: tuple) -> sqlite3.Cursor:
        rows = self._execute(sql, params)
        self._cursors.append(rows)
        return rows

    def _finish(self) -> None:
        """Release pending statements; the transaction is unusable afterwards."""
        for rows in self._cursors:
            rows.close()
        self._cursors.clear()
        self._active = False


class BTreeFile:
    """
    Owned handle on one on-disk B+tree file.

    Provides:
    - view(fn) / read_transaction(): concurrent point-in-time snapshots
    - update(fn) / write_transaction(): serialized all-or-nothing writes
    - close(): release the file; later transactions raise ClosedError

    The file is created with owner-only permissions and guarded by an
    exclusive advisory lock on a ``<path>-lock`` sidecar, so only one handle
    (in any process) may hold it open at a time.
    """

    DEFAULT_TIMEOUT = 5.0

    DEFAULT_MAX_READERS = 8

    FILE_MODE = 0o600

    def __init__(
        self,
        path: str,
        timeout: float = DEFAULT_TIMEOUT,
        sync: bool = True,
        max_readers: int = DEFAULT_MAX_READERS,
    ) -> None:
        """
        Configure the handle. Nothing is touched on disk until open().

        Args:
            path: Path of the B+tree file.
            timeout: Seconds the engine waits on a busy database (max 60).
            sync: If True, fsync on every commit; otherwise only at
                  checkpoints.
            max_readers: Idle reader connections kept for reuse (1-64).
        """
        if not path or not str(path).strip():
            raise ValueError("path cannot be empty")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if timeout > 60:
            raise ValueError(f"timeout cannot exceed 60 seconds, got {timeout}")
        if not 1 <= max_readers <= 64:
            raise ValueError(f"max_readers must be between 1 and 64, got {max_readers}")

        self._path = os.path.abspath(path)
        self._timeout = timeout
        self._sync = sync
        self._max_readers = max_readers

        self._lock_fd: int | None = None
        self._writer: sqlite3.Connection | None = None

        # Idle reader connections; each read transaction checks one out
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

        # At most one write transaction in flight
        self._write_lock = threading.Lock()

        self._closed = True

    @classmethod
    def open_at(cls, path: str, **options) -> "BTreeFile":
        """
        Open (creating if absent) the B+tree file at ``path``.

        Args:
            path: Path of the B+tree file.
            **options: Forwarded to the constructor.

        Returns:
            An open BTreeFile.

        Raises:
            OpenError: If the file is inaccessible, corrupt or locked.
        """
        db = cls(path, **options)
        db.open()
        return db

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Create the file if needed, acquire the lock and validate it."""
        if not self._closed:
            return

        # Inaccessible paths fail here, before a lock file exists
        try:
            # Create the file ourselves so it gets owner-only permissions
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, self.FILE_MODE)
            os.close(fd)
        except OSError as e:
            raise OpenError(self._path, e.strerror or str(e)) from e

        created_lock = self._acquire_lock()
        try:
            self._writer = self._connect()
            mode = self._writer.execute("PRAGMA journal_mode=WAL").fetchone()[0]
            if mode.lower() != "wal":
                raise sqlite3.OperationalError(
                    f"snapshot reads unavailable (journal mode {mode})"
                )
            self._writer.execute(f"PRAGMA synchronous={'FULL' if self._sync else 'NORMAL'}")
            self._writer.execute(_CATALOG_DDL)
        except sqlite3.Error as e:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
            self._release_lock(remove=created_lock)
            raise OpenError(self._path, str(e)) from e

        self._closed = False
        logger.info(f"Opened B+tree file {self._path}")

    def close(self) -> None:
        """
        Release every connection and the file lock.

        Closing twice is a no-op. Transactions still in flight must have
        completed before close() is called.
        """
        if self._closed:
            return
        self._closed = True

        with self._readers_lock:
            readers, self._readers = self._readers, []
        for conn in readers:
            conn.close()

        # Waits for a write in flight to finish
        with self._write_lock:
            try:
                self._writer.close()
            except sqlite3.Error as e:
                raise EngineError(f"Error closing {self._path}: {e}") from e
            finally:
                self._writer = None
                self._release_lock()

        logger.info(f"Closed B+tree file {self._path}")

    def view(self, fn: Callable[[Transaction], T]) -> T:
        """
        Run ``fn`` against a read-only snapshot.

        Args:
            fn: Callable receiving the Transaction.

        Returns:
            Whatever ``fn`` returns.
        """
        with self.read_transaction() as tx:
            return fn(tx)

    def update(self, fn: Callable[[Transaction], T]) -> T:
        """
        Run ``fn`` against the mutable view and commit atomically.

        If ``fn`` raises, every mutation is discarded and the exception
        propagates.

        Args:
            fn: Callable receiving the Transaction.

        Returns:
            Whatever ``fn`` returns.
        """
        with self.write_transaction() as tx:
            return fn(tx)

    @contextmanager
    def read_transaction(self) -> Iterator[Transaction]:
        """Context manager yielding a read-only snapshot Transaction."""
        self._check_open()
        conn = self._acquire_reader()
        tx = Transaction(conn, writable=False)
        try:
            try:
                conn.execute("BEGIN")
                # Pin the snapshot now rather than at the first bucket read
                conn.execute("SELECT COUNT(*) FROM buckets").fetchone()
            except sqlite3.Error as e:
                raise EngineError(f"Cannot begin read transaction: {e}") from e

            try:
                yield tx
            except sqlite3.Error as e:
                raise EngineError(f"Read transaction failed: {e}") from e
        finally:
            tx._finish()
            reusable = self._end_read(conn)
            self._release_reader(conn, reusable)

    @contextmanager
    def write_transaction(self) -> Iterator[Transaction]:
        """
        Context manager yielding the writable Transaction.

        Blocks until any other write transaction has committed or rolled
        back. Commits when the block exits normally, rolls back otherwise.
        """
        self._check_open()
        with self._write_lock:
            # Closed while waiting for the lock
            self._check_open()
            conn = self._writer
            tx = Transaction(conn, writable=True)
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise EngineError(f"Cannot begin write transaction: {e}") from e

            try:
                yield tx
            except BaseException as e:
                tx._finish()
                self._rollback(conn)
                logger.debug(f"Rolled back write transaction on {self._path}: {e!r}")
                if isinstance(e, sqlite3.Error):
                    raise EngineError(f"Write transaction failed: {e}") from e
                raise

            tx._finish()
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise EngineError(f"Cannot commit write transaction: {e}") from e

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError(f"B+tree file is closed: {self._path}")

    def _connect(self) -> sqlite3.Connection:
        # Transactions are issued explicitly, hence isolation_level=None
        return sqlite3.connect(
            self._path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    def _lock_path(self) -> str:
        return self._path + "-lock"

    def _acquire_lock(self) -> bool:
        """Lock the sidecar file; returns True if this call created it."""
        lock_path = self._lock_path()
        created = False
        try:
            try:
                fd = os.open(lock_path, os.O_RDWR | os.O_CREAT | os.O_EXCL, self.FILE_MODE)
                created = True
            except FileExistsError:
                fd = os.open(lock_path, os.O_RDWR)
        except OSError as e:
            raise OpenError(self._path, e.strerror or str(e)) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise OpenError(
                self._path, "file is already open by another handle or process"
            ) from e
        self._lock_fd = fd
        return created

    def _release_lock(self, remove: bool = False) -> None:
        if self._lock_fd is None:
            return
        try:
            if remove:
                # Unlinked while still held so no other opener can lock it first
                try:
                    os.unlink(self._lock_path())
                except FileNotFoundError:
                    pass
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(self._lock_fd)
            self._lock_fd = None

    def _acquire_reader(self) -> sqlite3.Connection:
        with self._readers_lock:
            if self._readers:
                return self._readers.pop()

        try:
            conn = self._connect()
            conn.execute("PRAGMA query_only = ON")
        except sqlite3.Error as e:
            raise EngineError(f"Cannot open reader on {self._path}: {e}") from e
        return conn

    def _release_reader(self, conn: sqlite3.Connection, reusable: bool) -> None:
        with self._readers_lock:
            if reusable and not self._closed and len(self._readers) < self._max_readers:
                self._readers.append(conn)
                return
        conn.close()

    def _end_read(self, conn: sqlite3.Connection) -> bool:
        """End a read transaction; returns False if the connection is unusable."""
        if not conn.in_transaction:
            return True
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Cannot end read transaction on {self._path}: {e}")
            return False
        return True

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # The first failure is already propagating
            logger.error(f"Rollback failed on {self._path}: {e}")
