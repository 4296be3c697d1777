"""
Tests for the B+tree file binding.
"""

import os
import stat
import threading

import pytest

from kvstore.engine import BTreeFile
from kvstore.models.exceptions import ClosedError, EngineError, OpenError


class TestOpen:
    """Tests for opening and closing the file."""

    def test_creates_file_with_owner_only_permissions(self, db_path):
        """Test the backing file is created with mode 0600."""
        db = BTreeFile.open_at(db_path)
        try:
            assert os.path.exists(db_path)
            assert stat.S_IMODE(os.stat(db_path).st_mode) == 0o600
        finally:
            db.close()

    def test_reopen_existing_file(self, db_path):
        """Test data survives closing and reopening."""
        db = BTreeFile.open_at(db_path)
        db.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"v"))
        db.close()

        db = BTreeFile.open_at(db_path)
        try:
            assert db.view(lambda tx: tx.bucket(b"ns").get(b"k")) == b"v"
        finally:
            db.close()

    def test_missing_directory(self, temp_dir):
        """Test opening inside a missing directory fails with OpenError."""
        path = os.path.join(temp_dir, "missing", "store.db")

        with pytest.raises(OpenError) as exc_info:
            BTreeFile.open_at(path)

        assert exc_info.value.path == os.path.abspath(path)

    def test_path_is_directory(self, temp_dir):
        """Test opening a directory fails with OpenError and leaves no lock file."""
        path = os.path.join(temp_dir, "subdir")
        os.mkdir(path)

        with pytest.raises(OpenError):
            BTreeFile.open_at(path)

        assert not os.path.exists(path + "-lock")

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
    def test_unwritable_file(self, db_path):
        """Test a read-only file fails with OpenError and leaves no lock file."""
        with open(db_path, "wb"):
            pass
        os.chmod(db_path, stat.S_IRUSR)

        with pytest.raises(OpenError):
            BTreeFile.open_at(db_path)

        assert not os.path.exists(db_path + "-lock")

    def test_corrupt_file(self, db_path):
        """Test a file that is not a B+tree file fails with OpenError."""
        with open(db_path, "wb") as f:
            f.write(b"this is certainly not a database file " * 200)

        with pytest.raises(OpenError):
            BTreeFile.open_at(db_path)

        # The lock file this open created is removed again
        assert not os.path.exists(db_path + "-lock")

    def test_failed_open_keeps_existing_lock_file(self, db_path):
        """Test a failed open only removes lock files it created itself."""
        BTreeFile.open_at(db_path).close()
        with open(db_path, "wb") as f:
            f.write(b"garbage" * 1000)

        with pytest.raises(OpenError):
            BTreeFile.open_at(db_path)

        assert os.path.exists(db_path + "-lock")

    def test_already_open(self, btree, db_path):
        """Test a second handle on the same file is rejected."""
        with pytest.raises(OpenError) as exc_info:
            BTreeFile.open_at(db_path)

        assert "already open" in exc_info.value.reason

        # The first handle keeps working
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"v"))
        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"k")) == b"v"

    def test_open_after_other_handle_closed(self, db_path):
        """Test the lock is released on close."""
        BTreeFile.open_at(db_path).close()
        db = BTreeFile.open_at(db_path)
        db.close()

        # The lock file stays for the next open
        assert os.path.exists(db_path + "-lock")

    def test_failed_open_releases_lock(self, db_path):
        """Test a corrupt-file failure does not leave the lock held."""
        with open(db_path, "wb") as f:
            f.write(b"garbage" * 1000)

        with pytest.raises(OpenError):
            BTreeFile.open_at(db_path)

        os.remove(db_path)
        db = BTreeFile.open_at(db_path)
        db.close()

    def test_invalid_options(self, db_path):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            BTreeFile("")
        with pytest.raises(ValueError):
            BTreeFile(db_path, timeout=0)
        with pytest.raises(ValueError):
            BTreeFile(db_path, timeout=120)
        with pytest.raises(ValueError):
            BTreeFile(db_path, max_readers=0)

    def test_close_twice(self, db_path):
        """Test closing an already closed file is a no-op."""
        db = BTreeFile.open_at(db_path)
        db.close()
        db.close()
        assert db.closed

    def test_transactions_after_close(self, db_path):
        """Test transactions on a closed file raise ClosedError."""
        db = BTreeFile.open_at(db_path)
        db.close()

        with pytest.raises(ClosedError):
            db.view(lambda tx: None)
        with pytest.raises(ClosedError):
            db.update(lambda tx: None)


class TestTransactions:
    """Tests for read and write transaction semantics."""

    def test_update_commits(self, btree):
        """Test mutations are visible after commit."""
        def write(tx):
            bucket = tx.create_bucket_if_not_exists(b"ns")
            bucket.put(b"a", b"1")
            bucket.put(b"b", b"2")

        btree.update(write)

        assert btree.view(lambda tx: dict(tx.bucket(b"ns").items())) == {
            b"a": b"1",
            b"b": b"2",
        }

    def test_update_returns_result(self, btree):
        """Test the callback result is passed through."""
        assert btree.update(lambda tx: 42) == 42
        assert btree.view(lambda tx: "ok") == "ok"

    def test_update_rolls_back_on_error(self, btree):
        """Test an exception discards every mutation of the transaction."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"a", b"1"))

        def failing(tx):
            tx.create_bucket_if_not_exists(b"ns").put(b"a", b"changed")
            tx.create_bucket_if_not_exists(b"other").put(b"b", b"2")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            btree.update(failing)

        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"a")) == b"1"
        assert btree.view(lambda tx: tx.bucket(b"other")) is None

    def test_read_transaction_rejects_writes(self, btree):
        """Test a read-only transaction cannot mutate."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns"))

        with pytest.raises(EngineError):
            btree.view(lambda tx: tx.bucket(b"ns").put(b"k", b"v"))
        with pytest.raises(EngineError):
            btree.view(lambda tx: tx.create_bucket_if_not_exists(b"new"))

    def test_bucket_unusable_after_transaction(self, btree):
        """Test buckets cannot escape their transaction."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns"))
        bucket = btree.view(lambda tx: tx.bucket(b"ns"))

        with pytest.raises(EngineError):
            bucket.get(b"k")

    def test_snapshot_isolation(self, btree):
        """Test a read started before a write commits sees the old state."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"old"))

        with btree.read_transaction() as tx:
            assert tx.bucket(b"ns").get(b"k") == b"old"

            btree.update(lambda wtx: wtx.bucket(b"ns").put(b"k", b"new"))
            btree.update(lambda wtx: wtx.create_bucket_if_not_exists(b"later"))

            assert tx.bucket(b"ns").get(b"k") == b"old"
            assert tx.bucket(b"later") is None

        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"k")) == b"new"

    def test_snapshot_pinned_at_begin(self, btree):
        """Test the snapshot is taken when the transaction begins."""
        with btree.read_transaction() as tx:
            btree.update(lambda wtx: wtx.create_bucket_if_not_exists(b"ns"))
            assert tx.bucket(b"ns") is None

    def test_writes_are_serialized(self, btree):
        """Test a second writer blocks until the first commits."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"n", b"0"))
        entered = threading.Event()
        release = threading.Event()
        order = []

        def slow_writer():
            def write(tx):
                entered.set()
                release.wait(5)
                tx.bucket(b"ns").put(b"n", b"1")
                order.append("slow")

            btree.update(write)

        def fast_writer():
            def write(tx):
                order.append("fast")
                tx.bucket(b"ns").put(b"n", b"2")

            btree.update(write)

        t1 = threading.Thread(target=slow_writer)
        t1.start()
        assert entered.wait(5)

        t2 = threading.Thread(target=fast_writer)
        t2.start()
        # Readers are not blocked by the writer in flight
        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"n")) == b"0"

        release.set()
        t1.join(5)
        t2.join(5)

        assert order == ["slow", "fast"]
        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"n")) == b"2"

    def test_concurrent_readers(self, btree):
        """Test many threads reading at once."""
        def populate(tx):
            bucket = tx.create_bucket_if_not_exists(b"ns")
            for i in range(100):
                bucket.put(f"key{i:03d}".encode(), f"value{i}".encode())

        btree.update(populate)
        errors = []

        def reader():
            try:
                for _ in range(20):
                    items = btree.view(lambda tx: list(tx.bucket(b"ns").items()))
                    assert len(items) == 100
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert errors == []


class TestBucketsAndCursors:
    """Tests for bucket and cursor primitives."""

    def test_missing_bucket(self, btree):
        """Test looking up an unknown bucket returns None."""
        assert btree.view(lambda tx: tx.bucket(b"nope")) is None

    def test_create_bucket_is_idempotent(self, btree):
        """Test creating an existing bucket returns it unchanged."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"v"))
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns"))

        assert btree.view(lambda tx: tx.bucket(b"ns").get(b"k")) == b"v"

    def test_buckets_in_name_order(self, btree):
        """Test bucket enumeration is ordered by name bytes."""
        def create(tx):
            for name in (b"zeta", b"alpha", b"", b"mid"):
                tx.create_bucket_if_not_exists(name)

        btree.update(create)

        names = btree.view(lambda tx: [name for name, _ in tx.buckets()])
        assert names == [b"", b"alpha", b"mid", b"zeta"]

    def test_delete_absent_key(self, btree):
        """Test deleting an absent key is a no-op."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").delete(b"nope"))
        assert btree.view(lambda tx: list(tx.bucket(b"ns").items())) == []

    def test_cursor_byte_order(self, btree):
        """Test cursor iteration follows unsigned byte order."""
        keys = [b"b", b"a\x00", b"\xff", b"a", b"", b"A", b"\x00"]

        def write(tx):
            bucket = tx.create_bucket_if_not_exists(b"ns")
            for key in keys:
                bucket.put(key, b"v")

        btree.update(write)

        result = btree.view(lambda tx: [k for k, _ in tx.bucket(b"ns").items()])
        assert result == sorted(keys)
        assert result == [b"", b"\x00", b"A", b"a", b"a\x00", b"b", b"\xff"]

    def test_cursor_seek(self, btree):
        """Test seek positions on the first key >= target."""
        def write(tx):
            bucket = tx.create_bucket_if_not_exists(b"ns")
            for key in (b"apple", b"banana", b"cherry"):
                bucket.put(key, key.upper())

        btree.update(write)

        def walk(tx):
            cursor = tx.bucket(b"ns").cursor()
            return [
                cursor.seek(b"b"),
                cursor.next(),
                cursor.next(),
                cursor.next(),
                cursor.seek(b"zzz"),
                cursor.first(),
            ]

        assert btree.view(walk) == [
            (b"banana", b"BANANA"),
            (b"cherry", b"CHERRY"),
            None,
            None,
            None,
            (b"apple", b"APPLE"),
        ]

    def test_cursor_next_before_position(self, btree):
        """Test next() on an unpositioned cursor returns None."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"v"))
        assert btree.view(lambda tx: tx.bucket(b"ns").cursor().next()) is None

    def test_abandoned_cursor_does_not_block_commit(self, btree):
        """Test a half-consumed cursor inside a write transaction."""
        def write(tx):
            bucket = tx.create_bucket_if_not_exists(b"ns")
            for i in range(10):
                bucket.put(bytes([i]), b"v")
            bucket.cursor().first()

        btree.update(write)
        assert len(btree.view(lambda tx: list(tx.bucket(b"ns").items()))) == 10

    def test_returned_bytes_outlive_transaction(self, btree):
        """Test keys and values stay valid after the transaction ends."""
        btree.update(lambda tx: tx.create_bucket_if_not_exists(b"ns").put(b"k", b"value"))

        items = btree.view(lambda tx: list(tx.bucket(b"ns").items()))

        assert items == [(b"k", b"value")]
        assert all(type(k) is bytes and type(v) is bytes for k, v in items)
