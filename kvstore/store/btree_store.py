"""
BTreeStore - Namespaced store on top of a single-file B+tree.
"""

import logging
from collections.abc import Iterator

from kvstore.engine.btree_file import BTreeFile, Bucket, Transaction
from kvstore.interfaces.store import Store
from kvstore.models.entry import Entry
from kvstore.models.exceptions import ClosedError, NotFoundError

logger = logging.getLogger(__name__)


def _bucket_name(namespace: str) -> bytes:
    try:
        return namespace.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"Namespace {namespace!r} is not valid UTF-8 text: {e.reason}") from e


class BTreeStore(Store):
    """
    Namespaced key-value store backed by a BTreeFile.

    Each namespace maps to one bucket of the B+tree file, created lazily on
    the first put() and never removed implicitly. Every public call runs in
    exactly one transaction:
    - put/delete: one write transaction (all-or-nothing)
    - get/list_keys/keys_by_prefix/namespaces/dump: one read snapshot
    """

    ENGINE_NAME = "btree"

    # Additional names new_store() accepts for this engine
    ENGINE_ALIASES = ("bbolt",)

    def __init__(self, path: str, **options) -> None:
        """
        Open the store.

        Args:
            path: Path of the B+tree file (created if absent).
            **options: Forwarded to BTreeFile (timeout, sync, max_readers).

        Raises:
            OpenError: If the file cannot be acquired.
        """
        self._db = BTreeFile.open_at(path, **options)

    @property
    def path(self) -> str:
        return self._db.path

    @property
    def closed(self) -> bool:
        return self._db.closed

    def put(self, namespace: str, key: bytes, value: bytes) -> None:
        key, value = bytes(key), bytes(value)

        def _put(tx: Transaction) -> None:
            bucket = tx.create_bucket_if_not_exists(_bucket_name(namespace))
            bucket.put(key, value)

        self._db.update(_put)

    def get(self, namespace: str, key: bytes) -> bytes:
        key = bytes(key)

        def _get(tx: Transaction) -> bytes:
            value = self._bucket(tx, namespace).get(key)
            if value is None:
                raise NotFoundError(namespace, key)
            return value

        return self._db.view(_get)

    def delete(self, namespace: str, key: bytes) -> None:
        key = bytes(key)
        self._db.update(lambda tx: self._bucket(tx, namespace).delete(key))

    def list_keys(self, namespace: str) -> list[bytes]:
        def _list(tx: Transaction) -> list[bytes]:
            return [key for key, _ in self._bucket(tx, namespace).items()]

        return self._db.view(_list)

    def keys_by_prefix(self, namespace: str, prefix: bytes) -> list[bytes]:
        prefix = bytes(prefix)

        def _scan(tx: Transaction) -> list[bytes]:
            cursor = self._bucket(tx, namespace).cursor()
            keys = []
            # Keys are sorted, so matches form one contiguous run from seek()
            item = cursor.seek(prefix)
            while item is not None and item[0].startswith(prefix):
                keys.append(item[0])
                item = cursor.next()
            return keys

        return self._db.view(_scan)

    def namespaces(self) -> list[str]:
        return self._db.view(
            lambda tx: [name.decode("utf-8") for name, _ in tx.buckets()]
        )

    def dump(self) -> Iterator[Entry]:
        # Fail now rather than on first iteration
        if self._db.closed:
            raise ClosedError(f"Store is closed: {self._db.path}")
        return self._entries()

    def close(self) -> None:
        if self._db.closed:
            raise ClosedError(f"Store is already closed: {self._db.path}")
        self._db.close()

    def _entries(self) -> Iterator[Entry]:
        with self._db.read_transaction() as tx:
            for name, bucket in tx.buckets():
                namespace = name.decode("utf-8")
                for key, value in bucket.items():
                    yield Entry(namespace, key, value)

    @staticmethod
    def _bucket(tx: Transaction, namespace: str) -> Bucket:
        bucket = tx.bucket(_bucket_name(namespace))
        if bucket is None:
            raise NotFoundError(namespace)
        return bucket

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"BTreeStore(path={self.path!r}, {state})"
