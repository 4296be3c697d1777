"""
Store abstract base class for namespaced byte-string storage.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

from kvstore.models.entry import Entry


class Store(ABC):
    """
    Abstract base class for namespaced key-value stores.

    A namespace partitions the keyspace; distinct namespaces share no keys.
    Keys and values are opaque byte strings. Keys within a namespace are
    ordered lexicographically by byte value.

    Every operation is one atomic unit: it either fully applies or leaves
    the store untouched.

    Implementations:
    - BTreeStore: single-file transactional B+tree (engine name "btree")
    """

    @abstractmethod
    def put(self, namespace: str, key: bytes, value: bytes) -> None:
        """
        Insert or overwrite an entry, creating the namespace if absent.

        Args:
            namespace: Target namespace.
            key: Key bytes.
            value: Value bytes.

        Raises:
            EngineError: If the write cannot be committed.
        """
        pass

    @abstractmethod
    def get(self, namespace: str, key: bytes) -> bytes:
        """
        Return the current value of an entry.

        Raises:
            NotFoundError: If the namespace or the key is absent.
        """
        pass

    @abstractmethod
    def delete(self, namespace: str, key: bytes) -> None:
        """
        Remove an entry. Removing an absent key is a no-op.

        Raises:
            NotFoundError: If the namespace is absent.
        """
        pass

    @abstractmethod
    def list_keys(self, namespace: str) -> list[bytes]:
        """
        Return every key of a namespace in ascending byte order.

        Raises:
            NotFoundError: If the namespace is absent.
        """
        pass

    @abstractmethod
    def keys_by_prefix(self, namespace: str, prefix: bytes) -> list[bytes]:
        """
        Return the keys starting with ``prefix`` in ascending byte order.

        Raises:
            NotFoundError: If the namespace is absent.
        """
        pass

    @abstractmethod
    def namespaces(self) -> list[str]:
        """Return every namespace name in ascending order."""
        pass

    @abstractmethod
    def dump(self) -> Iterator[Entry]:
        """
        Lazily enumerate every entry of every namespace.

        The sequence reflects one consistent snapshot. Rendering it is the
        caller's concern (see ``kvstore.store.dump.format_dump``).
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Release engine resources. The store is unusable afterwards.

        Raises:
            ClosedError: If the store was already closed.
        """
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.closed:
            self.close()
