"""
Entry record produced when enumerating a store.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Entry:
    """
    One (namespace, key) -> value association.

    Attributes:
        namespace: Namespace the entry lives in.
        key: Key bytes, unique within the namespace.
        value: Opaque value bytes.
    """

    namespace: str
    key: bytes
    value: bytes

    def __iter__(self):
        # Allows ``for ns, key, value in store.dump()``
        return iter((self.namespace, self.key, self.value))
