"""
Embedded namespaced key-value store.

This package provides a backend-agnostic store for byte strings with:
- put(namespace, key, value) - atomic insert/overwrite
- get(namespace, key) - point lookup
- delete(namespace, key) - atomic removal
- list_keys(namespace) - all keys in byte order
- keys_by_prefix(namespace, prefix) - sorted prefix scan
- dump() - lazy enumeration of every entry

Stores are opened through a registry of named engines:

    with new_store("btree", "data/store.db") as store:
        store.put("accounts", b"alice", b"...")
"""

from kvstore.interfaces.store import Store
from kvstore.models import (
    ClosedError,
    EngineError,
    Entry,
    NotFoundError,
    OpenError,
    StoreError,
    UnsupportedEngineError,
)
from kvstore.store import (
    AsyncStore,
    BTreeStore,
    available_engines,
    format_dump,
    log_dump,
    new_store,
    register_engine,
)

__all__ = [
    "Store",
    "BTreeStore",
    "AsyncStore",
    "Entry",
    "new_store",
    "register_engine",
    "available_engines",
    "format_dump",
    "log_dump",
    "StoreError",
    "OpenError",
    "UnsupportedEngineError",
    "NotFoundError",
    "EngineError",
    "ClosedError",
]
