"""
Namespaced store implementations, engine registry and helpers.
"""

from kvstore.store.async_store import AsyncStore
from kvstore.store.btree_store import BTreeStore
from kvstore.store.dump import format_dump, log_dump
from kvstore.store.registry import (
    available_engines,
    new_store,
    register_engine,
    unregister_engine,
)

__all__ = [
    "AsyncStore",
    "BTreeStore",
    "format_dump",
    "log_dump",
    "available_engines",
    "new_store",
    "register_engine",
    "unregister_engine",
]
