"""
Engine registry - named factories producing Store implementations.
"""

import logging
import threading
from collections.abc import Callable

from kvstore.interfaces.store import Store
from kvstore.models.exceptions import UnsupportedEngineError
from kvstore.store.btree_store import BTreeStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[..., Store]

_factories: dict[str, StoreFactory] = {}
_lock = threading.Lock()


def register_engine(name: str, factory: StoreFactory) -> None:
    """
    Register a store factory under ``name``, replacing any previous one.

    Args:
        name: Engine identifier passed to new_store().
        factory: Callable ``factory(path, **options) -> Store``.
    """
    if not name:
        raise ValueError("Engine name cannot be empty")
    if not callable(factory):
        raise TypeError(f"Factory for engine {name!r} must be callable")

    with _lock:
        if name in _factories:
            logger.info(f"Replacing storage engine {name!r}")
        _factories[name] = factory


def unregister_engine(name: str) -> None:
    """Remove a registered engine. Unknown names are ignored."""
    with _lock:
        _factories.pop(name, None)


def available_engines() -> list[str]:
    with _lock:
        return sorted(_factories)


def new_store(engine: str, path: str, **options) -> Store:
    """
    Open a store using the engine registered as ``engine``.

    Args:
        engine: Registered engine name (e.g. "btree").
        path: Storage location handed to the engine.
        **options: Engine specific options.

    Returns:
        An open Store.

    Raises:
        UnsupportedEngineError: If no engine is registered under that name.
        OpenError: If the engine cannot acquire its storage.
    """
    with _lock:
        factory = _factories.get(engine)
        available = sorted(_factories)

    if factory is None:
        raise UnsupportedEngineError(engine, available)

    store = factory(path, **options)
    logger.debug(f"Opened {engine!r} store at {path}")
    return store


for _name in (BTreeStore.ENGINE_NAME, *BTreeStore.ENGINE_ALIASES):
    register_engine(_name, BTreeStore)
