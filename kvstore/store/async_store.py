"""
AsyncStore - asyncio facade over a blocking Store.
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any

from kvstore.interfaces.store import Store
from kvstore.models.entry import Entry


class AsyncStore:
    """
    Runs every Store operation in the event loop's default executor.

    The wrapped store keeps its own transaction discipline; this class only
    keeps blocking file I/O off the event loop.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    @property
    def store(self) -> Store:
        return self._store

    @property
    def closed(self) -> bool:
        return self._store.closed

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def put(self, namespace: str, key: bytes, value: bytes) -> None:
        await self._run(self._store.put, namespace, key, value)

    async def get(self, namespace: str, key: bytes) -> bytes:
        return await self._run(self._store.get, namespace, key)

    async def delete(self, namespace: str, key: bytes) -> None:
        await self._run(self._store.delete, namespace, key)

    async def list_keys(self, namespace: str) -> list[bytes]:
        return await self._run(self._store.list_keys, namespace)

    async def keys_by_prefix(self, namespace: str, prefix: bytes) -> list[bytes]:
        return await self._run(self._store.keys_by_prefix, namespace, prefix)

    async def namespaces(self) -> list[str]:
        return await self._run(self._store.namespaces)

    async def dump(self) -> list[Entry]:
        """Materialize the whole enumeration inside the executor."""
        return await self._run(lambda: list(self._store.dump()))

    async def close(self) -> None:
        await self._run(self._store.close)

    async def __aenter__(self) -> "AsyncStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self._store.closed:
            await self.close()
