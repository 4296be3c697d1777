"""
Human readable rendering of a store enumeration, for operator debugging.
"""

import logging
from collections.abc import Iterable, Iterator

from kvstore.interfaces.store import Store
from kvstore.models.entry import Entry


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def format_dump(entries: Iterable[Entry]) -> Iterator[str]:
    """
    Render entries as an indented listing grouped by namespace.

    Entries are expected grouped by namespace, as Store.dump() yields them.
    The output is meant for people, not for parsing.

    Yields:
        One line per namespace header and one per key.
    """
    current = None
    for entry in entries:
        if entry.namespace != current:
            current = entry.namespace
            yield f"Bucket: {current}"
        yield f"  Key: {_text(entry.key)}, Value: {_text(entry.value)}"


def log_dump(store: Store, logger: logging.Logger, level: int = logging.DEBUG) -> int:
    """
    Write the whole content of ``store`` to ``logger``.

    Args:
        store: Store to enumerate.
        logger: Destination logger.
        level: Logging level for every line.

    Returns:
        Number of entries written.
    """
    entries = store.dump()
    count = 0

    def _counted() -> Iterator[Entry]:
        nonlocal count
        for entry in entries:
            count += 1
            yield entry

    for line in format_dump(_counted()):
        logger.log(level, line)
    return count
