"""
Data models and errors shared by the store and its engines.
"""

from kvstore.models.entry import Entry
from kvstore.models.exceptions import (
    ClosedError,
    EngineError,
    NotFoundError,
    OpenError,
    StoreError,
    UnsupportedEngineError,
)

__all__ = [
    "Entry",
    "StoreError",
    "OpenError",
    "UnsupportedEngineError",
    "NotFoundError",
    "EngineError",
    "ClosedError",
]
