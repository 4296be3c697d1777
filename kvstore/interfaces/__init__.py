"""
Abstract base classes for the key-value store.
"""

from kvstore.interfaces.store import Store

__all__ = ["Store"]
