"""
Custom exceptions for the key-value store.
"""


class StoreError(Exception):
    """Base class for every error raised by the store and its engines."""


class OpenError(StoreError):
    """
    Raised when the backing storage file cannot be acquired.

    Covers inaccessible paths, files that are not a valid database and
    files already held open by another handle or process.
    """

    def __init__(self, path: str, reason: str):
        """
        Initialize open error.

        Args:
            path: Path of the storage file.
            reason: Human readable cause.
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot open storage file {path}: {reason}")


class UnsupportedEngineError(StoreError):
    """Raised when a store is requested for an engine name nobody registered."""

    def __init__(self, engine: str, available: list[str]):
        self.engine = engine
        self.available = available
        super().__init__(
            f"Unknown storage engine: {engine!r} "
            f"(available: {', '.join(available) or 'none'})"
        )


class NotFoundError(StoreError, KeyError):
    """
    Raised when a namespace or a key is absent.

    ``key`` is None when the namespace itself does not exist.
    """

    def __init__(self, namespace: str, key: bytes | None = None):
        self.namespace = namespace
        self.key = key
        if key is None:
            message = f"Namespace not found: {namespace!r}"
        else:
            message = f"Key not found in namespace {namespace!r}: {key!r}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would repr() the message
        return self.args[0]


class EngineError(StoreError):
    """Raised when the engine cannot run or commit a transaction."""


class ClosedError(StoreError):
    """Raised when an operation is attempted on a closed store or file."""
