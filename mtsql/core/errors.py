"""
Error taxonomy for the node/root persistence layer.

- NotFoundError: no row for the requested node key or tree root
- MalformedRecordError: a stored row cannot be decoded into a node
- StorageError: a database failure wrapped with context
- ContextCancelledError: the call's context was cancelled or timed out

Database errors raised by reads are not wrapped; they reach the caller as
the driver raised them.
"""

from typing import Optional


class MerkleStorageError(Exception):
    """Base class for errors raised by the storage layer."""


class NotFoundError(MerkleStorageError):
    """Requested node or root does not exist for this tree instance."""

    def __init__(self, message: str = "key not found"):
        super().__init__(message)


class MalformedRecordError(MerkleStorageError, ValueError):
    """Stored record is corrupt or does not match the schema."""


# Raised for an entry column that is neither empty nor two hashes long
ERR_NODE_BYTES_BAD_SIZE = "node data has incorrect size in the DB"


class StorageError(MerkleStorageError):
    """
    Database failure with a human-readable context message.
    
    Renders as ``"<msg>: <cause>"``. The underlying exception stays reachable
    through ``cause`` and, when raised with ``raise ... from``, ``__cause__``.
    
    Attributes:
        msg: Context message
        cause: Underlying exception
    """

    def __init__(self, cause: BaseException, msg: str):
        self.cause = cause
        self.msg = msg
        super().__init__(f"{msg}: {cause}")

    def unwrap(self) -> BaseException:
        """Return the wrapped exception."""
        return self.cause


class ContextCancelledError(MerkleStorageError):
    """Statement refused or aborted because its context is done."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "context canceled")
        self.reason = reason or "context canceled"


__all__ = [
    "MerkleStorageError",
    "NotFoundError",
    "MalformedRecordError",
    "StorageError",
    "ContextCancelledError",
    "ERR_NODE_BYTES_BAD_SIZE",
]
