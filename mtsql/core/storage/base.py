"""
Storage contracts.

Storage is what a Merkle tree engine consumes: get/put for nodes keyed by
hash, get/set for the current root. Database is what a Storage backend
consumes from its environment: one parameterized write, one single-row
query, both bound to a Context.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Protocol, Sequence

from mtsql.core.context import Context
from mtsql.core.node import Node


class Database(Protocol):
    """Database handle required by SqlStorage."""

    def execute(self, ctx: Context, query: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement atomically, return affected row count."""
        ...

    def fetch_one(
        self, ctx: Context, query: str, params: Sequence[Any] = ()
    ) -> Optional[Mapping[str, Any]]:
        """Run a query, return its first row keyed by column name, or None."""
        ...


class Storage(ABC):
    """
    Node and root storage for one tree instance.
    
    get() and get_root() raise NotFoundError on a miss. Every method takes
    an optional Context; None means no cancellation and no deadline.
    """

    @abstractmethod
    def get(self, key: bytes, ctx: Optional[Context] = None) -> Node:
        """Load the node stored under `key`."""

    @abstractmethod
    def put(self, key: bytes, node: Node, ctx: Optional[Context] = None) -> None:
        """Store `node` under `key`, replacing any node already there."""

    @abstractmethod
    def get_root(self, ctx: Optional[Context] = None) -> bytes:
        """Current root hash."""

    @abstractmethod
    def set_root(self, root: bytes, ctx: Optional[Context] = None) -> None:
        """Replace the current root hash."""
