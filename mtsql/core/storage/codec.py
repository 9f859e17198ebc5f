"""
Node Record Codec.

Maps nodes to rows of the mt_nodes table and back:

    | column  | middle  | leaf               | empty |
    |---------|---------|--------------------|-------|
    | type    | 0       | 1                  | 2     |
    | child_l | 32 B    | NULL               | NULL  |
    | child_r | 32 B    | NULL               | NULL  |
    | entry   | NULL    | h_index || h_value | NULL  |

Decoding is strict. A row that cannot be a valid node raises
MalformedRecordError; nothing is truncated or padded.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from mtsql.crypto import HASH_SIZE
from mtsql.core.errors import ERR_NODE_BYTES_BAD_SIZE, MalformedRecordError
from mtsql.core.node import EmptyNode, LeafNode, MiddleNode, Node, NodeType

ENTRY_SIZE = 2 * HASH_SIZE


@dataclass
class NodeItem:
    """
    One row of mt_nodes.
    
    Attributes:
        mt_id: Tree instance id
        key: Node key (32 bytes)
        type: NodeType discriminant
        child_l: Left child of a middle node
        child_r: Right child of a middle node
        entry: h_index || h_value of a leaf node
        created_at: Unix time of first insert (audit only)
        deleted_at: Reserved, never set
    """
    mt_id: int
    key: bytes
    type: int
    child_l: Optional[bytes] = None
    child_r: Optional[bytes] = None
    entry: Optional[bytes] = None
    created_at: Optional[int] = None
    deleted_at: Optional[int] = None

    # =========================================================================
    # Encode
    # =========================================================================

    @classmethod
    def from_node(cls, mt_id: int, key: bytes, node: Node) -> "NodeItem":
        """Encode a node stored under `key` in tree `mt_id`."""
        item = cls(mt_id=mt_id, key=bytes(key), type=int(node.node_type))
        if isinstance(node, MiddleNode):
            item.child_l = bytes(node.child_l)
            item.child_r = bytes(node.child_r)
        elif isinstance(node, LeafNode):
            item.entry = bytes(node.h_index) + bytes(node.h_value)
        elif not isinstance(node, EmptyNode):
            raise TypeError(f"Not a node: {type(node).__name__}")
        return item

    # =========================================================================
    # Decode
    # =========================================================================

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NodeItem":
        """Build an item from a row keyed by column name."""
        return cls(
            mt_id=row["mt_id"],
            key=_blob(row["key"]),
            type=row["type"],
            child_l=_blob(row["child_l"]),
            child_r=_blob(row["child_r"]),
            entry=_blob(row["entry"]),
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )

    def node(self) -> Node:
        """
        Decode the row into a node.
        
        Raises:
            MalformedRecordError: bad entry size, bad child size, unknown
                type, or columns that contradict the type
        """
        entry = self.entry or None
        if entry is not None and len(entry) != ENTRY_SIZE:
            raise MalformedRecordError(
                f"{ERR_NODE_BYTES_BAD_SIZE}: entry is {len(entry)} bytes, "
                f"expected {ENTRY_SIZE}"
            )
        for name in ("child_l", "child_r"):
            child = getattr(self, name)
            if child is not None and len(child) != HASH_SIZE:
                raise MalformedRecordError(
                    f"{ERR_NODE_BYTES_BAD_SIZE}: {name} is {len(child)} bytes, "
                    f"expected {HASH_SIZE}"
                )

        try:
            node_type = NodeType(self.type)
        except ValueError:
            raise MalformedRecordError(f"unknown node type {self.type!r}") from None

        has_children = self.child_l is not None or self.child_r is not None

        if node_type is NodeType.MIDDLE:
            if self.child_l is None or self.child_r is None or entry is not None:
                raise MalformedRecordError("middle node needs both children and no entry")
            return MiddleNode(child_l=self.child_l, child_r=self.child_r)

        if node_type is NodeType.LEAF:
            if entry is None or has_children:
                raise MalformedRecordError("leaf node needs an entry and no children")
            return LeafNode(h_index=entry[:HASH_SIZE], h_value=entry[HASH_SIZE:])

        if entry is not None or has_children:
            raise MalformedRecordError("empty node cannot carry children or entry")
        return EmptyNode()


@dataclass
class RootItem:
    """One row of mt_roots."""
    mt_id: int
    key: bytes
    created_at: Optional[int] = None
    deleted_at: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RootItem":
        return cls(
            mt_id=row["mt_id"],
            key=_blob(row["key"]),
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )

    def root(self) -> bytes:
        """Root hash, checked for size."""
        if self.key is None or len(self.key) != HASH_SIZE:
            size = None if self.key is None else len(self.key)
            raise MalformedRecordError(f"root hash has size {size}, expected {HASH_SIZE}")
        return self.key


def _blob(value: Any) -> Optional[bytes]:
    """BLOB column as bytes (drivers may return memoryview)."""
    if value is None:
        return None
    return bytes(value)
