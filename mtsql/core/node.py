"""
Node model for sparse Merkle tree storage.

Conceptual Background:
---------------------
A sparse Merkle tree has three kinds of vertices:

- Middle: an inner vertex with a left and a right child hash
- Leaf: holds one entry, the pair (h_index, h_value)
- Empty: the placeholder for a subtree with no leaves

Each vertex is stored under a content-derived 32-byte key computed by the
tree engine. This module only models the vertex shapes; hashing, path
traversal and proofs live in the engine.

The three shapes are separate classes so a leaf can never carry children
and a middle node can never carry an entry:

    Node = MiddleNode | LeafNode | EmptyNode
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Tuple, Union

from mtsql.utils.validation import require, validate_hash


class NodeType(IntEnum):
    """Discriminant byte stored in the `type` column."""
    MIDDLE = 0
    LEAF = 1
    EMPTY = 2


# =============================================================================
# Node Shapes
# =============================================================================


@dataclass(frozen=True)
class MiddleNode:
    """
    Inner vertex.
    
    Attributes:
        child_l: Key of the left child (32 bytes)
        child_r: Key of the right child (32 bytes)
    """
    child_l: bytes
    child_r: bytes

    node_type: ClassVar[NodeType] = NodeType.MIDDLE

    def __post_init__(self):
        require(validate_hash(self.child_l, "child_l"))
        require(validate_hash(self.child_r, "child_r"))


@dataclass(frozen=True)
class LeafNode:
    """
    Leaf vertex holding one entry.
    
    Attributes:
        h_index: First entry half, the index hash (32 bytes)
        h_value: Second entry half, the value hash (32 bytes)
    """
    h_index: bytes
    h_value: bytes

    node_type: ClassVar[NodeType] = NodeType.LEAF

    def __post_init__(self):
        require(validate_hash(self.h_index, "h_index"))
        require(validate_hash(self.h_value, "h_value"))

    @property
    def entry(self) -> Tuple[bytes, bytes]:
        return self.h_index, self.h_value


@dataclass(frozen=True)
class EmptyNode:
    """Placeholder for an empty subtree."""

    node_type: ClassVar[NodeType] = NodeType.EMPTY


Node = Union[MiddleNode, LeafNode, EmptyNode]


def describe(node: Node) -> str:
    """One-line description used by the CLI."""
    if isinstance(node, MiddleNode):
        return f"middle(left={node.child_l.hex()}, right={node.child_r.hex()})"
    if isinstance(node, LeafNode):
        return f"leaf(h_index={node.h_index.hex()}, h_value={node.h_value.hex()})"
    return "empty"


__all__ = ["NodeType", "MiddleNode", "LeafNode", "EmptyNode", "Node", "describe"]
