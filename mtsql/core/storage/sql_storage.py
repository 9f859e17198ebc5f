"""
SQL storage backend for one Merkle tree instance.

Nodes and the root are partitioned by `mt_id`, so any number of trees can
share one database. Writes are single upsert statements:

    node:  INSERT ... ON CONFLICT (mt_id, key) DO UPDATE SET type, child_l, child_r, entry
    root:  INSERT ... ON CONFLICT (mt_id) DO UPDATE SET key

The current root is cached after the first read or write. The cache is
only updated once the root upsert has succeeded, so a failed set_root
leaves both the cache and the table on the previous root.
"""

import threading
import time
from typing import Optional

from mtsql.crypto import short_hex
from mtsql.core.context import Context
from mtsql.core.errors import NotFoundError, StorageError
from mtsql.core.node import Node
from mtsql.core.storage.base import Database, Storage
from mtsql.core.storage.codec import NodeItem, RootItem
from mtsql.utils.logger import get_logger
from mtsql.utils.validation import require, validate_hash, validate_mt_id

logger = get_logger("storage.backend")


UPSERT_NODE = (
    "INSERT INTO mt_nodes (mt_id, key, type, child_l, child_r, entry, created_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT (mt_id, key) DO UPDATE SET "
    "type = excluded.type, child_l = excluded.child_l, "
    "child_r = excluded.child_r, entry = excluded.entry"
)

UPSERT_ROOT = (
    "INSERT INTO mt_roots (mt_id, key, created_at) VALUES (?, ?, ?) "
    "ON CONFLICT (mt_id) DO UPDATE SET key = excluded.key"
)

SELECT_NODE = "SELECT * FROM mt_nodes WHERE mt_id = ? AND key = ?"

SELECT_ROOT = "SELECT * FROM mt_roots WHERE mt_id = ?"

ERR_UPDATE_ROOT = "failed to update current root hash"


class SqlStorage(Storage):
    """
    Node and root storage for tree instance `mt_id`.
    
    The database handle is borrowed: SqlStorage never closes it.
    
    Attributes:
        db: Database handle (e.g. SQLiteAdapter)
        mt_id: Tree instance id
    """

    def __init__(self, db: Database, mt_id: int):
        require(validate_mt_id(mt_id))
        self.db = db
        self.mt_id = mt_id
        self._current_root: Optional[bytes] = None
        self._root_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"SqlStorage(mt_id={self.mt_id})"

    # =========================================================================
    # Nodes
    # =========================================================================

    def get(self, key: bytes, ctx: Optional[Context] = None) -> Node:
        """
        Load a node.
        
        Raises:
            NotFoundError: no node stored under key for this tree
            MalformedRecordError: the stored row does not decode
        """
        require(validate_hash(key, "key"))
        row = self.db.fetch_one(ctx, SELECT_NODE, (self.mt_id, bytes(key)))
        if row is None:
            raise NotFoundError(f"node {short_hex(key)} not found in tree {self.mt_id}")
        return NodeItem.from_row(row).node()

    def put(self, key: bytes, node: Node, ctx: Optional[Context] = None) -> None:
        """Insert or overwrite the node stored under key."""
        require(validate_hash(key, "key"))
        item = NodeItem.from_node(self.mt_id, key, node)
        self.db.execute(
            ctx,
            UPSERT_NODE,
            (
                item.mt_id,
                item.key,
                item.type,
                item.child_l,
                item.child_r,
                item.entry,
                int(time.time()),
            ),
        )
        logger.debug(f"tree {self.mt_id}: put {node.node_type.name.lower()} {short_hex(key)}")

    # =========================================================================
    # Root
    # =========================================================================

    def get_root(self, ctx: Optional[Context] = None) -> bytes:
        """
        Current root hash.
        
        The first call reads mt_roots; later calls return the cached value.
        
        Raises:
            NotFoundError: no root has been stored for this tree
        """
        with self._root_lock:
            if self._current_root is not None:
                return self._current_root

            row = self.db.fetch_one(ctx, SELECT_ROOT, (self.mt_id,))
            if row is None:
                raise NotFoundError(f"root not found for tree {self.mt_id}")
            self._current_root = RootItem.from_row(row).root()
            logger.debug(f"tree {self.mt_id}: root cache warmed {short_hex(self._current_root)}")
            return self._current_root

    def set_root(self, root: bytes, ctx: Optional[Context] = None) -> None:
        """
        Replace the current root hash.
        
        Raises:
            StorageError: the upsert failed; the cached root is unchanged
        """
        require(validate_hash(root, "root"))
        root = bytes(root)
        with self._root_lock:
            try:
                self.db.execute(ctx, UPSERT_ROOT, (self.mt_id, root, int(time.time())))
            except Exception as e:
                raise StorageError(e, ERR_UPDATE_ROOT) from e
            self._current_root = root
        logger.debug(f"tree {self.mt_id}: root set {short_hex(root)}")

    @property
    def cached_root(self) -> Optional[bytes]:
        """Cached root, None until the first get_root/set_root."""
        return self._current_root
