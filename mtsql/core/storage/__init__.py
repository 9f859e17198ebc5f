"""
Persistent Storage Module.

Provides SQL-backed persistence for:
- Merkle tree nodes (mt_nodes), keyed by (mt_id, key)
- Current root per tree instance (mt_roots)
"""

from mtsql.core.storage.base import Database, Storage
from mtsql.core.storage.codec import NodeItem, RootItem
from mtsql.core.storage.sql_storage import SqlStorage
from mtsql.core.storage.sqlite_adapter import SCHEMA, SQLiteAdapter
from mtsql.core.storage.storage_manager import StorageManager

__all__ = [
    "Database",
    "Storage",
    "NodeItem",
    "RootItem",
    "SqlStorage",
    "SCHEMA",
    "SQLiteAdapter",
    "StorageManager",
]
