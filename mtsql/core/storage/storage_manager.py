import threading
from pathlib import Path
from typing import Dict

from mtsql.core.config import StorageConfig
from mtsql.core.storage.sql_storage import SqlStorage
from mtsql.core.storage.sqlite_adapter import SQLiteAdapter
from mtsql.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageManager:
    """
    Manages persistent storage for a set of Merkle trees.
    
    Owns one SQLite adapter and hands out a SqlStorage per tree instance.
    The same SqlStorage is returned for repeated requests of one mt_id so
    all callers share its root cache.
    """

    def __init__(self, data_dir: Path, db_name: str = "merkletree.db", **adapter_options):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path, **adapter_options)
        self._trees: Dict[int, SqlStorage] = {}
        self._lock = threading.Lock()

        logger.info(f"StorageManager initialized at {self.db_path}")

    @classmethod
    def from_config(cls, config: StorageConfig) -> "StorageManager":
        """Build a manager for the database named in config."""
        return cls(
            data_dir=config.db_path.parent,
            db_name=config.db_path.name,
            timeout=config.timeout,
            journal_mode=config.journal_mode,
            synchronous=config.synchronous,
        )

    def storage(self, mt_id: int) -> SqlStorage:
        """Storage for tree instance mt_id."""
        with self._lock:
            tree = self._trees.get(mt_id)
            if tree is None:
                tree = SqlStorage(self.adapter, mt_id)
                self._trees[mt_id] = tree
            return tree

    def node_count(self, mt_id: int) -> int:
        return self.adapter.count("mt_nodes", mt_id)

    def close(self):
        """Drop cached trees and close the database."""
        with self._lock:
            self._trees.clear()
        self.adapter.close()
