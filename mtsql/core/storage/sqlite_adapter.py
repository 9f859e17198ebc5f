import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from mtsql.core.context import Context, background
from mtsql.core.errors import ContextCancelledError
from mtsql.utils.logger import get_logger

logger = get_logger("storage.sqlite")


SCHEMA = """
    CREATE TABLE IF NOT EXISTS mt_nodes (
        mt_id INTEGER,
        key BLOB,
        type INTEGER NOT NULL,
        child_l BLOB,
        child_r BLOB,
        entry BLOB,
        created_at INTEGER,
        deleted_at INTEGER,
        PRIMARY KEY(mt_id, key)
    );

    CREATE TABLE IF NOT EXISTS mt_roots (
        mt_id INTEGER PRIMARY KEY,
        key BLOB,
        created_at INTEGER,
        deleted_at INTEGER
    );
"""

MEMORY = ":memory:"

# VM instructions between cancellation checks
PROGRESS_INTERVAL = 100


class _ThreadConn:
    """Holder for one thread's connection; dropped with the thread-local."""

    __slots__ = ("conn", "__weakref__")

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn


class SQLiteAdapter:
    """
    SQLite database handle for Merkle tree storage.
    
    Provides:
    1. The mt_nodes / mt_roots schema.
    2. Context-bound statements:
       - execute(): one write statement in its own transaction
       - fetch_one(): one query, first row or None
    
    Connections are per thread and are released when their thread exits.
    A ":memory:" database is opened as a named shared-cache database so every
    thread sees the same tables. Shared-cache table locks do not wait on the
    busy timeout, so statements on a memory database run one at a time.
    """

    def __init__(
        self,
        db_path: Union[Path, str],
        timeout: float = 30.0,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL",
        init_schema: bool = True,
    ):
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.synchronous = synchronous
        self._conn_local = threading.local()
        self._holders: "weakref.WeakSet[_ThreadConn]" = weakref.WeakSet()
        self._holders_lock = threading.Lock()
        self._anchor: Optional[sqlite3.Connection] = None
        self._memory_lock: Optional[threading.Lock] = None

        if str(db_path) == MEMORY:
            self.db_path: Optional[Path] = None
            self._target = f"file:mtsql-mem-{id(self)}?mode=memory&cache=shared"
            self._memory_lock = threading.Lock()
            # Keeps the memory database alive while worker threads come and go
            self._anchor = self._connect()
        else:
            self.db_path = Path(db_path)
            self._target = str(self.db_path)
            # Ensure directory exists
            if not self.db_path.parent.exists():
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

        if init_schema:
            self.create_schema()

    @property
    def in_memory(self) -> bool:
        return self.db_path is None

    @property
    def open_connections(self) -> int:
        """Per-thread connections still alive."""
        with self._holders_lock:
            return len(self._holders)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._target,
            timeout=self.timeout,
            check_same_thread=False,
            uri=self.in_memory,
        )
        conn.row_factory = sqlite3.Row
        if not self.in_memory:
            # Enable WAL mode for better concurrency
            conn.execute(f"PRAGMA journal_mode={self.journal_mode};")
            conn.execute(f"PRAGMA synchronous={self.synchronous};")
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        holder = getattr(self._conn_local, "holder", None)
        if holder is None:
            holder = _ThreadConn(self._connect())
            self._conn_local.holder = holder
            with self._holders_lock:
                self._holders.add(holder)
        return holder.conn

    def create_schema(self):
        """Create mt_nodes and mt_roots if missing."""
        conn = self._get_conn()
        with self._serialized(background()):
            with conn:
                conn.executescript(SCHEMA)
        logger.info(f"Schema ready at {self.db_path or MEMORY}")

    def close(self):
        """Close every live connection opened by this adapter."""
        with self._holders_lock:
            holders = list(self._holders)
            self._holders = weakref.WeakSet()
        for holder in holders:
            holder.conn.close()
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None
        self._conn_local = threading.local()

    # =========================================================================
    # Context Binding
    # =========================================================================

    @contextmanager
    def _serialized(self, ctx: Context):
        """Hold the memory-database lock, waiting no longer than ctx allows."""
        if self._memory_lock is None:
            yield
            return

        remaining = ctx.remaining()
        wait = self.timeout if remaining is None else min(self.timeout, remaining)
        if not self._memory_lock.acquire(timeout=wait):
            if ctx.done():
                raise ContextCancelledError(ctx.err())
            raise sqlite3.OperationalError("database is locked")
        try:
            yield
        finally:
            self._memory_lock.release()

    def _bind(self, conn: sqlite3.Connection, ctx: Context):
        """Refuse a done context, then arm cancellation for one statement."""
        if ctx.done():
            raise ContextCancelledError(ctx.err())

        # The progress handler does not run while waiting on a lock,
        # so the busy wait is capped by the deadline instead.
        remaining = ctx.remaining()
        busy = self.timeout if remaining is None else min(self.timeout, remaining)
        conn.execute(f"PRAGMA busy_timeout = {int(busy * 1000)};")
        conn.set_progress_handler(lambda: 1 if ctx.done() else 0, PROGRESS_INTERVAL)

    def _unbind(self, conn: sqlite3.Connection):
        conn.set_progress_handler(None, PROGRESS_INTERVAL)

    # =========================================================================
    # Statements
    # =========================================================================

    def execute(self, ctx: Optional[Context], query: str, params: Sequence[Any] = ()) -> int:
        """
        Run one write statement in its own transaction.
        
        Args:
            ctx: Cancellation / deadline for the call
            query: Parameterized SQL
            params: Positional parameters
            
        Returns:
            Number of rows affected
            
        Raises:
            ContextCancelledError: ctx was done before or during the statement;
                the transaction is rolled back
            sqlite3.Error: any other database failure
        """
        ctx = ctx or background()
        conn = self._get_conn()
        with self._serialized(ctx):
            self._bind(conn, ctx)
            try:
                with conn:
                    cursor = conn.execute(query, tuple(params))
                return cursor.rowcount
            except sqlite3.OperationalError as e:
                if ctx.done():
                    raise ContextCancelledError(ctx.err()) from e
                raise
            finally:
                self._unbind(conn)

    def fetch_one(
        self, ctx: Optional[Context], query: str, params: Sequence[Any] = ()
    ) -> Optional[sqlite3.Row]:
        """Run a query and return its first row, or None if there is none."""
        ctx = ctx or background()
        conn = self._get_conn()
        with self._serialized(ctx):
            self._bind(conn, ctx)
            try:
                cursor = conn.execute(query, tuple(params))
                try:
                    return cursor.fetchone()
                finally:
                    cursor.close()
            except sqlite3.OperationalError as e:
                if ctx.done():
                    raise ContextCancelledError(ctx.err()) from e
                raise
            finally:
                self._unbind(conn)

    def count(self, table: str, mt_id: Optional[int] = None) -> int:
        """Row count of a table, optionally for one tree instance."""
        if table not in ("mt_nodes", "mt_roots"):
            raise ValueError(f"Unknown table: {table}")
        if mt_id is None:
            row = self.fetch_one(None, f"SELECT COUNT(*) AS cnt FROM {table}")
        else:
            row = self.fetch_one(
                None, f"SELECT COUNT(*) AS cnt FROM {table} WHERE mt_id = ?", (mt_id,)
            )
        return row["cnt"]
