import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from infrastructure.database.ops.job_queue import JobQueueOperations

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


class SQLiteDatabaseHandler(JobQueueOperations):
    """SQLite file holding the durable watering job queue.

    Connections are per thread: the evaluators enqueue from scheduler pool
    threads while the queue consumer claims from its own thread. The file
    lives on the worker host and survives restarts, so queued jobs do too.
    """

    def __init__(self, database_path: str, *, busy_timeout: float = 10.0) -> None:
        self._database_path = database_path
        self._busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        if database_path != MEMORY_DATABASE:
            parent = Path(database_path).parent
            if not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created queue database directory: %s", parent)

    @property
    def database_path(self) -> str:
        return self._database_path

    # --- Connections ----------------------------------------------------------
    def get_db(self) -> sqlite3.Connection:
        """The calling thread's connection, opened on first use."""
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is not None:
            return connection

        connection = sqlite3.connect(self._database_path, check_same_thread=False, timeout=self._busy_timeout)
        try:
            connection.row_factory = sqlite3.Row
            # WAL lets the consumer read while an evaluator writes
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA synchronous=NORMAL")
            connection.commit()
        except sqlite3.Error:
            connection.close()
            raise

        self._local.connection = connection
        with self._connections_lock:
            self._connections.append(connection)
        logger.debug("Opened queue database connection for %s", threading.current_thread().name)
        return connection

    def close_all(self) -> None:
        """Close every connection opened by any thread (shutdown only)."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.close()
            except sqlite3.Error as exc:
                logger.warning("Error closing queue database connection: %s", exc)
        self._local = threading.local()

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Create the queue table and its claim index if missing."""
        db = self.get_db()
        self.create_job_queue_tables(db)
        db.commit()
        logger.info("Job queue database ready at %s", self._database_path)
