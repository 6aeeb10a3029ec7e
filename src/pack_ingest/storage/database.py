"""SQLite connection manager with WAL mode and explicit transactions."""

import sqlite3
import logging
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Manages a single SQLite connection.

    Features:
    - WAL mode so readers are not blocked by a committing batch
    - Autocommit connection; multi-statement work goes through transaction()
    - Usable from several threads (callers serialize access)
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """
        Establish database connection with proper configuration.

        Returns:
            SQLite connection object

        Raises:
            sqlite3.Error: If connection fails
        """
        if self._connection is not None:
            return self._connection

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Connecting to database: {{'path': {str(self.db_path)!r}}}")
        self._connection = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=5.0,
            isolation_level=None,
        )
        self._connection.row_factory = sqlite3.Row
        self._apply_pragmas()
        return self._connection

    def _apply_pragmas(self):
        """Apply SQLite PRAGMAs for durability and concurrency."""
        cursor = self._connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        logger.debug("Applied pragmas: {'journal_mode': 'WAL', 'synchronous': 'NORMAL'}")

    @contextmanager
    def transaction(self):
        """
        Context manager for explicit transactions.

        Usage:
            with db.transaction() as cursor:
                cursor.execute(...)
                cursor.execute(...)
            # Commits on success, rolls back on exception
        """
        conn = self.connect()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            cursor.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def execute(self, sql: str, parameters=None):
        """
        Execute a single SQL statement.

        Args:
            sql: SQL statement
            parameters: Optional parameters for parameterized query

        Returns:
            Cursor object
        """
        conn = self.connect()
        if parameters:
            return conn.execute(sql, parameters)
        return conn.execute(sql)

    def close(self):
        """Close database connection."""
        if self._connection is not None:
            try:
                self._connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as e:
                logger.warning(f"Failed to checkpoint WAL: {e}")

            self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
