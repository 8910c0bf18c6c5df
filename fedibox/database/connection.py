"""
Database Connection

This module handles the PostgreSQL/CockroachDB connection pool and
query execution for the record store.
"""

import logging
import threading
from typing import Dict, List, Optional, Union

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..errors import StoreError

logger = logging.getLogger(__name__)


class Database:
    """Database connection pool and query handler."""

    def __init__(self, db_url: str, pool_size: int = 10):
        """
        Initialize database connection pool.

        Args:
            db_url: PostgreSQL DSN
            pool_size: Maximum number of pooled connections
        """
        self.db_url = db_url
        self.pool_size = pool_size
        self.pool = None
        self._lock = threading.Lock()
        # callers beyond pool_size wait for a connection instead of failing
        self._slots = threading.BoundedSemaphore(pool_size)
        self.connect()

    def connect(self):
        """Open the connection pool."""
        try:
            self.pool = ThreadedConnectionPool(
                1, self.pool_size, self.db_url, cursor_factory=RealDictCursor
            )
            logger.info("Connected to database")
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise StoreError("Database unavailable") from e

    def execute(self, query: str, params: tuple = None,
                fetch_one: bool = False) -> Union[Optional[Dict], Optional[List[Dict]]]:
        """
        Execute a database query.

        Args:
            query: SQL query to execute
            params: Query parameters
            fetch_one: Whether to fetch only one row

        Returns:
            List of rows as dicts, a single dict (or None) if fetch_one=True,
            or None for statements that return no rows

        Raises:
            StoreError: If no connection is available, the query fails or
                the pool is closed
        """
        pool = self.pool
        if pool is None:
            raise StoreError("Database connection is closed")

        with self._slots:
            conn = None
            try:
                conn = pool.getconn()
                conn.autocommit = True
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    if cur.description is None:
                        return None
                    if fetch_one:
                        return cur.fetchone()
                    return cur.fetchall()
            except psycopg2.Error as e:
                logger.error(f"Database query failed: {e}")
                raise StoreError(str(e)) from e
            finally:
                if conn is not None:
                    # connections closed by the server are discarded
                    pool.putconn(conn, close=bool(conn.closed))

    def close(self):
        """Close all pooled connections."""
        with self._lock:
            if self.pool:
                self.pool.closeall()
                self.pool = None
                logger.info("Closed database connection")
