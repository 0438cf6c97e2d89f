"""Database Manager - PostgreSQL storage for elimination events.

This module provides the database operations behind the persistence
collaborator of the death concentration engine.

Key features:
- Parameterized queries for security
- Connection pooling via psycopg_pool
- Context manager support
- Elimination event inserts and newest-first reads
- Retention cleanup by event age
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    pass


ELIMINATION_COLUMNS = [
    "victim_id",
    "killer_id",
    "weapon",
    "team_id",
    "x_location",
    "y_location",
    "z_location",
    "kill_distance",
    "event_timestamp",
]


class DatabaseManager:
    """Database manager for elimination event storage.

    Example:
        >>> with DatabaseManager(host="localhost", dbname="deathzone") as db:
        ...     db.create_elimination_events_table()
        ...     rows = db.get_recent_elimination_events(limit=1000)
    """

    def __init__(
        self,
        host: str,
        dbname: str,
        user: str,
        password: str,
        port: int = 5432,
        min_pool_size: int = 1,
        max_pool_size: int = 4,
        sslmode: str = "disable",
        table_name: str = "elimination_events",
        pool_timeout: float = 5.0,
    ):
        """Initialize database manager with connection pooling.

        Args:
            host: Database host
            dbname: Database name
            user: Database user
            password: Database password
            port: Database port (default: 5432)
            min_pool_size: Minimum pool size (default: 1)
            max_pool_size: Maximum pool size (default: 4)
            sslmode: SSL mode (default: "disable")
            table_name: Elimination events table (default: "elimination_events")
            pool_timeout: Seconds to wait for a pooled connection (default: 5.0)

        Raises:
            DatabaseError: If connection fails
        """
        self.host = host
        self.dbname = dbname
        self.user = user
        self.port = port
        self.table_name = table_name

        conninfo = (
            f"host={host} port={port} dbname={dbname} "
            f"user={user} password={password} sslmode={sslmode}"
        )

        try:
            self._pool = ConnectionPool(
                conninfo,
                min_size=min_pool_size,
                max_size=max_pool_size,
                timeout=pool_timeout,
                kwargs={"row_factory": dict_row},
            )
            logger.info(f"Database connection pool initialized: {host}:{port}/{dbname}")
        except Exception as e:
            raise DatabaseError(f"Failed to connect to database: {e}")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - cleanup connections."""
        self.disconnect()

    @contextmanager
    def _get_connection(self):
        """Borrow a connection from the pool (context manager).

        Raises:
            DatabaseError: If the connection fails
        """
        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        except psycopg.Error as e:
            raise DatabaseError(f"Database connection error: {e}")
        finally:
            if conn is not None:
                self._pool.putconn(conn)

    def disconnect(self) -> None:
        """Close all connections in the pool."""
        if getattr(self, "_pool", None):
            self._pool.close()
            logger.info("Database connection pool closed")

    close = disconnect

    def ping(self) -> bool:
        """Health check - verify database connectivity.

        Returns:
            True if database is accessible, False otherwise
        """
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False

    # ========================================================================
    # Elimination Events
    # ========================================================================

    def create_elimination_events_table(self) -> None:
        """Create the elimination events table and its timestamp index if missing.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            query = sql.SQL("""
                CREATE TABLE IF NOT EXISTS {table} (
                    id BIGSERIAL PRIMARY KEY,
                    victim_id TEXT NOT NULL DEFAULT '',
                    killer_id TEXT NOT NULL DEFAULT '',
                    weapon TEXT NOT NULL DEFAULT '',
                    team_id INTEGER NOT NULL DEFAULT 0,
                    x_location DOUBLE PRECISION NOT NULL,
                    y_location DOUBLE PRECISION NOT NULL,
                    z_location DOUBLE PRECISION NOT NULL,
                    kill_distance DOUBLE PRECISION NOT NULL DEFAULT 0,
                    event_timestamp DOUBLE PRECISION NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                );
                CREATE INDEX IF NOT EXISTS {index} ON {table} (event_timestamp DESC);
            """).format(
                table=sql.Identifier(self.table_name),
                index=sql.Identifier(f"{self.table_name}_timestamp_idx"),
            )

            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query)
                    conn.commit()
                    logger.debug(f"Table {self.table_name} created/verified")

        except psycopg.Error as e:
            raise DatabaseError(f"Failed to create elimination events table: {e}")

    def _insert_query(self) -> sql.Composed:
        return sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
            sql.Identifier(self.table_name),
            sql.SQL(", ").join(sql.Identifier(c) for c in ELIMINATION_COLUMNS),
            sql.SQL(", ").join(sql.Placeholder(c) for c in ELIMINATION_COLUMNS),
        )

    def insert_elimination_event(self, row: Dict[str, Any]) -> bool:
        """Insert a single elimination event.

        Args:
            row: Dict keyed by ELIMINATION_COLUMNS

        Returns:
            True if a row was inserted

        Raises:
            DatabaseError: If insert fails
        """
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._insert_query(), row)
                    conn.commit()
                    return cur.rowcount > 0

        except psycopg.Error as e:
            raise DatabaseError(f"Failed to insert elimination event: {e}")

    def get_recent_elimination_events(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Get the most recent elimination events.

        Args:
            limit: Maximum number of events (default: 1000)

        Returns:
            The newest `limit` rows, oldest first

        Raises:
            DatabaseError: If query fails
        """
        try:
            query = sql.SQL(
                "SELECT {} FROM {} ORDER BY event_timestamp DESC, id DESC LIMIT %s"
            ).format(
                sql.SQL(", ").join(sql.Identifier(c) for c in ELIMINATION_COLUMNS),
                sql.Identifier(self.table_name),
            )

            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (limit,))
                    rows = cur.fetchall()
                    return list(reversed(rows))

        except psycopg.Error as e:
            raise DatabaseError(f"Failed to get recent elimination events: {e}")

    def delete_elimination_events_before(self, cutoff_timestamp: float) -> int:
        """Delete elimination events older than a unix timestamp.

        Args:
            cutoff_timestamp: Events with event_timestamp below this are removed

        Returns:
            Number of rows deleted

        Raises:
            DatabaseError: If delete fails
        """
        try:
            query = sql.SQL("DELETE FROM {} WHERE event_timestamp < %s").format(
                sql.Identifier(self.table_name)
            )

            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (cutoff_timestamp,))
                    conn.commit()
                    return cur.rowcount

        except psycopg.Error as e:
            raise DatabaseError(f"Failed to delete elimination events: {e}")
