"""PostgreSQL connection pooling"""

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager
from typing import Optional
import structlog
import threading

from pricemap.config.settings import settings
from pricemap.utils.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

class DatabasePool:
    """Thread-safe connection pool for PostgreSQL"""

    def __init__(self, dsn: str, minconn: int = 2, maxconn: int = 20):
        self.dsn = dsn
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                dsn=dsn,
                cursor_factory=RealDictCursor
            )
            logger.info("Database connection pool created",
                       min_connections=minconn,
                       max_connections=maxconn)
        except psycopg2.Error as e:
            logger.error("Failed to create connection pool", error=str(e))
            raise

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool; commits on success, rolls back on error"""
        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database error", error=str(e))
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self):
        """Get a cursor with automatic connection management"""
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_query(self, query: str, params: tuple = None) -> list:
        """Execute a query and return results"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchall()

    def execute_one(self, query: str, params: tuple = None) -> Optional[dict]:
        """Execute a query and return single result"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def close_all(self):
        """Close all connections in the pool"""
        self._pool.closeall()
        logger.info("All database connections closed")

_pool: Optional[DatabasePool] = None
_pool_lock = threading.Lock()

def get_pool() -> DatabasePool:
    """Process-wide pool built from settings on first use"""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                if not settings.DATABASE_URL:
                    raise ConfigurationError("DATABASE_URL is not set")
                _pool = DatabasePool(
                    settings.DATABASE_URL,
                    minconn=settings.DB_POOL_MIN,
                    maxconn=settings.DB_POOL_MAX
                )
    return _pool
