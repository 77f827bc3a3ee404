"""Database connection pooling shared by the poll loop and snapshot reads"""

import sqlite3
import time
from queue import Empty, Full, Queue
from threading import Lock
from typing import Any, Dict

import mysql.connector
import psycopg2
from loguru import logger
from mysql.connector import pooling as mysql_pooling
from mysql.connector.constants import ClientFlag
from psycopg2 import pool as pg_pool


class ConnectionPool:
    """Generic connection pool manager"""

    def __init__(
        self,
        db_type: str,
        connection_params: Dict[str, Any],
        min_connections: int = 1,
        max_connections: int = 5,
        timeout: float = 5.0
    ):
        """
        Initialize connection pool

        Args:
            db_type: Database type ('postgres', 'mysql', 'sqlite')
            connection_params: Connection parameters
            min_connections: Number of connections opened up front
            max_connections: Maximum number of connections allowed
            timeout: Seconds to wait for a free connection, and the driver
                connect/read timeout
        """
        self.db_type = db_type.lower()
        self.connection_params = connection_params
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.timeout = timeout
        self.pool = None
        self._created = 0
        self._lock = Lock()
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        """Initialize the connection pool based on database type"""
        try:
            if self.db_type == 'postgres':
                self._initialize_postgres_pool()
            elif self.db_type == 'mysql':
                self._initialize_mysql_pool()
            elif self.db_type == 'sqlite':
                self._initialize_sqlite_pool()
            else:
                raise ValueError(f"Unsupported database type: {self.db_type}")

            logger.info(f"Initialized {self.db_type} connection pool (min={self.min_connections}, max={self.max_connections})")
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise

    def _initialize_postgres_pool(self) -> None:
        """Initialize PostgreSQL connection pool"""
        timeout_ms = int(self.timeout * 1000)
        self.pool = pg_pool.ThreadedConnectionPool(
            self.min_connections,
            self.max_connections,
            connect_timeout=max(1, int(self.timeout)),
            options=f"-c statement_timeout={timeout_ms}",
            **self.connection_params
        )

    def _initialize_mysql_pool(self) -> None:
        """Initialize MySQL connection pool"""
        pool_config = {
            **self.connection_params,
            'pool_name': f'mysql_pool_{id(self)}',
            'pool_size': self.max_connections,
            'pool_reset_session': True,
            'connection_timeout': max(1, int(self.timeout)),
            'autocommit': True,
            'charset': 'utf8mb4',
            'client_flags': [ClientFlag.FOUND_ROWS],
        }
        self.pool = mysql_pooling.MySQLConnectionPool(**pool_config)

    def _initialize_sqlite_pool(self) -> None:
        """Initialize SQLite connection pool (simple queue-based)"""
        self.pool = Queue(maxsize=self.max_connections)
        for _ in range(self.min_connections):
            self._created += 1
            self.pool.put(self._connect_sqlite())

    def _connect_sqlite(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.connection_params.get('database', ':memory:'),
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _grow_sqlite(self):
        """Open one more SQLite connection if the cap allows; None otherwise"""
        with self._lock:
            if self._created >= self.max_connections:
                return None
            self._created += 1
        try:
            return self._connect_sqlite()
        except Exception:
            with self._lock:
                self._created -= 1
            raise

    def _get_mysql_connection(self):
        # MySQLConnectionPool raises PoolError at once when exhausted
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                return self.pool.get_connection()
            except mysql.connector.errors.PoolError:
                if time.monotonic() >= deadline:
                    raise TimeoutError("Connection pool exhausted")
                time.sleep(0.01)

    def get_connection(self):
        """
        Get a connection from the pool

        Returns:
            Database connection
        """
        try:
            if self.db_type == 'postgres':
                return self.pool.getconn()
            elif self.db_type == 'mysql':
                return self._get_mysql_connection()

            try:
                return self.pool.get_nowait()
            except Empty:
                conn = self._grow_sqlite()
                if conn is not None:
                    return conn
            try:
                return self.pool.get(timeout=self.timeout)
            except Empty:
                raise TimeoutError("Connection pool exhausted")
        except Exception as e:
            logger.error(f"Failed to get connection from pool: {e}")
            raise

    def return_connection(self, connection, discard: bool = False) -> None:
        """
        Return a connection to the pool

        Args:
            connection: Database connection to return
            discard: Close it instead of reusing it (after a driver error)
        """
        try:
            if self.db_type == 'postgres':
                self.pool.putconn(connection, close=discard)
            elif self.db_type == 'mysql':
                # close() hands a pooled connection back; the pool reconnects it if it broke
                connection.close()
            elif discard:
                self._close_sqlite(connection)
            else:
                try:
                    self.pool.put_nowait(connection)
                except Full:
                    self._close_sqlite(connection)
        except Exception as e:
            logger.error(f"Failed to return connection to pool: {e}")

    def _close_sqlite(self, connection) -> None:
        with self._lock:
            self._created -= 1
        try:
            connection.close()
        except Exception as e:
            logger.debug(f"Error closing pooled connection: {e}")

    def close_all(self) -> None:
        """Close all connections in the pool"""
        try:
            if self.db_type == 'postgres':
                self.pool.closeall()
            elif self.db_type == 'mysql':
                self.pool._remove_connections()
            else:
                while not self.pool.empty():
                    try:
                        self._close_sqlite(self.pool.get_nowait())
                    except Empty:
                        break

            logger.info(f"Closed all connections in {self.db_type} pool")
        except Exception as e:
            logger.error(f"Error closing connection pool: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Get pool status information"""
        status = {
            'db_type': self.db_type,
            'min_connections': self.min_connections,
            'max_connections': self.max_connections,
            'timeout': self.timeout
        }

        if self.db_type == 'sqlite':
            status['open_connections'] = self._created
            status['available_connections'] = self.pool.qsize()

        return status


class PooledConnection:
    """Context manager for pooled connections"""

    def __init__(self, pool: ConnectionPool):
        """
        Initialize pooled connection context manager

        Args:
            pool: Connection pool to use
        """
        self.pool = pool
        self.connection = None

    def __enter__(self):
        """Get connection from pool"""
        self.connection = self.pool.get_connection()
        return self.connection

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Return connection to pool, dropping it after driver errors"""
        if self.connection:
            broken = exc_type is not None and issubclass(
                exc_type, (sqlite3.Error, mysql.connector.Error, psycopg2.Error, OSError)
            )
            if exc_type is not None and not broken:
                try:
                    self.connection.rollback()
                except Exception as e:
                    logger.debug(f"Rollback failed: {e}")
            self.pool.return_connection(self.connection, discard=broken)
        return False
