"""
Unit tests for connection pooling.
"""

import threading
import time

import mysql.connector
import pytest
from mysql.connector.constants import ClientFlag

from order_stream.connectors import connection_pool
from order_stream.connectors.connection_pool import ConnectionPool, PooledConnection


def test_sqlite_pool_never_exceeds_max_connections(tmp_path, monkeypatch):
    connect = ConnectionPool._connect_sqlite

    def slow_connect(self):
        time.sleep(0.1)
        return connect(self)

    monkeypatch.setattr(ConnectionPool, "_connect_sqlite", slow_connect)
    pool = ConnectionPool(
        "sqlite",
        {"database": str(tmp_path / "pool.db")},
        min_connections=0,
        max_connections=2,
        timeout=0.5,
    )
    held, errors = [], []
    lock = threading.Lock()

    def borrow():
        try:
            conn = pool.get_connection()
        except TimeoutError as e:
            with lock:
                errors.append(e)
            return
        with lock:
            held.append(conn)

    threads = [threading.Thread(target=borrow) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(held) == 2
    assert len(errors) == 4
    assert pool.get_status()["open_connections"] == 2

    for conn in held:
        pool.return_connection(conn)
    pool.close_all()
    assert pool.get_status()["open_connections"] == 0


def test_sqlite_connection_is_reused(tmp_path):
    pool = ConnectionPool("sqlite", {"database": str(tmp_path / "pool.db")}, max_connections=2)

    with PooledConnection(pool) as first:
        pass
    with PooledConnection(pool) as second:
        pass

    assert first is second
    pool.close_all()


def test_broken_sqlite_connection_is_discarded(tmp_path):
    pool = ConnectionPool("sqlite", {"database": str(tmp_path / "pool.db")}, max_connections=2)

    with pytest.raises(Exception):
        with PooledConnection(pool) as conn:
            conn.execute("SELECT * FROM missing_table")

    assert pool.get_status()["open_connections"] == 0
    pool.close_all()


class FakeMySQLPool:
    def __init__(self, **config):
        self.config = config
        self.exhausted = 0
        self.removed = False

    def get_connection(self):
        if self.exhausted:
            self.exhausted -= 1
            raise mysql.connector.errors.PoolError("Failed getting connection; pool exhausted")
        return object()

    def _remove_connections(self):
        self.removed = True


@pytest.fixture
def fake_mysql_pool(monkeypatch):
    monkeypatch.setattr(connection_pool.mysql_pooling, "MySQLConnectionPool", FakeMySQLPool)


def test_mysql_pool_uses_connector_pooling(fake_mysql_pool):
    pool = ConnectionPool(
        "mysql",
        {"host": "db", "database": "realtime_orders"},
        max_connections=4,
        timeout=3.0,
    )

    config = pool.pool.config
    assert config["pool_size"] == 4
    assert config["connection_timeout"] == 3
    assert config["database"] == "realtime_orders"
    assert ClientFlag.FOUND_ROWS in config["client_flags"]

    pool.close_all()
    assert pool.pool.removed


def test_mysql_pool_waits_for_a_free_connection(fake_mysql_pool):
    pool = ConnectionPool("mysql", {"host": "db"}, timeout=1.0)
    pool.pool.exhausted = 3

    assert pool.get_connection() is not None


def test_mysql_pool_gives_up_after_timeout(fake_mysql_pool):
    pool = ConnectionPool("mysql", {"host": "db"}, timeout=0.05)
    pool.pool.exhausted = 10_000

    with pytest.raises(TimeoutError):
        pool.get_connection()
