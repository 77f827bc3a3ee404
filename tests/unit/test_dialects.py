"""
Unit tests for the MySQL and PostgreSQL connectors (no server needed).
"""

import pytest

from order_stream.connectors.mysql import MySQLChangeLog
from order_stream.connectors.postgres import PostgreSQLChangeLog


def bare(cls):
    connector = cls.__new__(cls)
    connector.change_table = "order_changes"
    connector.entity_table = "orders"
    return connector


@pytest.mark.parametrize("cls", [MySQLChangeLog, PostgreSQLChangeLog])
def test_tables_created_only_if_missing(cls):
    statements = bare(cls).schema_statements()
    creates = [s for s in statements if "CREATE TABLE" in s]

    assert len(creates) == 2
    assert all("IF NOT EXISTS" in s for s in creates)


@pytest.mark.parametrize("cls", [MySQLChangeLog, PostgreSQLChangeLog])
def test_every_trigger_is_dropped_before_create(cls):
    statements = [s.strip() for s in bare(cls).schema_statements()]

    for index, statement in enumerate(statements):
        if statement.startswith("CREATE TRIGGER"):
            name = statement.split()[2]
            assert statements[index - 1].startswith("DROP TRIGGER IF EXISTS")
            assert name in statements[index - 1]


def test_mysql_triggers_cover_all_operations():
    ddl = "\n".join(bare(MySQLChangeLog).schema_statements())

    for operation in ("INSERT", "UPDATE", "DELETE"):
        assert f"AFTER {operation} ON orders" in ddl
    assert MySQLChangeLog.placeholder == "%s"


def test_postgres_images_use_jsonb():
    ddl = "\n".join(bare(PostgreSQLChangeLog).schema_statements())

    assert "to_jsonb(NEW)" in ddl
    assert "to_jsonb(OLD)" in ddl
    assert "TG_OP" in ddl


class RecordingCursor:
    def __init__(self, database):
        self.database = database
        self.rowcount = -1

    def execute(self, query, params=()):
        self.database.statements.append((" ".join(query.split()), params))
        self.rowcount = self.database.rowcount

    def fetchall(self):
        return self.database.rows

    def close(self):
        pass


class RecordingConnection:
    def __init__(self):
        self.statements = []
        self.rows = []
        self.rowcount = 0
        self.commits = 0

    def cursor(self, **kwargs):
        return RecordingCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        pass


class RecordingPool:
    def __init__(self):
        self.connection = RecordingConnection()
        self.returned = 0

    def get_connection(self):
        return self.connection

    def return_connection(self, connection, discard=False):
        self.returned += 1

    def get_status(self):
        return {}

    def close_all(self):
        pass


def wired(cls):
    connector = bare(cls)
    connector.connection_config = {}
    connector.pool = RecordingPool()
    return connector, connector.pool.connection


@pytest.mark.parametrize("cls", [MySQLChangeLog, PostgreSQLChangeLog])
def test_fetch_binds_cursor_and_limit_with_driver_placeholder(cls):
    connector, db = wired(cls)
    db.rows = [{
        "id": 7, "order_id": 3, "operation_type": "INSERT", "old_data": None,
        "new_data": '{"id": 3}', "changed_at": None, "processed": 0,
    }]

    records = connector.fetch_undelivered(6, 50)

    query, params = db.statements[-1]
    assert query == (
        "SELECT id, order_id, operation_type, old_data, new_data, changed_at, processed "
        "FROM order_changes WHERE id > %s AND processed = FALSE ORDER BY id ASC LIMIT %s"
    )
    assert params == (6, 50)
    assert "?" not in query
    assert [r.id for r in records] == [7]
    assert records[0].entity_id == 3
    assert db.commits == 1
    assert connector.pool.returned == 1


@pytest.mark.parametrize("cls", [MySQLChangeLog, PostgreSQLChangeLog])
def test_mark_delivered_reports_matched_rows(cls):
    connector, db = wired(cls)

    db.rowcount = 1
    assert connector.mark_delivered(7) is True
    db.rowcount = 0
    assert connector.mark_delivered(8) is False

    query, params = db.statements[-1]
    assert query == "UPDATE order_changes SET processed = TRUE WHERE id = %s"
    assert params == (8,)


@pytest.mark.parametrize("cls", [MySQLChangeLog, PostgreSQLChangeLog])
def test_retention_binds_offset_and_reports_deletions(cls):
    connector, db = wired(cls)

    db.rowcount = 3
    assert connector.delete_delivered_older_than(1000) is True
    db.rowcount = 0
    assert connector.delete_delivered_older_than(1000) is False

    query, params = db.statements[-1]
    assert query == (
        "DELETE FROM order_changes WHERE processed = TRUE AND id <= ("
        "SELECT id FROM (SELECT id FROM order_changes WHERE processed = TRUE "
        "ORDER BY id DESC LIMIT 1 OFFSET %s) AS cutoff)"
    )
    assert params == (1000,)
