"""Base change log connector shared by the SQL dialects"""

from abc import abstractmethod
from typing import Any, Dict, List, Sequence

from loguru import logger

from ..cdc.base import ChangeRecord, ChangeRecordSource, EntityStore
from .connection_pool import ConnectionPool, PooledConnection


class ChangeLogConnector(ChangeRecordSource, EntityStore):
    """
    Change Record Source and Entity Store over one relational database

    Dialects only provide connection parameters, the placeholder style,
    the schema/trigger DDL and the "last hour" predicate; every query the
    pipeline runs is defined here once.
    """

    db_type: str = ""
    placeholder: str = "?"
    recent_changes_clause: str = ""

    def __init__(
        self,
        connection_config: Dict[str, Any],
        change_table: str = "order_changes",
        entity_table: str = "orders",
        pool_size: int = 5,
        timeout: float = 5.0
    ):
        """
        Initialize connector

        Args:
            connection_config: Driver connection parameters
            change_table: Name of the trigger-populated change log table
            entity_table: Name of the entity table
            pool_size: Maximum pooled connections
            timeout: Driver and pool timeout in seconds
        """
        self.connection_config = connection_config
        self.change_table = change_table
        self.entity_table = entity_table
        self.pool = ConnectionPool(
            self.db_type,
            self._get_connection_params(),
            min_connections=1,
            max_connections=pool_size,
            timeout=timeout
        )

    def _get_connection_params(self) -> Dict[str, Any]:
        return dict(self.connection_config)

    def _cursor(self, connection):
        return connection.cursor()

    def _execute(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run one query on a pooled connection and return its rows"""
        rows, _ = self._run(query, params, fetch=True)
        return rows

    def _execute_write(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement and return the affected row count"""
        _, rowcount = self._run(query, params, fetch=False)
        return rowcount

    def _run(self, query: str, params: Sequence[Any], fetch: bool):
        query = query.replace("?", self.placeholder)
        with PooledConnection(self.pool) as connection:
            cursor = self._cursor(connection)
            try:
                cursor.execute(query, tuple(params))
                rows = [dict(row) for row in cursor.fetchall()] if fetch else []
                rowcount = cursor.rowcount
            finally:
                cursor.close()
            connection.commit()
            return rows, rowcount

    def _execute_script(self, statements: List[str]) -> None:
        with PooledConnection(self.pool) as connection:
            cursor = self._cursor(connection)
            try:
                for statement in statements:
                    cursor.execute(statement)
            finally:
                cursor.close()
            connection.commit()

    @abstractmethod
    def schema_statements(self) -> List[str]:
        """DDL creating the entity table, change log table and triggers"""
        pass

    def setup(self) -> None:
        """
        Create tables and capture triggers

        Idempotent: safe to call on every start.
        """
        self._execute_script(self.schema_statements())
        logger.info(f"Change capture ready on {self.entity_table} -> {self.change_table} ({self.db_type})")

    def fetch_undelivered(self, after_id: int, limit: int) -> List[ChangeRecord]:
        rows = self._execute(
            f"SELECT id, order_id, operation_type, old_data, new_data, changed_at, processed "
            f"FROM {self.change_table} "
            f"WHERE id > ? AND processed = FALSE "
            f"ORDER BY id ASC LIMIT ?",
            (after_id, limit)
        )
        return [self._row_to_record(row) for row in rows]

    def mark_delivered(self, change_id: int) -> bool:
        updated = self._execute_write(
            f"UPDATE {self.change_table} SET processed = TRUE WHERE id = ?",
            (change_id,)
        )
        return updated > 0

    def max_delivered_id(self) -> int:
        rows = self._execute(
            f"SELECT MAX(id) AS max_id FROM {self.change_table} WHERE processed = TRUE"
        )
        return int(rows[0]["max_id"] or 0) if rows else 0

    def delete_delivered_older_than(self, retention_count: int) -> bool:
        """Keep the newest `retention_count` delivered records"""
        deleted = self._execute_write(
            f"DELETE FROM {self.change_table} "
            f"WHERE processed = TRUE AND id <= ("
            f"SELECT id FROM ("
            f"SELECT id FROM {self.change_table} WHERE processed = TRUE "
            f"ORDER BY id DESC LIMIT 1 OFFSET ?"
            f") AS cutoff)",
            (retention_count,)
        )
        return deleted > 0

    def list_all(self) -> List[Dict[str, Any]]:
        return self._execute(
            f"SELECT id, customer_name, product_name, status, updated_at, created_at "
            f"FROM {self.entity_table} ORDER BY created_at DESC, id DESC"
        )

    def get_change_stats(self) -> Dict[str, int]:
        """Total, pending and last-hour change counts"""
        total = self._execute(f"SELECT COUNT(*) AS total FROM {self.change_table}")
        pending = self._execute(
            f"SELECT COUNT(*) AS pending FROM {self.change_table} WHERE processed = FALSE"
        )
        recent = self._execute(
            f"SELECT COUNT(*) AS recent FROM {self.change_table} WHERE {self.recent_changes_clause}"
        )
        return {
            'totalChanges': int(total[0]["total"]),
            'pendingChanges': int(pending[0]["pending"]),
            'recentChanges': int(recent[0]["recent"]),
        }

    def _row_to_record(self, row: Dict[str, Any]) -> ChangeRecord:
        return ChangeRecord(
            id=int(row["id"]),
            entity_id=row.get("order_id"),
            operation=row["operation_type"],
            before=row.get("old_data"),
            after=row.get("new_data"),
            occurred_at=row.get("changed_at"),
            delivered=bool(row.get("processed"))
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            'db_type': self.db_type,
            'change_table': self.change_table,
            'entity_table': self.entity_table,
            'pool': self.pool.get_status(),
        }

    def close(self) -> None:
        """Close all pooled connections"""
        self.pool.close_all()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_connector(settings) -> ChangeLogConnector:
    """Build the connector selected by `settings.database_type`"""
    from .mysql import MySQLChangeLog
    from .postgres import PostgreSQLChangeLog
    from .sqlite import SQLiteChangeLog

    db_type = settings.database_type.lower()
    options = {
        'pool_size': settings.cdc_pool_size,
        'timeout': settings.cdc_query_timeout,
    }
    if db_type == "sqlite":
        return SQLiteChangeLog({'database': settings.sqlite_path}, **options)
    if db_type == "mysql":
        return MySQLChangeLog(settings.mysql_params, **options)
    if db_type == "postgres":
        return PostgreSQLChangeLog(settings.postgres_params, **options)
    raise ValueError(f"Unsupported database type: {settings.database_type}")

