"""SQLite change log connector"""

from pathlib import Path
from typing import Any, Dict, List

from .base import ChangeLogConnector


class SQLiteChangeLog(ChangeLogConnector):
    """SQLite change log implementation (local development and tests)"""

    db_type = "sqlite"
    placeholder = "?"
    recent_changes_clause = "datetime(changed_at) > datetime('now', '-1 hour')"

    def _get_connection_params(self) -> Dict[str, Any]:
        database = self.connection_config.get('database', ':memory:')
        if database != ':memory:':
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        return {'database': database}

    def schema_statements(self) -> List[str]:
        orders = self.entity_table
        changes = self.change_table
        columns = ", ".join(
            f"'{name}', {{row}}.{name}"
            for name in ("id", "customer_name", "product_name", "status", "updated_at", "created_at")
        )
        new_image = "json_object(" + columns.format(row="NEW") + ")"
        old_image = "json_object(" + columns.format(row="OLD") + ")"

        return [
            f"""
            CREATE TABLE IF NOT EXISTS {orders} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_name TEXT NOT NULL,
                product_name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'shipped', 'delivered')),
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS {changes} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER,
                operation_type TEXT NOT NULL CHECK (operation_type IN ('INSERT', 'UPDATE', 'DELETE')),
                old_data TEXT,
                new_data TEXT,
                changed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                processed BOOLEAN NOT NULL DEFAULT FALSE
            )
            """,
            f"CREATE INDEX IF NOT EXISTS idx_{changes}_processed_time ON {changes} (processed, changed_at)",
            f"""
            CREATE TRIGGER IF NOT EXISTS {orders}_after_insert
            AFTER INSERT ON {orders}
            FOR EACH ROW
            BEGIN
                INSERT INTO {changes} (order_id, operation_type, new_data)
                VALUES (NEW.id, 'INSERT', {new_image});
            END
            """,
            f"""
            CREATE TRIGGER IF NOT EXISTS {orders}_after_update
            AFTER UPDATE ON {orders}
            FOR EACH ROW
            BEGIN
                INSERT INTO {changes} (order_id, operation_type, old_data, new_data)
                VALUES (NEW.id, 'UPDATE', {old_image}, {new_image});
            END
            """,
            f"""
            CREATE TRIGGER IF NOT EXISTS {orders}_after_delete
            AFTER DELETE ON {orders}
            FOR EACH ROW
            BEGIN
                INSERT INTO {changes} (order_id, operation_type, old_data)
                VALUES (OLD.id, 'DELETE', {old_image});
            END
            """,
        ]
