"""MySQL change log connector"""

from typing import List

from .base import ChangeLogConnector

ORDER_COLUMNS = ("id", "customer_name", "product_name", "status", "updated_at", "created_at")


def _json_image(row: str) -> str:
    pairs = ", ".join(f"'{name}', {row}.{name}" for name in ORDER_COLUMNS)
    return f"JSON_OBJECT({pairs})"


class MySQLChangeLog(ChangeLogConnector):
    """MySQL change log implementation using AFTER row triggers"""

    db_type = "mysql"
    placeholder = "%s"
    recent_changes_clause = "changed_at > NOW() - INTERVAL 1 HOUR"

    def _cursor(self, connection):
        return connection.cursor(dictionary=True, buffered=True)

    def schema_statements(self) -> List[str]:
        orders = self.entity_table
        changes = self.change_table

        return [
            f"""
            CREATE TABLE IF NOT EXISTS {orders} (
                id INT AUTO_INCREMENT PRIMARY KEY,
                customer_name VARCHAR(255) NOT NULL,
                product_name VARCHAR(255) NOT NULL,
                status ENUM('pending', 'shipped', 'delivered') DEFAULT 'pending',
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS {changes} (
                id INT AUTO_INCREMENT PRIMARY KEY,
                order_id INT,
                operation_type ENUM('INSERT', 'UPDATE', 'DELETE') NOT NULL,
                old_data JSON,
                new_data JSON,
                changed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                processed BOOLEAN DEFAULT FALSE,
                INDEX idx_processed_time (processed, changed_at)
            )
            """,
            f"DROP TRIGGER IF EXISTS {orders}_after_insert",
            f"""
            CREATE TRIGGER {orders}_after_insert
            AFTER INSERT ON {orders}
            FOR EACH ROW
            INSERT INTO {changes} (order_id, operation_type, new_data)
            VALUES (NEW.id, 'INSERT', {_json_image('NEW')})
            """,
            f"DROP TRIGGER IF EXISTS {orders}_after_update",
            f"""
            CREATE TRIGGER {orders}_after_update
            AFTER UPDATE ON {orders}
            FOR EACH ROW
            INSERT INTO {changes} (order_id, operation_type, old_data, new_data)
            VALUES (NEW.id, 'UPDATE', {_json_image('OLD')}, {_json_image('NEW')})
            """,
            f"DROP TRIGGER IF EXISTS {orders}_after_delete",
            f"""
            CREATE TRIGGER {orders}_after_delete
            AFTER DELETE ON {orders}
            FOR EACH ROW
            INSERT INTO {changes} (order_id, operation_type, old_data)
            VALUES (OLD.id, 'DELETE', {_json_image('OLD')})
            """,
        ]
