"""PostgreSQL change log connector"""

from typing import List

from psycopg2.extras import RealDictCursor

from .base import ChangeLogConnector


class PostgreSQLChangeLog(ChangeLogConnector):
    """PostgreSQL change log implementation using a PL/pgSQL capture trigger"""

    db_type = "postgres"
    placeholder = "%s"
    recent_changes_clause = "changed_at > NOW() - INTERVAL '1 hour'"

    def _cursor(self, connection):
        return connection.cursor(cursor_factory=RealDictCursor)

    def schema_statements(self) -> List[str]:
        orders = self.entity_table
        changes = self.change_table

        return [
            f"""
            CREATE TABLE IF NOT EXISTS {orders} (
                id SERIAL PRIMARY KEY,
                customer_name VARCHAR(255) NOT NULL,
                product_name VARCHAR(255) NOT NULL,
                status VARCHAR(16) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'shipped', 'delivered')),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS {changes} (
                id BIGSERIAL PRIMARY KEY,
                order_id INTEGER,
                operation_type VARCHAR(6) NOT NULL
                    CHECK (operation_type IN ('INSERT', 'UPDATE', 'DELETE')),
                old_data JSONB,
                new_data JSONB,
                changed_at TIMESTAMPTZ DEFAULT NOW(),
                processed BOOLEAN NOT NULL DEFAULT FALSE
            )
            """,
            f"CREATE INDEX IF NOT EXISTS idx_{changes}_processed_time ON {changes} (processed, changed_at)",
            f"""
            CREATE OR REPLACE FUNCTION {orders}_touch_updated_at() RETURNS trigger AS $$
            BEGIN
                NEW.updated_at := NOW();
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql
            """,
            f"""
            CREATE OR REPLACE FUNCTION {orders}_capture_change() RETURNS trigger AS $$
            BEGIN
                IF TG_OP = 'INSERT' THEN
                    INSERT INTO {changes} (order_id, operation_type, new_data)
                    VALUES (NEW.id, 'INSERT', to_jsonb(NEW));
                ELSIF TG_OP = 'UPDATE' THEN
                    INSERT INTO {changes} (order_id, operation_type, old_data, new_data)
                    VALUES (NEW.id, 'UPDATE', to_jsonb(OLD), to_jsonb(NEW));
                ELSE
                    INSERT INTO {changes} (order_id, operation_type, old_data)
                    VALUES (OLD.id, 'DELETE', to_jsonb(OLD));
                END IF;
                RETURN NULL;
            END;
            $$ LANGUAGE plpgsql
            """,
            f"DROP TRIGGER IF EXISTS {orders}_before_update ON {orders}",
            f"""
            CREATE TRIGGER {orders}_before_update
            BEFORE UPDATE ON {orders}
            FOR EACH ROW EXECUTE FUNCTION {orders}_touch_updated_at()
            """,
            f"DROP TRIGGER IF EXISTS {orders}_capture ON {orders}",
            f"""
            CREATE TRIGGER {orders}_capture
            AFTER INSERT OR UPDATE OR DELETE ON {orders}
            FOR EACH ROW EXECUTE FUNCTION {orders}_capture_change()
            """,
        ]
