"""Change log connectors module"""

from .base import ChangeLogConnector, create_connector
from .mysql import MySQLChangeLog
from .postgres import PostgreSQLChangeLog
from .sqlite import SQLiteChangeLog

__all__ = [
    "ChangeLogConnector",
    "create_connector",
    "MySQLChangeLog",
    "PostgreSQLChangeLog",
    "SQLiteChangeLog",
]
