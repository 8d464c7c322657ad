"""Schema-driven table access for MySQL and PostgreSQL."""

from dbtable.adapter import AsyncAdapter, DriverAdapter, ThreadedAdapter, as_adapter, connect
from dbtable.cache import SchemaCache
from dbtable.config import ConnectionSettings
from dbtable.dialects import MYSQL, POSTGRES, Dialect, get_dialect
from dbtable.errors import ConfigurationError, DbTableError, TableNotFoundError, ValidationError
from dbtable.factory import TableFactory
from dbtable.models import ColumnMetadata, QueryResult, TableSchema
from dbtable.table import Table, coerce_value
from dbtable.transports import MySQLTransport, PostgresTransport

__all__ = [
    "AsyncAdapter",
    "ColumnMetadata",
    "ConfigurationError",
    "ConnectionSettings",
    "DbTableError",
    "Dialect",
    "DriverAdapter",
    "MYSQL",
    "MySQLTransport",
    "POSTGRES",
    "PostgresTransport",
    "QueryResult",
    "SchemaCache",
    "Table",
    "TableFactory",
    "TableNotFoundError",
    "TableSchema",
    "ThreadedAdapter",
    "ValidationError",
    "as_adapter",
    "coerce_value",
    "connect",
    "get_dialect",
]
