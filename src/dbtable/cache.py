from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Mapping

from dbtable.adapter import DriverAdapter, as_adapter
from dbtable.errors import ConfigurationError, TableNotFoundError
from dbtable.models import ColumnMetadata, TableSchema

logger = logging.getLogger(__name__)


class SchemaCache:
    """
    Time-expiring cache of table column metadata, keyed by table identity.

    Entries are immutable TableSchema snapshots. An expired entry is replaced
    by a fresh catalog read, never patched. Concurrent misses for the same
    table share one in-flight read.

    With strict=False (the default) a table the catalog does not report is
    cached as an empty schema until it expires; with strict=True nothing is
    cached and TableNotFoundError is raised instead.
    """

    DEFAULT_EXPIRES = 30

    def __init__(
        self,
        driver,
        *,
        expires: float = DEFAULT_EXPIRES,
        strict: bool = False,
        clock: Callable[[], float] = time.monotonic,
        dialect=None,
    ):
        self._driver: DriverAdapter = as_adapter(driver, dialect)
        self._entries: dict[str, TableSchema] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._clock = clock
        self.strict = strict
        self.expires = expires

    @property
    def driver(self) -> DriverAdapter:
        return self._driver

    @property
    def expires(self) -> float:
        """Time-to-live of new entries, in minutes."""
        return self._expires_seconds / 60

    @expires.setter
    def expires(self, minutes: float) -> None:
        if minutes is None or minutes < 0:
            raise ConfigurationError("expires must be zero or a positive number of minutes.")
        self._expires_seconds = float(minutes) * 60

    @staticmethod
    def identity_key(table: str, schema: str | None = None) -> str:
        return f"{schema}.{table}" if schema else table

    def peek(self, table: str, schema: str | None = None) -> TableSchema | None:
        """Return the cached entry, expired or not, without touching the database."""
        return self._entries.get(self.identity_key(table, schema))

    async def resolve(self, table: str, schema: str | None = None) -> TableSchema:
        key = self.identity_key(table, schema)
        entry = self.peek(table, schema)
        if entry is not None and self._clock() < entry.expires_at:
            return entry

        pending = self._pending.get(key)
        if pending is None:
            logger.debug("Schema cache miss for %s", key)
            pending = asyncio.ensure_future(self._fetch(key, table, schema))
            self._pending[key] = pending
            pending.add_done_callback(lambda fut: self._forget_pending(key, fut))
        else:
            logger.debug("Joining in-flight schema fetch for %s", key)
        return await asyncio.shield(pending)

    def _forget_pending(self, key: str, fut: asyncio.Future) -> None:
        if self._pending.get(key) is fut:
            del self._pending[key]
        # Every waiter may have been cancelled; mark a failure as retrieved.
        if not fut.cancelled():
            fut.exception()

    async def _fetch(self, key: str, table: str, schema: str | None) -> TableSchema:
        sql, params = self._driver.dialect.columns_query(table, schema)
        rows = await self._driver.query(sql, params)
        columns = [self._column_from_row(row) for row in rows]
        entry = TableSchema.build(columns, expires_at=self._clock() + self._expires_seconds)
        if entry.is_empty:
            if self.strict:
                raise TableNotFoundError(f"Table {key} not found or not visible.")
            logger.warning("No columns reported for table %s; caching empty schema", key)
        self._entries[key] = entry
        return entry

    @staticmethod
    def _column_from_row(row: Mapping) -> ColumnMetadata:
        # Catalog column labels come back upper-case from some servers.
        values = {str(k).lower(): v for k, v in row.items()}
        return ColumnMetadata(
            name=values["column_name"],
            type=str(values["data_type"]).lower(),
            primary=bool(values["is_key"]),
            identity=bool(values["is_identity"]),
            has_default=bool(values["has_default"]),
        )

    async def fields(self, table: str, schema: str | None = None) -> tuple[ColumnMetadata, ...]:
        return (await self.resolve(table, schema)).fields

    async def field_names(self, table: str, schema: str | None = None) -> list[str]:
        return (await self.resolve(table, schema)).field_names

    async def by_name(self, table: str, schema: str | None = None) -> Mapping[str, ColumnMetadata]:
        return (await self.resolve(table, schema)).by_name

    async def primary_keys(self, table: str, schema: str | None = None) -> tuple[str, ...]:
        return (await self.resolve(table, schema)).primary_keys

    async def identity_column(self, table: str, schema: str | None = None) -> str | None:
        return (await self.resolve(table, schema)).identity_column

    auto_increment = identity_column
