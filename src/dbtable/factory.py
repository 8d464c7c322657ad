from __future__ import annotations

import logging

from dbtable.adapter import DriverAdapter, as_adapter, connect
from dbtable.cache import SchemaCache
from dbtable.config import ConnectionSettings
from dbtable.table import Table

logger = logging.getLogger(__name__)


class TableFactory:
    """
    Hands out one Table per (schema, table) on a single connection.

    Every table shares the factory's adapter and SchemaCache, so changing the
    cache's `expires` affects all of them.

        async with TableFactory.connect(dialect="mysql", database="shop", user="app") as db:
            orders = db.get_table("orders")
            await orders.find({"status": "open"}, 20)
    """

    def __init__(self, driver, *, dialect=None, expires: float = SchemaCache.DEFAULT_EXPIRES, strict: bool = False):
        self._driver: DriverAdapter = as_adapter(driver, dialect)
        self._cache = SchemaCache(self._driver, expires=expires, strict=strict)
        self._tables: dict[str, Table] = {}

    @classmethod
    def connect(cls, settings: ConnectionSettings | None = None, *, strict: bool = False, **overrides) -> "TableFactory":
        if settings is None:
            settings = ConnectionSettings.from_env(**overrides)
        else:
            settings = settings.replace(**overrides)
        return cls(connect(settings), expires=settings.expires, strict=strict)

    def __repr__(self) -> str:
        return f"<TableFactory {self._driver!r} tables={len(self._tables)}>"

    async def __aenter__(self) -> "TableFactory":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def get_table(self, name: str, schema: str | None = None) -> Table:
        key = SchemaCache.identity_key(name, schema)
        table = self._tables.get(key)
        if table is not None:
            return table
        table = Table(name, schema=schema, cache=self._cache, pool=self._driver)
        self._tables[key] = table
        logger.debug("Created table handle for %s", key)
        return table

    def get_cache(self) -> SchemaCache:
        return self._cache

    async def close(self) -> None:
        self._tables.clear()
        await self._driver.close()
