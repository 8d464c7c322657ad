from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from dbtable.config import ConnectionSettings
from dbtable.dialects import Dialect, get_dialect
from dbtable.errors import ConfigurationError
from dbtable.models import QueryResult
from dbtable.transports import MySQLTransport, PostgresTransport

logger = logging.getLogger(__name__)


class DriverAdapter(ABC):
    """
    Uniform async face over one database transport.

    A transport is anything with `execute(sql, params)` returning rows (a
    QueryResult or a list of mappings) and `close()`. Statements handed to
    `query` use the dialect's own placeholders.
    """

    def __init__(self, transport, dialect: Dialect):
        self._transport = transport
        self._dialect = dialect

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dialect.name} {self._transport!r}>"

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def transport(self):
        return self._transport

    def escape_identifier(self, name: str) -> str:
        return self._dialect.escape_identifier(name)

    def parameter_placeholder(self, position: int) -> str:
        return self._dialect.placeholder(position)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        logger.debug("Executing on %s (%d params): %s", self._dialect.name, len(params or ()), sql)
        result = await self._execute(sql, list(params) if params is not None else None)
        return QueryResult.coerce(result)

    @abstractmethod
    async def _execute(self, sql: str, params: Optional[list]):
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class ThreadedAdapter(DriverAdapter):
    """Runs a blocking DB-API transport on worker threads."""

    async def _execute(self, sql, params):
        return await asyncio.to_thread(self._transport.execute, sql, params)

    async def close(self) -> None:
        await asyncio.to_thread(self._transport.close)


class AsyncAdapter(DriverAdapter):
    """Awaits a transport whose methods are already coroutines."""

    async def _execute(self, sql, params):
        return await self._transport.execute(sql, params)

    async def close(self) -> None:
        outcome = self._transport.close()
        if inspect.isawaitable(outcome):
            await outcome


def as_adapter(driver, dialect: str | Dialect | None = None) -> DriverAdapter:
    """
    Wrap a transport in the matching adapter; adapters pass through unchanged.

    The dialect comes from the argument or from the transport's `dialect`
    attribute. Coroutine `execute` methods get an AsyncAdapter, anything else
    runs on threads.
    """
    if isinstance(driver, DriverAdapter):
        return driver
    if driver is None:
        raise ConfigurationError("A database transport is required.")
    if not callable(getattr(driver, "execute", None)):
        raise ConfigurationError(f"{type(driver).__name__} has no execute(sql, params) method.")

    chosen = dialect if dialect is not None else getattr(driver, "dialect", None)
    if chosen is None:
        raise ConfigurationError(f"No dialect given for {type(driver).__name__}; pass dialect='mysql' or 'postgres'.")
    chosen = get_dialect(chosen)

    if inspect.iscoroutinefunction(driver.execute):
        return AsyncAdapter(driver, chosen)
    return ThreadedAdapter(driver, chosen)


def connect(settings: ConnectionSettings | None = None, **overrides) -> DriverAdapter:
    """
    Open a transport from settings (environment by default) and wrap it.
    """
    if settings is None:
        settings = ConnectionSettings.from_env(**overrides)
    else:
        settings = settings.replace(**overrides)
    dialect = get_dialect(settings.dialect)

    if dialect.numbered_params:
        transport = PostgresTransport.get(
            database=settings.database,
            user=settings.user,
            password=settings.password,
            host=settings.host,
            port=settings.port,
            minconn=settings.minconn,
            maxconn=settings.maxconn,
            **settings.options,
        )
    else:
        transport = MySQLTransport(
            database=settings.database,
            user=settings.user,
            password=settings.password,
            host=settings.host,
            port=settings.port,
            **settings.options,
        )
    return ThreadedAdapter(transport, dialect)
