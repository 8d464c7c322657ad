import logging
from threading import BoundedSemaphore, RLock
from typing import Any, Iterable, Optional

import pymysql
import pymysql.cursors
from psycopg2.pool import ThreadedConnectionPool

from dbtable.dialects import MYSQL, POSTGRES
from dbtable.models import QueryResult

logger = logging.getLogger(__name__)


def _rollback_quietly(conn) -> None:
	"""Roll back, logging instead of raising when the connection is gone."""
	try:
		conn.rollback()
	except Exception:
		logger.exception("Rollback failed")


class PostgresTransport:
	"""
	Blocking PostgreSQL transport backed by a psycopg2 connection pool.

	Create directly:
		transport = PostgresTransport(database="app", user="postgres", password="...", host="localhost", port=5432)

	Or reuse an existing pool by connection parameters via the cache:
		transport = PostgresTransport.get(database="app", user="postgres", host="localhost")

	Statements use `$N` placeholders and are rewritten for psycopg2 before execution.
	Call `close()` when you're done with a specific transport, or `PostgresTransport.closeall()`
	to close every cached pool.
	"""

	dialect = POSTGRES

	_cache: dict[tuple, "PostgresTransport"] = {}
	_cache_lock = RLock()

	@staticmethod
	def _freeze_conn_kwargs(conn_kwargs: dict[str, Any]) -> tuple[tuple[str, Any], ...] | None:
		"""
		Build a deterministic, hashable representation of extra connect kwargs.
		"""
		if not conn_kwargs:
			return None
		frozen: list[tuple[str, Any]] = []
		for key, value in sorted(conn_kwargs.items()):
			try:
				hash(value)
				frozen.append((key, value))
			except TypeError:
				# Fall back to repr for non-hashable kwargs (e.g., dict/list options).
				frozen.append((key, repr(value)))
		return tuple(frozen)

	@classmethod
	def get(
		cls,
		*,
		database: str = "postgres",
		user: str = "postgres",
		password: Optional[str] = None,
		host: Optional[str] = None,
		port: Optional[int] = None,
		minconn: int = 1,
		maxconn: int = 10,
		**conn_kwargs
	) -> "PostgresTransport":
		"""
		Return a cached transport for the same connection parameters, creating it if needed.
		Extra psycopg2 connection kwargs can be passed via **conn_kwargs (e.g., sslmode="require").
		"""
		key = (
			host, port, database, user, password,
			cls._freeze_conn_kwargs(conn_kwargs),
			minconn, maxconn
		)
		with cls._cache_lock:
			transport = cls._cache.get(key)
			if transport is None or transport._closed:
				transport = cls(
					database=database, user=user, password=password,
					host=host, port=port, minconn=minconn, maxconn=maxconn, **conn_kwargs
				)
				transport._cache_key = key
				cls._cache[key] = transport
				logger.debug("Created new cached PostgresTransport for %s@%s/%s", user, host or "", database)
			else:
				logger.debug("Reusing cached PostgresTransport for %s@%s/%s", user, host or "", database)
			return transport

	@classmethod
	def closeall(cls) -> None:
		"""Close all cached connection pools and clear the cache."""
		with cls._cache_lock:
			transports = list(cls._cache.values())
			cls._cache.clear()
		for transport in transports:
			try:
				transport.close()
			except Exception:
				logger.exception("Error closing pooled transport")

	def __init__(
		self,
		*,
		database: str = "postgres",
		user: str = "postgres",
		password: Optional[str] = None,
		host: Optional[str] = None,
		port: Optional[int] = None,
		minconn: int = 1,
		maxconn: int = 10,
		pool=None,
		**conn_kwargs
	):
		self.database = database
		self.user = user
		self.host = host
		self.port = port
		self._closed = False
		self._state_lock = RLock()
		self._cache_key: tuple | None = None
		self._conn_kwargs = dict(conn_kwargs)
		if password is not None:
			self._conn_kwargs["password"] = password
		if host is not None:
			self._conn_kwargs["host"] = host
		if port is not None:
			self._conn_kwargs["port"] = port

		if pool is not None:
			self.pool = pool
		else:
			logger.debug("Creating PostgresTransport for %s@%s:%s/%s", user, host or "", port or "", database)
			self.pool = ThreadedConnectionPool(
				minconn, maxconn,
				database=self.database,
				user=self.user,
				**self._conn_kwargs
			)
		# ThreadedConnectionPool raises instead of waiting when every connection is out.
		self._slots = BoundedSemaphore(getattr(self.pool, "maxconn", maxconn))

	def __repr__(self) -> str:
		host = self.host or ""
		port = f":{self.port}" if self.port else ""
		return f"<PostgresTransport {self.user}@{host}{port}/{self.database} pool={getattr(self.pool, 'minconn', '?')}-{getattr(self.pool, 'maxconn', '?')}>"

	# ---------- Pool plumbing ----------
	def close(self) -> None:
		"""Close this transport's pool."""
		with self._state_lock:
			if self._closed:
				return
			self._closed = True
		try:
			self.pool.closeall()
		finally:
			cache_key = self._cache_key
			if cache_key is not None:
				with self.__class__._cache_lock:
					cached = self.__class__._cache.get(cache_key)
					if cached is self:
						self.__class__._cache.pop(cache_key, None)

	def _get_conn(self):
		with self._state_lock:
			if self._closed:
				raise RuntimeError("PostgresTransport is closed.")
		self._slots.acquire()
		try:
			return self.pool.getconn()
		except Exception:
			self._slots.release()
			raise

	def _put_conn(self, conn):
		try:
			self.pool.putconn(conn)
		except Exception:
			# If the pool is already closed while returning a connection, suppress.
			with self._state_lock:
				if not self._closed:
					raise
		finally:
			self._slots.release()

	# ---------- Execution helpers ----------
	@staticmethod
	def _rows_from_cursor(cur) -> list[dict]:
		if cur.description is None:
			return []
		colnames = [d[0] for d in cur.description]
		rows = cur.fetchall()
		return [dict(zip(colnames, r)) for r in rows]

	def _execute_on_conn(self, conn, query: str, params: Optional[Iterable] = None) -> QueryResult:
		"""
		Run one statement on an already-acquired connection; commit on success, roll back on error.
		"""
		text, args = self.dialect.to_pyformat(query, list(params or []))
		try:
			with conn.cursor() as cur:
				cur.execute(text, args)
				result = QueryResult(rows=self._rows_from_cursor(cur), rowcount=cur.rowcount)
			conn.commit()
			return result
		except Exception:
			_rollback_quietly(conn)
			raise

	def execute(self, query: str, params: Optional[Iterable] = None) -> QueryResult:
		conn = self._get_conn()
		try:
			return self._execute_on_conn(conn, query, params)
		finally:
			self._put_conn(conn)


class MySQLTransport:
	"""
	Blocking MySQL/MariaDB transport over a single PyMySQL connection.

	PyMySQL connections are not thread-safe, so every statement holds an RLock
	for its full round-trip. Pass `connection=` to adopt an already-open connection.
	"""

	dialect = MYSQL

	def __init__(
		self,
		*,
		database: Optional[str] = None,
		user: Optional[str] = None,
		password: Optional[str] = None,
		host: Optional[str] = None,
		port: Optional[int] = None,
		connection=None,
		**conn_kwargs
	):
		self.database = database
		self.user = user
		self.host = host
		self.port = port
		self._closed = False
		self._lock = RLock()
		if connection is None:
			logger.debug("Connecting MySQLTransport to %s@%s:%s/%s", user, host or "", port or "", database)
			connect_kwargs = dict(conn_kwargs)
			if host is not None:
				connect_kwargs["host"] = host
			if port is not None:
				connect_kwargs["port"] = int(port)
			if password is not None:
				connect_kwargs["password"] = password
			connection = pymysql.connect(database=database, user=user, **connect_kwargs)
		self.connection = connection

	def __repr__(self) -> str:
		host = self.host or ""
		port = f":{self.port}" if self.port else ""
		return f"<MySQLTransport {self.user}@{host}{port}/{self.database}>"

	def close(self) -> None:
		with self._lock:
			if self._closed:
				return
			self._closed = True
			self.connection.close()

	def execute(self, query: str, params: Optional[Iterable] = None) -> QueryResult:
		text, args = self.dialect.to_pyformat(query, list(params or []))
		with self._lock:
			if self._closed:
				raise RuntimeError("MySQLTransport is closed.")
			conn = self.connection
			try:
				with conn.cursor(pymysql.cursors.DictCursor) as cur:
					cur.execute(text, args)
					rows = [dict(r) for r in cur.fetchall()] if cur.description else []
					result = QueryResult(rows=rows, rowcount=cur.rowcount, lastrowid=cur.lastrowid)
				conn.commit()
				return result
			except Exception:
				_rollback_quietly(conn)
				raise
