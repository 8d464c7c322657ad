from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping

from dbtable.adapter import DriverAdapter, as_adapter
from dbtable.cache import SchemaCache
from dbtable.errors import ConfigurationError, ValidationError
from dbtable.models import ColumnMetadata, QueryResult, TableSchema

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200


def coerce_value(column: ColumnMetadata, value: Any) -> Any:
	"""
	Parse ISO date text bound for a date or timestamp column.

	Text that does not parse is returned unchanged; this never raises.
	"""
	if not isinstance(value, str) or not column.is_temporal:
		return value
	raw = value.strip()
	if raw.endswith(("Z", "z")):
		raw = raw[:-1] + "+00:00"
	try:
		if "timestamp" in column.type or "datetime" in column.type:
			return datetime.fromisoformat(raw)
		try:
			return date.fromisoformat(raw)
		except ValueError:
			return datetime.fromisoformat(raw).date()
	except ValueError:
		return value


class Table:
	"""
	Schema-driven CRUD for one table.

	Columns are discovered from the database catalog through a SchemaCache,
	so callers pass plain dicts keyed by column name. Keys that are not
	columns of the table are dropped (ignore_unknown=True, the default) or
	rejected with ValidationError (ignore_unknown=False).

		users = Table("users", pool=transport, schema="app")
		created = await users.add({"email": "a@example.com"})
		row = await users.get({"id": created.generated["id"]})
	"""

	def __init__(
		self,
		table: str,
		*,
		pool=None,
		connection=None,
		schema: str | None = None,
		cache: SchemaCache | None = None,
		dialect=None,
		ignore_unknown: bool = True,
	):
		if not table:
			raise ConfigurationError("A table name is required.")
		if pool is None and connection is None:
			raise ConfigurationError("A pool or connection is required.")
		if pool is not None and connection is not None:
			raise ConfigurationError("Pass either a pool or a connection, not both.")
		self.table = table
		self.schema = schema or None
		self.ignore_unknown = ignore_unknown
		self._driver: DriverAdapter = as_adapter(pool if pool is not None else connection, dialect)
		self._cache = cache if cache is not None else SchemaCache(self._driver)

	def __repr__(self) -> str:
		return f"<Table {self.identity} {self._driver.dialect.name}>"

	@property
	def identity(self) -> str:
		return SchemaCache.identity_key(self.table, self.schema)

	@property
	def cache(self) -> SchemaCache:
		return self._cache

	# ---------- SQL assembly ----------
	def _target(self) -> str:
		return self._driver.dialect.qualify(self.table, self.schema)

	def _assignments(self, columns: list[str], start: int) -> list[str]:
		return [
			f"{self._driver.escape_identifier(name)} = {self._driver.parameter_placeholder(start + i)}"
			for i, name in enumerate(columns)
		]

	async def _schema(self) -> TableSchema:
		return await self._cache.resolve(self.table, self.schema)

	def known_values(self, schema: TableSchema, values: Mapping[str, Any] | None) -> dict[str, Any]:
		"""
		Keep only the entries of `values` naming a column, date-coerced.
		"""
		known: dict[str, Any] = {}
		unknown: list[str] = []
		for key, value in (values or {}).items():
			col = schema.by_name.get(key)
			if col is None:
				unknown.append(key)
				continue
			known[key] = coerce_value(col, value)
		if unknown:
			if not self.ignore_unknown:
				raise ValidationError(f"Unknown columns for table {self.identity}: {unknown}")
			logger.debug("Ignoring unknown columns for %s: %s", self.identity, unknown)
		return known

	def _key_values(self, schema: TableSchema, values: Mapping[str, Any]) -> list[tuple[str, Any]]:
		if not schema.primary_keys:
			raise ValidationError(f"Table {self.identity} has no primary key columns.")
		pairs = []
		for key in schema.primary_keys:
			if key not in values:
				raise ValidationError(f"The primary field {key} is required.")
			pairs.append((key, coerce_value(schema.by_name[key], values[key])))
		return pairs

	@staticmethod
	def _require_values(values, *, non_empty: bool = False) -> None:
		if values is None:
			raise ValidationError("A values mapping is required.")
		if non_empty and not values:
			raise ValidationError("A non-empty values mapping is required.")

	# ---------- Operations ----------
	async def add(self, values: Mapping[str, Any]) -> QueryResult:
		"""
		Insert one row. The identity column must not be supplied; its generated
		value is returned in `result.generated` when the database reports it.
		"""
		self._require_values(values, non_empty=True)
		schema = await self._schema()
		data = self.known_values(schema, values)
		ident = schema.identity_column
		if ident is not None and ident in data:
			raise ValidationError(f"The identity field {ident} is generated by the database and cannot be supplied.")
		if not data:
			raise ValidationError(f"No fields of table {self.identity} match the supplied values.")

		columns = list(data)
		marks = [self._driver.parameter_placeholder(i + 1) for i in range(len(columns))]
		sql = (
			f"INSERT INTO {self._target()} "
			f"({', '.join(self._driver.escape_identifier(c) for c in columns)}) "
			f"VALUES ({', '.join(marks)})"
		)
		returning = ident is not None and self._driver.dialect.supports_returning
		if returning:
			sql += f" RETURNING {self._driver.escape_identifier(ident)}"

		result = await self._driver.query(sql, list(data.values()))
		if ident is not None:
			if returning and result.rows:
				result.generated[ident] = result.rows[0].get(ident)
			elif isinstance(result.lastrowid, int) and result.lastrowid > 0:
				result.generated[ident] = result.lastrowid
		return result

	async def get(self, values: Mapping[str, Any]) -> dict | None:
		"""Fetch one row by its full primary key, or None."""
		self._require_values(values)
		schema = await self._schema()
		keys = self._key_values(schema, values)
		where = self._assignments([k for k, _ in keys], 1)
		sql = f"SELECT * FROM {self._target()} WHERE {' AND '.join(where)}"
		result = await self._driver.query(sql, [v for _, v in keys])
		return result.rows[0] if result.rows else None

	async def save(self, values: Mapping[str, Any]) -> QueryResult:
		"""
		Update the row identified by the primary key with every other known column in `values`.
		"""
		self._require_values(values)
		schema = await self._schema()
		keys = self._key_values(schema, values)
		data = self.known_values(schema, values)
		updates = [
			(name, value) for name, value in data.items()
			if not (schema.by_name[name].primary or schema.by_name[name].identity)
		]
		if not updates:
			raise ValidationError(f"No updatable fields of table {self.identity} were supplied.")

		sets = self._assignments([name for name, _ in updates], 1)
		where = self._assignments([k for k, _ in keys], len(updates) + 1)
		sql = f"UPDATE {self._target()} SET {', '.join(sets)} WHERE {' AND '.join(where)}"
		params = [v for _, v in updates] + [v for _, v in keys]
		return await self._driver.query(sql, params)

	async def remove(self, values: Mapping[str, Any]) -> QueryResult:
		"""Delete the row identified by the primary key."""
		self._require_values(values)
		schema = await self._schema()
		keys = self._key_values(schema, values)
		where = self._assignments([k for k, _ in keys], 1)
		sql = f"DELETE FROM {self._target()} WHERE {' AND '.join(where)}"
		return await self._driver.query(sql, [v for _, v in keys])

	async def find(self, values: Mapping[str, Any] | None = None, limit: int | None = None) -> list[dict]:
		"""
		Rows matching every known key of `values` by equality, at most `limit` (default 200).
		"""
		if not limit:
			limit = DEFAULT_LIMIT
		if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
			raise ValidationError(f"limit must be a positive integer, got {limit!r}")
		schema = await self._schema()
		data = self.known_values(schema, values)

		sql = f"SELECT * FROM {self._target()}"
		if data:
			sql += f" WHERE {' AND '.join(self._assignments(list(data), 1))}"
		sql += f" LIMIT {limit}"
		result = await self._driver.query(sql, list(data.values()))
		if not result:
			return []
		return list(result.rows)
