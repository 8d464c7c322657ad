from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from dbtable.errors import ConfigurationError

# Quoted literals and identifiers; placeholders inside them are not rewritten.
_QUOTED = r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|`(?:[^`]|``)*`"
_QMARK_RE = re.compile(rf"({_QUOTED})|\?")
_NUMBERED_RE = re.compile(rf"({_QUOTED})|\$(\d+)")

_MYSQL_COLUMNS_SQL = """
	SELECT
		COLUMN_NAME AS column_name,
		DATA_TYPE AS data_type,
		CASE WHEN COLUMN_KEY LIKE '%PRI%' THEN 1 ELSE 0 END AS is_key,
		CASE WHEN LOWER(EXTRA) LIKE '%auto_increment%' THEN 1 ELSE 0 END AS is_identity,
		CASE WHEN COLUMN_DEFAULT IS NOT NULL THEN 1 ELSE 0 END AS has_default
	FROM information_schema.COLUMNS
	WHERE TABLE_NAME = ? AND TABLE_SCHEMA = {schema}
	ORDER BY ORDINAL_POSITION
"""

_POSTGRES_COLUMNS_SQL = """
	SELECT
		c.column_name AS column_name,
		c.data_type AS data_type,
		CASE WHEN kcu.column_name IS NOT NULL THEN 1 ELSE 0 END AS is_key,
		CASE WHEN c.is_identity = 'YES' OR c.column_default LIKE 'nextval(%' THEN 1 ELSE 0 END AS is_identity,
		CASE WHEN c.column_default IS NOT NULL OR c.is_identity = 'YES' THEN 1 ELSE 0 END AS has_default
	FROM information_schema.columns c
	LEFT JOIN information_schema.table_constraints tc
		ON tc.table_schema = c.table_schema
		AND tc.table_name = c.table_name
		AND tc.constraint_type = 'PRIMARY KEY'
	LEFT JOIN information_schema.key_column_usage kcu
		ON kcu.constraint_name = tc.constraint_name
		AND kcu.constraint_schema = tc.constraint_schema
		AND kcu.table_name = c.table_name
		AND kcu.column_name = c.column_name
	WHERE c.table_name = $1 AND c.table_schema = {schema}
	ORDER BY c.ordinal_position
"""


@dataclass(frozen=True)
class Dialect:
	"""
	Placeholder and identifier conventions of one SQL family.
	"""
	name: str
	quote_char: str
	numbered_params: bool
	supports_returning: bool

	def escape_identifier(self, name: str) -> str:
		q = self.quote_char
		return q + str(name).replace(q, q + q) + q

	def placeholder(self, position: int) -> str:
		if self.numbered_params:
			return f"${position}"
		return "?"

	def qualify(self, table: str, schema: str | None = None) -> str:
		if schema:
			return f"{self.escape_identifier(schema)}.{self.escape_identifier(table)}"
		return self.escape_identifier(table)

	def columns_query(self, table: str, schema: str | None = None) -> tuple[str, list]:
		"""
		Catalog statement listing a table's columns with key, identity and default flags.
		"""
		template = _POSTGRES_COLUMNS_SQL if self.numbered_params else _MYSQL_COLUMNS_SQL
		params: list = [table]
		if schema:
			params.append(schema)
			schema_sql = self.placeholder(2)
		elif self.numbered_params:
			schema_sql = "current_schema()"
		else:
			schema_sql = "database()"
		return template.format(schema=schema_sql), params

	def to_pyformat(self, query: str, params: Sequence[Any] | None) -> tuple[str, list | None]:
		"""
		Rewrite this dialect's placeholders into the `%s` style psycopg2 and PyMySQL expect.

		Literal percent signs are doubled and `$N` parameters are reordered to
		match their textual order. Without parameters the statement is returned
		untouched, since neither driver interpolates in that case.
		"""
		if not params:
			return query, None
		escaped = query.replace("%", "%%")
		if not self.numbered_params:
			text = _QMARK_RE.sub(lambda m: m.group(1) or "%s", escaped)
			return text, list(params)

		values = list(params)
		ordered: list = []

		def _swap(m: re.Match) -> str:
			if m.group(1):
				return m.group(1)
			position = int(m.group(2))
			if position < 1 or position > len(values):
				raise IndexError(f"Placeholder ${position} has no bound parameter.")
			ordered.append(values[position - 1])
			return "%s"

		text = _NUMBERED_RE.sub(_swap, escaped)
		return text, ordered


MYSQL = Dialect(name="mysql", quote_char="`", numbered_params=False, supports_returning=False)
POSTGRES = Dialect(name="postgres", quote_char='"', numbered_params=True, supports_returning=True)

_ALIASES = {
	"mysql": MYSQL,
	"mariadb": MYSQL,
	"postgres": POSTGRES,
	"postgresql": POSTGRES,
	"pg": POSTGRES,
}


def get_dialect(name: str | Dialect | None) -> Dialect:
	if isinstance(name, Dialect):
		return name
	key = (name or "").strip().lower()
	dialect = _ALIASES.get(key)
	if dialect is None:
		raise ConfigurationError(f"Unsupported dialect: {name!r}")
	return dialect
