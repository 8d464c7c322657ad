from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnMetadata:
	"""
	One column as reported by the database catalog.
	"""
	name: str
	type: str
	primary: bool = False
	identity: bool = False
	has_default: bool = False

	@property
	def is_temporal(self) -> bool:
		return "date" in self.type or "timestamp" in self.type


@dataclass(frozen=True)
class TableSchema:
	"""
	Immutable snapshot of a table's columns, replaced wholesale on refresh.
	"""
	expires_at: float
	fields: tuple[ColumnMetadata, ...] = ()
	by_name: Mapping[str, ColumnMetadata] = field(default_factory=lambda: MappingProxyType({}))
	primary_keys: tuple[str, ...] = ()
	identity_column: str | None = None

	@classmethod
	def build(cls, columns: Iterable[ColumnMetadata], expires_at: float) -> "TableSchema":
		fields = tuple(columns)
		identity = None
		for col in fields:
			if not col.identity:
				continue
			if identity is None:
				identity = col.name
			else:
				logger.warning("Ignoring extra identity column %s (already have %s)", col.name, identity)
		return cls(
			expires_at=expires_at,
			fields=fields,
			by_name=MappingProxyType({col.name: col for col in fields}),
			primary_keys=tuple(col.name for col in fields if col.primary),
			identity_column=identity,
		)

	@property
	def field_names(self) -> list[str]:
		return [col.name for col in self.fields]

	@property
	def is_empty(self) -> bool:
		return not self.fields


@dataclass
class QueryResult(Sequence):
	"""
	Rows plus whatever the driver reported about the statement.

	Behaves like a read-only list of row dicts. `generated` holds identity
	values merged in after an insert.
	"""
	rows: list[dict] = field(default_factory=list)
	rowcount: int = -1
	lastrowid: Any = None
	generated: dict[str, Any] = field(default_factory=dict)

	def __getitem__(self, index):
		return self.rows[index]

	def __len__(self) -> int:
		return len(self.rows)

	def __iter__(self) -> Iterator[dict]:
		return iter(self.rows)

	@classmethod
	def coerce(cls, result) -> "QueryResult":
		if isinstance(result, QueryResult):
			return result
		if result is None:
			return cls()
		rows = [dict(r) for r in result]
		return cls(rows=rows, rowcount=len(rows))
