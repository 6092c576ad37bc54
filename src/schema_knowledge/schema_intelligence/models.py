"""
Schema Snapshot Definitions

These models represent everything the engine currently believes about one
external database: its tables, their columns, and the relationships
between them. A snapshot is only ever changed through the merger.
"""
from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import yaml

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MAX_COLUMN_EXAMPLES = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string, a datetime or a unix timestamp (seconds or ms)"""
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ColumnType(str, Enum):
    """Coarse column types the engine can learn"""
    UNKNOWN = "unknown"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING = "string"

    @property
    def is_concrete(self) -> bool:
        return self is not ColumnType.UNKNOWN

    @classmethod
    def coerce(cls, raw: Any) -> "ColumnType":
        """Map a declared type string (SQL or UI label) onto a coarse type"""
        if isinstance(raw, ColumnType):
            return raw
        if raw is None:
            return cls.UNKNOWN

        text = str(raw).strip().lower()
        if not text:
            return cls.UNKNOWN
        try:
            return cls(text)
        except ValueError:
            pass

        # "type/BigInteger", "varchar(255)", "timestamp with time zone"
        text = text.split("/")[-1]
        text = re.sub(r"\(.*\)", "", text).strip()

        for prefixes, column_type in _TYPE_PREFIXES:
            if text.startswith(prefixes):
                return column_type
        return cls.UNKNOWN


_TYPE_PREFIXES = [
    (("bool", "bit"), ColumnType.BOOLEAN),
    (("int", "bigint", "smallint", "tinyint", "mediumint", "serial", "biginteger", "long"), ColumnType.INTEGER),
    (("float", "double", "decimal", "numeric", "number", "real", "money"), ColumnType.NUMBER),
    (("date", "time", "timestamp", "year"), ColumnType.DATE),
    (("char", "varchar", "nvarchar", "text", "string", "uuid", "enum", "json", "clob"), ColumnType.STRING),
]


class Cardinality(str, Enum):
    """Relationship cardinality tags"""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"

    @classmethod
    def coerce(cls, raw: Any) -> "Cardinality":
        if isinstance(raw, Cardinality):
            return raw
        text = str(raw or "").strip().lower().replace("_", "-")
        try:
            return cls(text)
        except ValueError:
            return cls.ONE_TO_MANY


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class Column:
    """A column owned by exactly one table"""
    id: str
    name: str
    column_type: ColumnType = ColumnType.UNKNOWN
    description: Optional[str] = None

    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_nullable: bool = False
    is_unique: bool = False
    is_indexed: bool = False

    examples: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.column_type.value,
            "description": self.description,
            "is_primary_key": self.is_primary_key,
            "is_foreign_key": self.is_foreign_key,
            "is_nullable": self.is_nullable,
            "is_unique": self.is_unique,
            "is_indexed": self.is_indexed,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            column_type=ColumnType.coerce(data.get("type", data.get("column_type"))),
            description=data.get("description"),
            is_primary_key=bool(_pick(data, "is_primary_key", "isPrimaryKey", default=False)),
            is_foreign_key=bool(_pick(data, "is_foreign_key", "isForeignKey", default=False)),
            is_nullable=bool(_pick(data, "is_nullable", "isNullable", default=False)),
            is_unique=bool(_pick(data, "is_unique", "isUnique", default=False)),
            is_indexed=bool(_pick(data, "is_indexed", "isIndexed", default=False)),
            examples=[str(v) for v in data.get("examples") or []][:MAX_COLUMN_EXAMPLES],
        )

    @property
    def is_key(self) -> bool:
        return self.is_primary_key or self.is_foreign_key


@dataclass
class Table:
    """A table and the columns it owns"""
    id: str
    name: str
    description: Optional[str] = None
    columns: List[Column] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "columns": [c.to_dict() for c in self.columns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            description=data.get("description"),
            columns=[Column.from_dict(c) for c in data.get("columns") or []],
        )

    def get_column(self, column_id: str) -> Optional[Column]:
        """Get column by id"""
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def find_column(self, name: str) -> Optional[Column]:
        """Get column by name (case-insensitive)"""
        name_lower = name.lower()
        for column in self.columns:
            if column.name.lower() == name_lower:
                return column
        return None

    def match_column(self, column_id: Optional[str], name: Optional[str]) -> Optional[Column]:
        """Match by id, falling back to case-insensitive name"""
        if column_id:
            column = self.get_column(column_id)
            if column:
                return column
        if name:
            return self.find_column(name)
        return None


@dataclass
class Relationship:
    """A directed link between two columns, referenced by id only"""
    id: str
    source_table_id: str
    source_column_id: str
    target_table_id: str
    target_column_id: str
    cardinality: Cardinality = Cardinality.ONE_TO_MANY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_table_id": self.source_table_id,
            "source_column_id": self.source_column_id,
            "target_table_id": self.target_table_id,
            "target_column_id": self.target_column_id,
            "type": self.cardinality.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relationship":
        return cls(
            id=str(data["id"]),
            source_table_id=str(_pick(data, "source_table_id", "sourceTableId", default="")),
            source_column_id=str(_pick(data, "source_column_id", "sourceColumnId", default="")),
            target_table_id=str(_pick(data, "target_table_id", "targetTableId", default="")),
            target_column_id=str(_pick(data, "target_column_id", "targetColumnId", default="")),
            cardinality=Cardinality.coerce(_pick(data, "type", "cardinality")),
        )

    @property
    def table_ids(self) -> Set[str]:
        return {self.source_table_id, self.target_table_id}


@dataclass
class SchemaSnapshot:
    """
    Full schema state for one database at a point in time

    Invariants:
    - table ids are unique within the snapshot
    - column ids are unique within their table
    - every relationship resolves to existing tables and columns
    - last_updated never moves backwards
    """
    database_id: str
    last_updated: datetime = EPOCH
    tables: List[Table] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)

    @classmethod
    def empty(cls, database_id: str) -> "SchemaSnapshot":
        return cls(database_id=database_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database_id": self.database_id,
            "last_updated": self.last_updated.isoformat(),
            "tables": [t.to_dict() for t in self.tables],
            "relationships": [r.to_dict() for r in self.relationships],
        }

    def content_dict(self) -> Dict[str, Any]:
        """Serialized form without the timestamp, for equality checks"""
        data = self.to_dict()
        data.pop("last_updated")
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaSnapshot":
        return cls(
            database_id=str(_pick(data, "database_id", "databaseId", default="unknown")),
            last_updated=parse_timestamp(_pick(data, "last_updated", "lastUpdated")),
            tables=[Table.from_dict(t) for t in data.get("tables") or []],
            relationships=[Relationship.from_dict(r) for r in data.get("relationships") or []],
        )

    def copy(self) -> "SchemaSnapshot":
        return copy.deepcopy(self)

    def touch(self, when: Optional[datetime] = None) -> None:
        """Advance last_updated, never moving it backwards"""
        when = when or utcnow()
        if when > self.last_updated:
            self.last_updated = when

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.last_updated).total_seconds()

    def get_table(self, table_id: str) -> Optional[Table]:
        """Get table by id"""
        for table in self.tables:
            if table.id == table_id:
                return table
        return None

    def find_table(self, name: str) -> Optional[Table]:
        """Get table by name (case-insensitive)"""
        name_lower = name.lower()
        for table in self.tables:
            if table.name.lower() == name_lower:
                return table
        return None

    def match_table(self, table_id: Optional[str], name: Optional[str]) -> Optional[Table]:
        """Match by id, falling back to case-insensitive name"""
        if table_id:
            table = self.get_table(table_id)
            if table:
                return table
        if name:
            return self.find_table(name)
        return None

    def get_relationship(self, relationship_id: str) -> Optional[Relationship]:
        for rel in self.relationships:
            if rel.id == relationship_id:
                return rel
        return None

    def relationship_resolves(self, rel: Relationship) -> bool:
        source = self.get_table(rel.source_table_id)
        target = self.get_table(rel.target_table_id)
        return bool(
            source and target
            and source.get_column(rel.source_column_id)
            and target.get_column(rel.target_column_id)
        )

    def prune_dangling_relationships(self) -> int:
        """Drop relationships whose endpoints no longer resolve"""
        kept = [r for r in self.relationships if self.relationship_resolves(r)]
        removed = len(self.relationships) - len(kept)
        self.relationships = kept
        return removed

    def validate(self) -> List[str]:
        """Return a list of invariant violations (empty when consistent)"""
        problems = []
        seen_tables: Set[str] = set()
        for table in self.tables:
            if table.id in seen_tables:
                problems.append(f"duplicate table id {table.id}")
            seen_tables.add(table.id)

            seen_columns: Set[str] = set()
            for column in table.columns:
                if column.id in seen_columns:
                    problems.append(f"duplicate column id {column.id} in table {table.name}")
                seen_columns.add(column.id)

        for rel in self.relationships:
            if not self.relationship_resolves(rel):
                problems.append(f"dangling relationship {rel.id}")
        return problems

    def is_sufficient(self) -> bool:
        """Whether there is enough schema to build a prompt from"""
        return len(self.tables) > 0

    @property
    def column_count(self) -> int:
        return sum(len(t.columns) for t in self.tables)
