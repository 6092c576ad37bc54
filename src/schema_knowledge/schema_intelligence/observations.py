"""
Schema Observations

Every signal the engine learns from is normalized into a
SchemaObservation before it reaches the merger:

1. extraction      - a scrape of the database browser UI (full schema)
2. query_reference - tables/columns referenced by an executed SQL statement
3. result_sample   - types and example values sampled from result rows
4. update          - a table or relationship handed in directly by a caller

Ids are optional everywhere. An observed table or column without an id is
matched by name, and if nothing matches the merger assigns a synthetic id.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import Cardinality, ColumnType, Relationship, Table
from .type_inference import TypeInference


class ObservationKind(str, Enum):
    """Where an observation came from"""
    EXTRACTION = "extraction"
    QUERY_REFERENCE = "query_reference"
    RESULT_SAMPLE = "result_sample"
    UPDATE = "update"


def synthetic_id(prefix: str) -> str:
    """Generate an id for an entity observed without one"""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def relationship_id(
    source_table: str,
    source_column: str,
    target_table: str,
    target_column: str,
) -> str:
    """Stable id derived from the four endpoints"""
    key = "|".join(p.lower() for p in (source_table, source_column, target_table, target_column))
    return f"rel-{uuid.uuid5(uuid.NAMESPACE_URL, key).hex[:12]}"


def _get(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _optional_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class ObservedColumn:
    """A column as seen by one source; column_type None means no type signal"""
    name: str
    id: Optional[str] = None
    column_type: Optional[ColumnType] = None
    description: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_nullable: bool = False
    is_unique: bool = False
    is_indexed: bool = False
    examples: List[str] = field(default_factory=list)


@dataclass
class ObservedTable:
    """A table as seen by one source"""
    name: str
    id: Optional[str] = None
    description: Optional[str] = None
    columns: List[ObservedColumn] = field(default_factory=list)


@dataclass
class ObservedRelationship:
    """A relationship whose endpoints are given by id, by name, or both"""
    source_table_id: Optional[str] = None
    source_table_name: Optional[str] = None
    source_column_id: Optional[str] = None
    source_column_name: Optional[str] = None
    target_table_id: Optional[str] = None
    target_table_name: Optional[str] = None
    target_column_id: Optional[str] = None
    target_column_name: Optional[str] = None
    cardinality: Cardinality = Cardinality.ONE_TO_MANY
    id: Optional[str] = None


@dataclass
class SchemaObservation:
    """A partial view of a schema, ready to be merged"""
    kind: ObservationKind
    tables: List[ObservedTable] = field(default_factory=list)
    relationships: List[ObservedRelationship] = field(default_factory=list)
    source: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.tables and not self.relationships


# Records returned by the extraction collaborator


@dataclass
class ExtractedColumn:
    """Column record as scraped from the UI"""
    name: str
    type: str = "unknown"
    id: Optional[str] = None
    description: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_nullable: bool = False
    examples: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractedColumn":
        return cls(
            id=_optional_id(data.get("id")),
            name=str(data.get("name", "")),
            type=str(_get(data, "type", "column_type", default="unknown")),
            description=data.get("description"),
            is_primary_key=bool(_get(data, "is_primary_key", "isPrimaryKey", default=False)),
            is_foreign_key=bool(_get(data, "is_foreign_key", "isForeignKey", default=False)),
            is_nullable=bool(_get(data, "is_nullable", "isNullable", default=False)),
            examples=[
                str(v) for v in _get(data, "examples", "sample_values", "sampleValues", default=[])
                if v is not None
            ],
        )


@dataclass
class ExtractedTable:
    """Table record as scraped from the UI"""
    name: str
    id: Optional[str] = None
    description: Optional[str] = None
    columns: List[ExtractedColumn] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractedTable":
        return cls(
            id=_optional_id(data.get("id")),
            name=str(data.get("name", "")),
            description=data.get("description"),
            columns=[
                c if isinstance(c, ExtractedColumn) else ExtractedColumn.from_dict(c)
                for c in data.get("columns") or []
            ],
        )


@dataclass
class ExtractedSchema:
    """Raw schema scraped for one database"""
    database_id: str
    database_name: Optional[str] = None
    tables: List[ExtractedTable] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractedSchema":
        return cls(
            database_id=str(_get(data, "database_id", "databaseId", default="")),
            database_name=_get(data, "database_name", "databaseName"),
            tables=[
                t if isinstance(t, ExtractedTable) else ExtractedTable.from_dict(t)
                for t in data.get("tables") or []
            ],
        )


@dataclass
class ExtractedRelationship:
    """Foreign-key link as scraped from the UI"""
    source_table_id: Optional[str] = None
    source_table_name: Optional[str] = None
    source_column_id: Optional[str] = None
    source_column_name: Optional[str] = None
    target_table_id: Optional[str] = None
    target_table_name: Optional[str] = None
    target_column_id: Optional[str] = None
    target_column_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractedRelationship":
        return cls(
            source_table_id=_optional_id(_get(data, "source_table_id", "sourceTableId")),
            source_table_name=_get(data, "source_table_name", "sourceTableName"),
            source_column_id=_optional_id(_get(data, "source_column_id", "sourceColumnId")),
            source_column_name=_get(data, "source_column_name", "sourceColumnName"),
            target_table_id=_optional_id(_get(data, "target_table_id", "targetTableId")),
            target_table_name=_get(data, "target_table_name", "targetTableName"),
            target_column_id=_optional_id(_get(data, "target_column_id", "targetColumnId")),
            target_column_name=_get(data, "target_column_name", "targetColumnName"),
        )


# Converters


def observation_from_extraction(
    schema: ExtractedSchema,
    relationships: Optional[Sequence[ExtractedRelationship]] = None,
) -> SchemaObservation:
    """Convert a scraped schema (and its foreign keys) into an observation"""
    tables = []
    for table in schema.tables:
        if not table.name:
            continue
        tables.append(ObservedTable(
            id=table.id,
            name=table.name,
            description=table.description or None,
            columns=[
                ObservedColumn(
                    id=column.id,
                    name=column.name,
                    column_type=ColumnType.coerce(column.type),
                    description=column.description or None,
                    is_primary_key=column.is_primary_key,
                    is_foreign_key=column.is_foreign_key,
                    is_nullable=column.is_nullable,
                    examples=list(column.examples),
                )
                for column in table.columns
                if column.name
            ],
        ))

    observed_relationships = [
        ObservedRelationship(
            source_table_id=rel.source_table_id,
            source_table_name=rel.source_table_name,
            source_column_id=rel.source_column_id,
            source_column_name=rel.source_column_name,
            target_table_id=rel.target_table_id,
            target_table_name=rel.target_table_name,
            target_column_id=rel.target_column_id,
            target_column_name=rel.target_column_name,
        )
        for rel in relationships or []
    ]

    return SchemaObservation(
        kind=ObservationKind.EXTRACTION,
        tables=tables,
        relationships=observed_relationships,
        source=schema.database_name or schema.database_id,
    )


def observation_from_references(references: Mapping[str, Sequence[str]]) -> SchemaObservation:
    """Tables and columns named in SQL; no type, key or nullability signal"""
    return SchemaObservation(
        kind=ObservationKind.QUERY_REFERENCE,
        tables=[
            ObservedTable(
                name=table_name,
                columns=[ObservedColumn(name=column_name) for column_name in columns],
            )
            for table_name, columns in references.items()
        ],
    )


def observation_from_inferences(
    table_columns: Mapping[str, Mapping[str, TypeInference]],
) -> SchemaObservation:
    """Types, nullability and examples inferred from sampled result rows"""
    tables = []
    for table_name, columns in table_columns.items():
        tables.append(ObservedTable(
            name=table_name,
            columns=[
                ObservedColumn(
                    name=column_name,
                    column_type=inference.column_type,
                    is_nullable=inference.is_nullable,
                    examples=list(inference.examples),
                )
                for column_name, inference in columns.items()
            ],
        ))
    return SchemaObservation(kind=ObservationKind.RESULT_SAMPLE, tables=tables)


def observation_from_table(table: Table) -> SchemaObservation:
    """A caller-supplied table, merged like any other signal"""
    return SchemaObservation(
        kind=ObservationKind.UPDATE,
        tables=[ObservedTable(
            id=table.id,
            name=table.name,
            description=table.description,
            columns=[
                ObservedColumn(
                    id=column.id,
                    name=column.name,
                    column_type=column.column_type,
                    description=column.description,
                    is_primary_key=column.is_primary_key,
                    is_foreign_key=column.is_foreign_key,
                    is_nullable=column.is_nullable,
                    is_unique=column.is_unique,
                    is_indexed=column.is_indexed,
                    examples=list(column.examples),
                )
                for column in table.columns
            ],
        )],
    )


def observation_from_relationship(relationship: Relationship) -> SchemaObservation:
    return SchemaObservation(
        kind=ObservationKind.UPDATE,
        relationships=[ObservedRelationship(
            id=relationship.id,
            source_table_id=relationship.source_table_id,
            source_column_id=relationship.source_column_id,
            target_table_id=relationship.target_table_id,
            target_column_id=relationship.target_column_id,
            cardinality=relationship.cardinality,
        )],
    )


def observation_from_dict(data: Dict[str, Any]) -> SchemaObservation:
    """Build an extraction observation from a loosely shaped mapping"""
    schema = ExtractedSchema.from_dict(data)
    relationships = [
        ExtractedRelationship.from_dict(r) for r in data.get("relationships") or []
    ]
    return observation_from_extraction(schema, relationships)
