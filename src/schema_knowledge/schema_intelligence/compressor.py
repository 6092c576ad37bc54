"""
Schema Compressor

Projects a snapshot onto a size-bounded schema for an LLM prompt while
keeping what matters most for the current query. Tables the caller marks
as referenced sort first; key columns sort first within a table. When the
rendered text is over the token budget, information is shed in this
order: relationships, tail tables, non-key columns, then remaining tables.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import Column, SchemaSnapshot, Table
from ..config import CompressionConfig
from ..utils import SchemaEngineMetrics, get_logger

logger = get_logger(__name__)


@dataclass
class CompressedColumn:
    name: str
    type: str
    is_primary_key: bool = False
    is_foreign_key: bool = False

    @property
    def is_key(self) -> bool:
        return self.is_primary_key or self.is_foreign_key

    @property
    def key_tags(self) -> str:
        return ",".join(tag for tag, on in (("PK", self.is_primary_key), ("FK", self.is_foreign_key)) if on)


@dataclass
class CompressedTable:
    name: str
    columns: List[CompressedColumn] = field(default_factory=list)


@dataclass
class CompressedRelationship:
    source: str
    source_column: str
    target: str
    target_column: str


@dataclass
class CompressedSchema:
    """Prompt-sized projection of a snapshot; never persisted"""
    tables: List[CompressedTable] = field(default_factory=list)
    relationships: List[CompressedRelationship] = field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": [
                {
                    "name": t.name,
                    "columns": [
                        {
                            "name": c.name,
                            "type": c.type,
                            "is_primary_key": c.is_primary_key,
                            "is_foreign_key": c.is_foreign_key,
                        }
                        for c in t.columns
                    ],
                }
                for t in self.tables
            ],
            "relationships": [
                {
                    "source": r.source,
                    "source_column": r.source_column,
                    "target": r.target,
                    "target_column": r.target_column,
                }
                for r in self.relationships
            ],
        }


@dataclass
class CompressionReport:
    """What the compressor had to do to fit the budget"""
    input_tables: int
    output_tables: int = 0
    estimated_tokens: int = 0
    budget: Optional[int] = None
    stages: List[str] = field(default_factory=list)
    hit_floor: bool = False


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token estimate: about four characters per token"""
    return math.ceil(len(text) / chars_per_token)


def render_compressed_schema(schema: CompressedSchema) -> str:
    """Flat text form used for token estimation"""
    parts: List[str] = []

    for table in schema.tables:
        parts.append(f"Table: {table.name}")
        for column in table.columns:
            tags = column.key_tags
            parts.append(f"  {column.name} ({column.type}){f' [{tags}]' if tags else ''}")

    if schema.relationships:
        parts.append("\nRelationships:")
        for rel in schema.relationships:
            parts.append(f"  {rel.source}.{rel.source_column} -> {rel.target}.{rel.target_column}")

    return "\n".join(parts)


def generate_schema_description(schema: CompressedSchema) -> str:
    """Compact schema description for an LLM prompt"""
    lines = [
        "DATABASE SCHEMA:",
        "----------------",
    ]

    for table in schema.tables:
        lines.append(f"Table: {table.name}")
        for column in table.columns:
            tags = column.key_tags
            lines.append(f"  - {column.name} ({column.type}){f' [{tags}]' if tags else ''}")
        lines.append("")

    if schema.relationships:
        lines.append("Relationships:")
        for rel in schema.relationships:
            lines.append(f"  - {rel.source}.{rel.source_column} -> {rel.target}.{rel.target_column}")

    return "\n".join(lines)


_SQL_TYPES = {
    "integer": "INTEGER",
    "number": "NUMERIC",
    "string": "VARCHAR(255)",
    "text": "TEXT",
    "boolean": "BOOLEAN",
    "date": "DATE",
    "timestamp": "TIMESTAMP",
    "json": "JSON",
}


def map_type_to_sql(column_type: str) -> str:
    return _SQL_TYPES.get(column_type.lower(), "VARCHAR(255)")


def schema_to_sql_statements(schema: CompressedSchema) -> str:
    """Render as CREATE TABLE statements plus foreign-key ALTER TABLEs"""
    statements = []

    for table in schema.tables:
        column_defs = []
        for column in table.columns:
            column_def = f"  {column.name} {map_type_to_sql(column.type)}"
            if column.is_primary_key:
                column_def += " PRIMARY KEY"
            column_defs.append(column_def)
        statements.append(f"CREATE TABLE {table.name} (\n" + ",\n".join(column_defs) + "\n);")

    for rel in schema.relationships:
        statements.append(
            f"ALTER TABLE {rel.source} ADD CONSTRAINT fk_{rel.source}_{rel.target}\n"
            f"  FOREIGN KEY ({rel.source_column}) REFERENCES {rel.target}({rel.target_column});"
        )

    return "\n\n".join(statements)


def _compress_column(column: Column) -> CompressedColumn:
    return CompressedColumn(
        name=column.name,
        type=column.column_type.value,
        is_primary_key=column.is_primary_key,
        is_foreign_key=column.is_foreign_key,
    )


class SchemaCompressor:
    """
    Builds a CompressedSchema within the configured limits

    Usage:
        compressor = SchemaCompressor(CompressionConfig(max_tokens=1500))
        compressed = compressor.compress(snapshot, referenced_tables=["orders"])
        prompt_block = generate_schema_description(compressed)
    """

    def __init__(self, options: Optional[CompressionConfig] = None):
        self.options = options or CompressionConfig()

    def compress(
        self,
        snapshot: SchemaSnapshot,
        referenced_tables: Optional[Sequence[str]] = None,
        **overrides: Any,
    ) -> CompressedSchema:
        compressed, _ = self.compress_with_report(snapshot, referenced_tables, **overrides)
        return compressed

    def compress_with_report(
        self,
        snapshot: SchemaSnapshot,
        referenced_tables: Optional[Sequence[str]] = None,
        **overrides: Any,
    ) -> Tuple[CompressedSchema, CompressionReport]:
        options = self.options.model_copy(update=overrides) if overrides else self.options
        report = CompressionReport(input_tables=len(snapshot.tables), budget=options.max_tokens)

        if not snapshot.tables:
            return CompressedSchema(), report

        tables = self._order_tables(snapshot.tables, referenced_tables or [], options)
        tables = tables[: options.max_tables]

        compressed = CompressedSchema(
            tables=[
                CompressedTable(name=t.name, columns=self._compress_columns(t, options))
                for t in tables
            ],
        )
        if options.include_relationships:
            compressed.relationships = self._project_relationships(snapshot, tables)

        if options.max_tokens:
            compressed = self._trim_to_budget(compressed, options, report)

        report.output_tables = len(compressed.tables)
        report.estimated_tokens = estimate_tokens(
            render_compressed_schema(compressed), options.chars_per_token
        )
        SchemaEngineMetrics.record_compression(
            report.input_tables, report.output_tables, report.estimated_tokens
        )
        logger.debug(
            f"Compressed {report.input_tables} tables to {report.output_tables} "
            f"(~{report.estimated_tokens} tokens, stages: {report.stages or 'none'})"
        )
        return compressed, report

    @staticmethod
    def _order_tables(
        tables: Sequence[Table],
        referenced_tables: Sequence[str],
        options: CompressionConfig,
    ) -> List[Table]:
        if not (options.prioritize_referenced_tables and referenced_tables):
            return list(tables)
        referenced = {name.lower() for name in referenced_tables}
        # sorted() is stable: relative order is kept within each group
        return sorted(tables, key=lambda t: t.name.lower() not in referenced)

    @staticmethod
    def _compress_columns(table: Table, options: CompressionConfig) -> List[CompressedColumn]:
        columns = sorted(
            table.columns,
            key=lambda c: (not c.is_primary_key, not c.is_foreign_key),
        )
        return [_compress_column(c) for c in columns[: options.max_columns_per_table]]

    @staticmethod
    def _project_relationships(
        snapshot: SchemaSnapshot,
        tables: Sequence[Table],
    ) -> List[CompressedRelationship]:
        kept_ids = {t.id for t in tables}
        projected = []
        for rel in snapshot.relationships:
            if rel.source_table_id not in kept_ids or rel.target_table_id not in kept_ids:
                continue
            source = snapshot.get_table(rel.source_table_id)
            target = snapshot.get_table(rel.target_table_id)
            source_column = source.get_column(rel.source_column_id) if source else None
            target_column = target.get_column(rel.target_column_id) if target else None
            if not (source and target and source_column and target_column):
                continue
            projected.append(CompressedRelationship(
                source=source.name,
                source_column=source_column.name,
                target=target.name,
                target_column=target_column.name,
            ))
        return projected

    def _trim_to_budget(
        self,
        schema: CompressedSchema,
        options: CompressionConfig,
        report: CompressionReport,
    ) -> CompressedSchema:
        budget = options.max_tokens

        def cost(s: CompressedSchema) -> int:
            return estimate_tokens(render_compressed_schema(s), options.chars_per_token)

        estimated = cost(schema)
        if estimated <= budget:
            return schema

        trimmed = CompressedSchema(
            tables=list(schema.tables),
            relationships=list(schema.relationships),
        )

        # (a) cap relationships
        if len(trimmed.relationships) > options.min_relationships:
            reduction_factor = budget / estimated
            keep = max(
                options.min_relationships,
                math.floor(len(trimmed.relationships) * reduction_factor / 2),
            )
            if keep < len(trimmed.relationships):
                trimmed.relationships = trimmed.relationships[:keep]
                report.stages.append("relationships")

        # (b) drop least-prioritized tables
        if self._drop_tail_tables(trimmed, budget, cost):
            report.stages.append("tables")

        # (c) trim non-key columns
        if cost(trimmed) > budget and self._reduce_columns(trimmed, budget, cost, options):
            report.stages.append("columns")

        # (d) last resort
        if self._drop_tail_tables(trimmed, budget, cost):
            report.stages.append("tables_last_resort")

        if cost(trimmed) > budget and trimmed.relationships:
            trimmed.relationships = []
            report.stages.append("relationships_floor")

        report.hit_floor = cost(trimmed) > budget
        if report.hit_floor:
            logger.warning(
                f"Schema could not fit {budget} tokens; returning minimal projection "
                f"of {len(trimmed.tables)} table(s)"
            )
        return trimmed

    @staticmethod
    def _drop_tail_tables(schema: CompressedSchema, budget: int, cost) -> bool:
        dropped = False
        while cost(schema) > budget and len(schema.tables) > 1:
            schema.tables.pop()
            names = {t.name.lower() for t in schema.tables}
            schema.relationships = [
                r for r in schema.relationships
                if r.source.lower() in names and r.target.lower() in names
            ]
            dropped = True
        return dropped

    @staticmethod
    def _reduce_columns(
        schema: CompressedSchema,
        budget: int,
        cost,
        options: CompressionConfig,
    ) -> bool:
        reduced = False
        while cost(schema) > budget:
            shrunk = False
            for i, table in enumerate(schema.tables):
                key_count = sum(1 for c in table.columns if c.is_key)
                new_count = max(
                    key_count,
                    math.floor(len(table.columns) * options.column_reduction_factor),
                )
                if new_count < len(table.columns):
                    schema.tables[i] = CompressedTable(
                        name=table.name,
                        columns=table.columns[:new_count],
                    )
                    shrunk = True
            if not shrunk:
                break
            reduced = True
        return reduced


def compress_schema(
    snapshot: SchemaSnapshot,
    referenced_tables: Optional[Sequence[str]] = None,
    options: Optional[CompressionConfig] = None,
    **overrides: Any,
) -> CompressedSchema:
    """Compress a snapshot for prompt construction"""
    return SchemaCompressor(options).compress(snapshot, referenced_tables, **overrides)
