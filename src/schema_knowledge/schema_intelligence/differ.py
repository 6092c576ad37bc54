"""
Schema Differencer

Structural comparison of two snapshots for change notification. Entities
are matched by id; an entity is "modified" when its serialized form
differs. The diff is informational only and never drives merging.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import SchemaSnapshot, Table


@dataclass
class SchemaDiff:
    """Changes between an old and a new snapshot"""
    new_tables: List[str] = field(default_factory=list)
    modified_tables: List[str] = field(default_factory=list)
    removed_tables: List[str] = field(default_factory=list)
    # table id -> column names
    new_columns: Dict[str, List[str]] = field(default_factory=dict)
    modified_columns: Dict[str, List[str]] = field(default_factory=dict)
    removed_columns: Dict[str, List[str]] = field(default_factory=dict)
    new_relationships: List[str] = field(default_factory=list)
    modified_relationships: List[str] = field(default_factory=list)
    removed_relationships: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return any((
            self.new_tables, self.modified_tables, self.removed_tables,
            self.new_columns, self.modified_columns, self.removed_columns,
            self.new_relationships, self.modified_relationships, self.removed_relationships,
        ))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_tables": list(self.new_tables),
            "modified_tables": list(self.modified_tables),
            "removed_tables": list(self.removed_tables),
            "new_columns": {k: list(v) for k, v in self.new_columns.items()},
            "modified_columns": {k: list(v) for k, v in self.modified_columns.items()},
            "removed_columns": {k: list(v) for k, v in self.removed_columns.items()},
            "new_relationships": list(self.new_relationships),
            "modified_relationships": list(self.modified_relationships),
            "removed_relationships": list(self.removed_relationships),
        }

    def summary(self) -> str:
        new_cols = sum(len(v) for v in self.new_columns.values())
        return (
            f"+{len(self.new_tables)} tables, ~{len(self.modified_tables)} tables, "
            f"-{len(self.removed_tables)} tables, +{new_cols} columns, "
            f"+{len(self.new_relationships)} relationships"
        )


def _diff_columns(old_table: Optional[Table], new_table: Table, diff: SchemaDiff) -> None:
    old_columns = {c.id: c for c in old_table.columns} if old_table else {}
    new_ids = {c.id for c in new_table.columns}

    added = [c.name for c in new_table.columns if c.id not in old_columns]
    modified = [
        c.name for c in new_table.columns
        if c.id in old_columns and c.to_dict() != old_columns[c.id].to_dict()
    ]
    removed = [c.name for c in old_columns.values() if c.id not in new_ids]

    if added:
        diff.new_columns[new_table.id] = added
    if modified:
        diff.modified_columns[new_table.id] = modified
    if removed:
        diff.removed_columns[new_table.id] = removed


def diff_snapshots(old: Optional[SchemaSnapshot], new: SchemaSnapshot) -> SchemaDiff:
    """
    Compare two snapshots

    Tables and relationships are reported by id; columns by name, keyed by
    the id of their table. Columns of a newly added table are reported as
    new columns under that table. With no old snapshot, everything in the
    new one is new.
    """
    diff = SchemaDiff()
    old_tables = {t.id: t for t in old.tables} if old else {}
    new_table_ids = {t.id for t in new.tables}

    for table in new.tables:
        old_table = old_tables.get(table.id)
        if old_table is None:
            diff.new_tables.append(table.id)
            _diff_columns(None, table, diff)
        elif table.to_dict() != old_table.to_dict():
            diff.modified_tables.append(table.id)
            _diff_columns(old_table, table, diff)

    for table_id, table in old_tables.items():
        if table_id not in new_table_ids:
            diff.removed_tables.append(table_id)
            if table.columns:
                diff.removed_columns[table_id] = [c.name for c in table.columns]

    old_rels = {r.id: r for r in old.relationships} if old else {}
    new_rel_ids = {r.id for r in new.relationships}

    for rel in new.relationships:
        old_rel = old_rels.get(rel.id)
        if old_rel is None:
            diff.new_relationships.append(rel.id)
        elif rel.to_dict() != old_rel.to_dict():
            diff.modified_relationships.append(rel.id)

    diff.removed_relationships = [r for r in old_rels if r not in new_rel_ids]
    return diff
