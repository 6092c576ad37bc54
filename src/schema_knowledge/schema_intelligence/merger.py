"""
Schema Merger

Reconciles an observation into an existing snapshot. Merging is additive
and non-destructive:

- unseen tables and columns are appended (matched by id, then by
  case-insensitive name)
- descriptions are filled in only when currently empty
- a column type moves from unknown to concrete, never back, and the first
  concrete type wins over later conflicting ones
- key, nullable, unique and indexed flags only ever go from False to True
- examples accumulate de-duplicated, in order, up to a cap
- relationships are appended by id and never modified; an endpoint given
  by an incoming id resolves to whatever that id matched in the same merge
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .models import (
    MAX_COLUMN_EXAMPLES,
    Column,
    ColumnType,
    Relationship,
    SchemaSnapshot,
    Table,
    utcnow,
)
from .observations import (
    ObservedColumn,
    ObservedRelationship,
    ObservedTable,
    SchemaObservation,
    relationship_id,
    synthetic_id,
)
from ..utils import NotFoundError, TableNotFoundError, get_logger

logger = get_logger(__name__)

_MONOTONIC_FLAGS = ("is_primary_key", "is_foreign_key", "is_nullable", "is_unique", "is_indexed")


@dataclass
class MergeResult:
    """Outcome of one merge"""
    snapshot: SchemaSnapshot
    changed: bool = False
    tables_added: List[str] = field(default_factory=list)
    columns_added: List[str] = field(default_factory=list)
    relationships_added: List[str] = field(default_factory=list)
    unresolved_relationships: int = 0
    type_conflicts: List[str] = field(default_factory=list)
    # incoming id -> entity it matched, for resolving id-only relationship endpoints
    matched_tables: Dict[str, Table] = field(default_factory=dict, repr=False)
    matched_columns: Dict[Tuple[str, str], Column] = field(default_factory=dict, repr=False)


class SchemaMerger:
    """Merges observations into snapshots without mutating the input"""

    def __init__(self, max_examples: int = MAX_COLUMN_EXAMPLES):
        self.max_examples = max_examples

    def merge(
        self,
        existing: SchemaSnapshot,
        observation: SchemaObservation,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        result = MergeResult(snapshot=existing.copy())
        snapshot = result.snapshot

        for observed in observation.tables:
            if not observed.name and not observed.id:
                continue
            self._merge_table(snapshot, observed, result)

        for observed_rel in observation.relationships:
            self._merge_relationship(snapshot, observed_rel, result)

        if result.changed:
            snapshot.touch(now or utcnow())

        if result.type_conflicts:
            logger.debug(
                f"Kept first concrete type for {len(result.type_conflicts)} column(s): "
                f"{', '.join(result.type_conflicts)}"
            )
        return result

    def remove_table(
        self,
        existing: SchemaSnapshot,
        table_id: str,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        """Drop a table by id together with every relationship that pointed at it"""
        if existing.get_table(table_id) is None:
            raise TableNotFoundError(table_id, existing.database_id)

        result = MergeResult(snapshot=existing.copy(), changed=True)
        snapshot = result.snapshot
        snapshot.tables = [t for t in snapshot.tables if t.id != table_id]
        pruned = snapshot.prune_dangling_relationships()
        snapshot.touch(now or utcnow())

        logger.debug(f"Removed table {table_id} ({pruned} relationships pruned)")
        return result

    def add_relationship(
        self,
        existing: SchemaSnapshot,
        observation: SchemaObservation,
    ) -> MergeResult:
        """Merge relationships whose endpoints must all resolve"""
        result = self.merge(existing, observation)
        if result.unresolved_relationships:
            raise NotFoundError(
                f"Relationship references a table or column that does not exist "
                f"in database {existing.database_id}",
                entity_type="relationship",
                entity_id=next((r.id for r in observation.relationships if r.id), None),
            )
        return result

    def _merge_table(
        self,
        snapshot: SchemaSnapshot,
        observed: ObservedTable,
        result: MergeResult,
    ) -> None:
        table = snapshot.match_table(observed.id, observed.name)

        if table is None:
            table = Table(
                id=self._fresh_id(observed.id, "table", {t.id for t in snapshot.tables}),
                name=observed.name,
                description=observed.description,
            )
            snapshot.tables.append(table)
            result.tables_added.append(table.id)
            result.changed = True
        elif observed.description and not table.description:
            table.description = observed.description
            result.changed = True

        if observed.id:
            result.matched_tables[observed.id] = table

        for observed_column in observed.columns:
            if not observed_column.name and not observed_column.id:
                continue
            self._merge_column(table, observed_column, result)

    def _merge_column(
        self,
        table: Table,
        observed: ObservedColumn,
        result: MergeResult,
    ) -> None:
        column = table.match_column(observed.id, observed.name)

        if column is None:
            column = Column(
                id=self._fresh_id(observed.id, "col", {c.id for c in table.columns}),
                name=observed.name,
                column_type=observed.column_type or ColumnType.UNKNOWN,
                description=observed.description,
                is_primary_key=observed.is_primary_key,
                is_foreign_key=observed.is_foreign_key,
                is_nullable=observed.is_nullable,
                is_unique=observed.is_unique,
                is_indexed=observed.is_indexed,
                examples=self._merge_examples([], observed.examples),
            )
            table.columns.append(column)
            result.columns_added.append(column.id)
            result.changed = True
            if observed.id:
                result.matched_columns[(table.id, observed.id)] = column
            return

        if observed.id:
            result.matched_columns[(table.id, observed.id)] = column

        if observed.description and not column.description:
            column.description = observed.description
            result.changed = True

        incoming_type = observed.column_type
        if incoming_type is not None and incoming_type.is_concrete:
            if not column.column_type.is_concrete:
                column.column_type = incoming_type
                result.changed = True
            elif column.column_type != incoming_type:
                result.type_conflicts.append(
                    f"{table.name}.{column.name} "
                    f"({column.column_type.value} kept, {incoming_type.value} ignored)"
                )

        for flag in _MONOTONIC_FLAGS:
            if getattr(observed, flag) and not getattr(column, flag):
                setattr(column, flag, True)
                result.changed = True

        if observed.examples:
            merged = self._merge_examples(column.examples, observed.examples)
            if merged != column.examples:
                column.examples = merged
                result.changed = True

    def _merge_relationship(
        self,
        snapshot: SchemaSnapshot,
        observed: ObservedRelationship,
        result: MergeResult,
    ) -> None:
        source_table = self._resolve_table(
            snapshot, result, observed.source_table_id, observed.source_table_name
        )
        target_table = self._resolve_table(
            snapshot, result, observed.target_table_id, observed.target_table_name
        )
        source_column = self._resolve_column(
            source_table, result, observed.source_column_id, observed.source_column_name
        )
        target_column = self._resolve_column(
            target_table, result, observed.target_column_id, observed.target_column_name
        )

        if not (source_table and target_table and source_column and target_column):
            result.unresolved_relationships += 1
            logger.debug(
                "Skipping relationship with unresolved endpoint: "
                f"{observed.source_table_name or observed.source_table_id}."
                f"{observed.source_column_name or observed.source_column_id} -> "
                f"{observed.target_table_name or observed.target_table_id}."
                f"{observed.target_column_name or observed.target_column_id}"
            )
            return

        rel_id = observed.id or relationship_id(
            source_table.id, source_column.id, target_table.id, target_column.id
        )
        endpoints = (source_table.id, source_column.id, target_table.id, target_column.id)
        for existing in snapshot.relationships:
            if existing.id == rel_id or (
                existing.source_table_id, existing.source_column_id,
                existing.target_table_id, existing.target_column_id,
            ) == endpoints:
                return

        snapshot.relationships.append(Relationship(
            id=rel_id,
            source_table_id=source_table.id,
            source_column_id=source_column.id,
            target_table_id=target_table.id,
            target_column_id=target_column.id,
            cardinality=observed.cardinality,
        ))
        result.relationships_added.append(rel_id)
        result.changed = True

    @staticmethod
    def _resolve_table(
        snapshot: SchemaSnapshot,
        result: MergeResult,
        table_id: Optional[str],
        name: Optional[str],
    ) -> Optional[Table]:
        # an incoming id may have matched a table stored under another id
        if table_id and table_id in result.matched_tables:
            return result.matched_tables[table_id]
        return snapshot.match_table(table_id, name)

    @staticmethod
    def _resolve_column(
        table: Optional[Table],
        result: MergeResult,
        column_id: Optional[str],
        name: Optional[str],
    ) -> Optional[Column]:
        if table is None:
            return None
        if column_id and (table.id, column_id) in result.matched_columns:
            return result.matched_columns[(table.id, column_id)]
        return table.match_column(column_id, name)

    def _merge_examples(self, current: List[str], incoming: List[str]) -> List[str]:
        merged = list(current)
        for value in incoming:
            if len(merged) >= self.max_examples:
                break
            text = str(value)
            if text not in merged:
                merged.append(text)
        return merged[: self.max_examples]

    @staticmethod
    def _fresh_id(candidate: Optional[str], prefix: str, taken: set) -> str:
        if candidate and candidate not in taken:
            return candidate
        new_id = synthetic_id(prefix)
        while new_id in taken:
            new_id = synthetic_id(prefix)
        return new_id


def merge_snapshot(existing: SchemaSnapshot, observation: SchemaObservation) -> SchemaSnapshot:
    """Merge an observation into a snapshot, returning the merged copy"""
    return SchemaMerger().merge(existing, observation).snapshot
