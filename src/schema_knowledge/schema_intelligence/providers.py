"""
Schema Extractors

Sources of raw extraction records for the builder:
1. StaticSchemaExtractor - a fixed record handed in by the caller
2. FileSchemaExtractor - a YAML/JSON document shaped like the extraction record

Extractors only observe; they never merge or persist. A failing extractor
raises ExtractionError and the builder falls back to its last snapshot.
"""
from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

import yaml

from .observations import ExtractedRelationship, ExtractedSchema
from ..config import ExtractionConfig
from ..utils import ErrorContext, ExtractionError, get_logger

logger = get_logger(__name__)


@dataclass
class ExtractionOptions:
    """What to scrape"""
    include_column_descriptions: bool = True
    extract_relationships: bool = True
    tables_to_include: Optional[List[str]] = None
    max_depth: int = 1
    include_sample_data: bool = False

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "ExtractionOptions":
        return cls(
            include_column_descriptions=config.include_column_descriptions,
            extract_relationships=config.extract_relationships,
            tables_to_include=config.tables_to_include,
            max_depth=config.max_depth,
            include_sample_data=config.include_sample_data,
        )


class BaseSchemaExtractor(ABC):
    """Abstract base class for the extraction collaborator"""

    @abstractmethod
    async def extract_raw_schema(
        self,
        options: Optional[ExtractionOptions] = None,
    ) -> Optional[ExtractedSchema]:
        """Observe the full schema; may return None or partial data"""
        pass

    @abstractmethod
    async def extract_relationships(self) -> List[ExtractedRelationship]:
        """Observe foreign-key links"""
        pass

    async def can_extract(self) -> bool:
        """Whether the source is currently observable"""
        return True


def _related_tables(
    schema: ExtractedSchema,
    wanted: Set[str],
    relationships: Sequence[ExtractedRelationship],
    max_depth: int,
) -> Set[str]:
    """Grow a set of table names by following foreign keys, max_depth - 1 hops"""
    names_by_id = {t.id: t.name.lower() for t in schema.tables if t.id}

    def endpoint(table_id: Optional[str], table_name: Optional[str]) -> Optional[str]:
        if table_name:
            return table_name.lower()
        return names_by_id.get(table_id)

    reached = set(wanted)
    frontier = set(wanted)
    for _ in range(max_depth - 1):
        found = set()
        for rel in relationships:
            source = endpoint(rel.source_table_id, rel.source_table_name)
            target = endpoint(rel.target_table_id, rel.target_table_name)
            if source in frontier and target:
                found.add(target)
            if target in frontier and source:
                found.add(source)
        frontier = found - reached
        if not frontier:
            break
        reached |= frontier
    return reached


def apply_options(
    schema: ExtractedSchema,
    options: ExtractionOptions,
    relationships: Optional[Sequence[ExtractedRelationship]] = None,
) -> ExtractedSchema:
    """
    Filter an extraction record down to what the options ask for

    tables_to_include is widened by max_depth: depth 1 keeps just the listed
    tables, each further level adds the tables one foreign key away.
    """
    tables = schema.tables
    if options.tables_to_include:
        wanted = {name.lower() for name in options.tables_to_include}
        if relationships and options.max_depth > 1:
            wanted = _related_tables(schema, wanted, relationships, options.max_depth)
        tables = [t for t in tables if t.name.lower() in wanted]

    if not options.include_column_descriptions or not options.include_sample_data:
        tables = [
            replace(t, columns=[
                replace(
                    c,
                    description=c.description if options.include_column_descriptions else None,
                    examples=list(c.examples) if options.include_sample_data else [],
                )
                for c in t.columns
            ])
            for t in tables
        ]

    return ExtractedSchema(
        database_id=schema.database_id,
        database_name=schema.database_name,
        tables=tables,
    )


class StaticSchemaExtractor(BaseSchemaExtractor):
    """
    Serves a fixed extraction record

    Usage:
        extractor = StaticSchemaExtractor({
            "databaseId": "1",
            "tables": [{"name": "users", "columns": [{"name": "id", "type": "integer"}]}],
        })
    """

    def __init__(
        self,
        schema: Optional[Union[ExtractedSchema, Mapping[str, Any]]] = None,
        relationships: Optional[Sequence[Union[ExtractedRelationship, Mapping[str, Any]]]] = None,
    ):
        self.set_schema(schema)
        self.relationships = [
            r if isinstance(r, ExtractedRelationship) else ExtractedRelationship.from_dict(r)
            for r in relationships or []
        ]
        self.calls = 0

    def set_schema(
        self,
        schema: Optional[Union[ExtractedSchema, Mapping[str, Any]]],
    ) -> Optional[ExtractedSchema]:
        if schema is not None and not isinstance(schema, ExtractedSchema):
            schema = ExtractedSchema.from_dict(schema)
        self.schema = schema
        return schema

    async def can_extract(self) -> bool:
        return self.schema is not None

    async def extract_raw_schema(
        self,
        options: Optional[ExtractionOptions] = None,
    ) -> Optional[ExtractedSchema]:
        self.calls += 1
        if self.schema is None:
            return None
        return apply_options(self.schema, options or ExtractionOptions(), self.relationships)

    async def extract_relationships(self) -> List[ExtractedRelationship]:
        return list(self.relationships)


class FileSchemaExtractor(BaseSchemaExtractor):
    """
    Loads an extraction record from a YAML/JSON file

    Expected file format:
    ```yaml
    database_id: "1"
    database_name: Sample Database
    tables:
      - id: "10"
        name: users
        description: User accounts
        columns:
          - {id: "100", name: id, type: type/Integer, is_primary_key: true}
          - {id: "101", name: email, type: type/Text}
    relationships:
      - source_table_name: orders
        source_column_name: user_id
        target_table_name: users
        target_column_name: id
    ```
    """

    def __init__(self, file_path: str):
        self.file_path = file_path

    async def can_extract(self) -> bool:
        return os.path.exists(self.file_path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.file_path, 'r') as f:
                if self.file_path.endswith('.yaml') or self.file_path.endswith('.yml'):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ExtractionError(
                f"Error loading schema file {self.file_path}: {e}",
                context=ErrorContext(operation="extract_raw_schema"),
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise ExtractionError(f"Schema file {self.file_path} does not contain a mapping")
        return data

    async def extract_raw_schema(
        self,
        options: Optional[ExtractionOptions] = None,
    ) -> Optional[ExtractedSchema]:
        if not await self.can_extract():
            logger.warning(f"Schema file not found: {self.file_path}")
            return None
        data = await asyncio.to_thread(self._load)
        return apply_options(
            ExtractedSchema.from_dict(data),
            options or ExtractionOptions(),
            self._relationships(data),
        )

    async def extract_relationships(self) -> List[ExtractedRelationship]:
        if not await self.can_extract():
            return []
        return self._relationships(await asyncio.to_thread(self._load))

    @staticmethod
    def _relationships(data: Mapping[str, Any]) -> List[ExtractedRelationship]:
        return [ExtractedRelationship.from_dict(r) for r in data.get("relationships") or []]
