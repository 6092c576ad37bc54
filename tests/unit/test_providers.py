"""
Unit Tests for Schema Extractors
"""
import pytest
import json
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schema_knowledge.config import ExtractionConfig
from schema_knowledge.schema_intelligence.observations import (
    ExtractedSchema,
    observation_from_extraction,
)
from schema_knowledge.schema_intelligence.providers import (
    ExtractionOptions,
    FileSchemaExtractor,
    StaticSchemaExtractor,
    apply_options,
)
from schema_knowledge.utils import ExtractionError

RECORD = {
    "databaseId": "db-1",
    "tables": [
        {"id": "1", "name": "users", "columns": [
            {"id": "10", "name": "id", "type": "integer", "description": "Surrogate key",
             "sampleValues": [1, 2, None]},
        ]},
        {"id": "2", "name": "orders", "columns": [
            {"id": "20", "name": "user_id", "type": "integer"},
        ]},
        {"id": "3", "name": "order_items", "columns": [
            {"id": "30", "name": "order_id", "type": "integer"},
        ]},
        {"id": "4", "name": "audit_log", "columns": []},
    ],
}

RELATIONSHIPS = [
    {"sourceTableId": "2", "sourceColumnId": "20", "targetTableId": "1", "targetColumnId": "10"},
    {"sourceTableName": "order_items", "sourceColumnName": "order_id",
     "targetTableName": "orders", "targetColumnName": "id"},
]


def table_names(schema):
    return sorted(t.name for t in schema.tables)


class TestExtractionOptions:
    """Tests for filtering an extraction record"""

    def test_from_config(self):
        config = ExtractionConfig(max_depth=3, include_sample_data=True, tables_to_include=["users"])
        options = ExtractionOptions.from_config(config)

        assert options.max_depth == 3
        assert options.include_sample_data is True
        assert options.tables_to_include == ["users"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("depth,expected", [
        (1, ["users"]),
        (2, ["orders", "users"]),
        (3, ["order_items", "orders", "users"]),
        (10, ["order_items", "orders", "users"]),
    ])
    async def test_max_depth_follows_foreign_keys(self, depth, expected):
        extractor = StaticSchemaExtractor(RECORD, RELATIONSHIPS)

        schema = await extractor.extract_raw_schema(
            ExtractionOptions(tables_to_include=["users"], max_depth=depth)
        )

        assert table_names(schema) == expected

    def test_depth_without_relationships(self):
        schema = apply_options(
            ExtractedSchema.from_dict(RECORD),
            ExtractionOptions(tables_to_include=["orders"], max_depth=3),
        )

        assert table_names(schema) == ["orders"]

    def test_sample_data_dropped_by_default(self):
        schema = apply_options(ExtractedSchema.from_dict(RECORD), ExtractionOptions())

        column = schema.tables[0].columns[0]
        assert column.examples == []
        assert column.description == "Surrogate key"

    def test_sample_data_kept_on_request(self):
        schema = apply_options(
            ExtractedSchema.from_dict(RECORD),
            ExtractionOptions(include_sample_data=True, include_column_descriptions=False),
        )

        column = schema.tables[0].columns[0]
        assert column.examples == ["1", "2"]
        assert column.description is None

        observed = observation_from_extraction(schema).tables[0].columns[0]
        assert observed.examples == ["1", "2"]

    def test_original_record_untouched(self):
        schema = ExtractedSchema.from_dict(RECORD)
        apply_options(schema, ExtractionOptions(include_column_descriptions=False))

        assert schema.tables[0].columns[0].description == "Surrogate key"
        assert schema.tables[0].columns[0].examples == ["1", "2"]


class TestFileSchemaExtractor:
    """Tests for FileSchemaExtractor"""

    @pytest.mark.asyncio
    async def test_reads_json_record(self, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({**RECORD, "relationships": RELATIONSHIPS}))
        extractor = FileSchemaExtractor(str(path))

        schema = await extractor.extract_raw_schema(
            ExtractionOptions(tables_to_include=["orders"], max_depth=2)
        )
        relationships = await extractor.extract_relationships()

        assert await extractor.can_extract() is True
        assert table_names(schema) == ["order_items", "orders", "users"]
        assert len(relationships) == 2

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        extractor = FileSchemaExtractor(str(tmp_path / "absent.yaml"))

        assert await extractor.extract_raw_schema() is None
        assert await extractor.extract_relationships() == []

    @pytest.mark.asyncio
    async def test_unreadable_file(self, tmp_path):
        path = tmp_path / "schema.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ExtractionError):
            await FileSchemaExtractor(str(path)).extract_raw_schema()
