"""
Unit Tests for the Schema Differencer
"""
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schema_knowledge.schema_intelligence.models import (
    Column,
    ColumnType,
    Relationship,
    SchemaSnapshot,
    Table,
)
from schema_knowledge.schema_intelligence.differ import SchemaDiff, diff_snapshots
from schema_knowledge.schema_intelligence.merger import merge_snapshot
from schema_knowledge.schema_intelligence.observations import observation_from_references


@pytest.fixture
def base():
    return SchemaSnapshot(
        database_id="db-1",
        tables=[
            Table(id="t-users", name="users", columns=[
                Column(id="c-users-id", name="id", column_type=ColumnType.INTEGER, is_primary_key=True),
                Column(id="c-users-name", name="name"),
            ]),
            Table(id="t-orders", name="orders", columns=[
                Column(id="c-orders-id", name="id", column_type=ColumnType.INTEGER),
                Column(id="c-orders-user", name="user_id", column_type=ColumnType.INTEGER),
            ]),
        ],
        relationships=[Relationship(
            id="rel-1",
            source_table_id="t-orders",
            source_column_id="c-orders-user",
            target_table_id="t-users",
            target_column_id="c-users-id",
        )],
    )


class TestDiffSnapshots:
    """Tests for diff_snapshots"""

    def test_identical(self, base):
        diff = diff_snapshots(base, base.copy())

        assert not diff.has_changes
        assert diff == SchemaDiff()

    def test_timestamp_alone_is_not_a_change(self, base):
        newer = base.copy()
        newer.touch()

        assert not diff_snapshots(base, newer).has_changes

    def test_no_old_snapshot(self, base):
        """Test everything is new without an old snapshot"""
        diff = diff_snapshots(None, base)

        assert diff.new_tables == ["t-users", "t-orders"]
        assert diff.new_columns == {"t-users": ["id", "name"], "t-orders": ["id", "user_id"]}
        assert diff.new_relationships == ["rel-1"]

    def test_merge_reports_exactly_new_entities(self, base):
        """Test diff(S, merge(S, O)) reports what O introduced as new and nothing else"""
        merged = merge_snapshot(base, observation_from_references({
            "users": ["email"],
            "payments": ["amount"],
        }))
        diff = diff_snapshots(base, merged)
        payments = merged.find_table("payments")

        assert diff.new_tables == [payments.id]
        assert diff.new_columns == {"t-users": ["email"], payments.id: ["amount"]}
        assert diff.modified_tables == ["t-users"]
        assert diff.modified_columns == {}
        assert diff.new_relationships == []
        assert diff.removed_tables == []

    def test_modified_column(self, base):
        changed = base.copy()
        changed.get_table("t-users").find_column("name").column_type = ColumnType.STRING
        diff = diff_snapshots(base, changed)

        assert diff.modified_tables == ["t-users"]
        assert diff.modified_columns == {"t-users": ["name"]}
        assert diff.new_columns == {}

    def test_removed_entities(self, base):
        smaller = base.copy()
        smaller.tables = [t for t in smaller.tables if t.id != "t-orders"]
        smaller.get_table("t-users").columns.pop()
        smaller.prune_dangling_relationships()
        diff = diff_snapshots(base, smaller)

        assert diff.removed_tables == ["t-orders"]
        assert diff.removed_columns == {"t-orders": ["id", "user_id"], "t-users": ["name"]}
        assert diff.removed_relationships == ["rel-1"]

    def test_modified_relationship(self, base):
        changed = base.copy()
        changed.relationships[0].target_column_id = "c-users-name"

        assert diff_snapshots(base, changed).modified_relationships == ["rel-1"]

    def test_to_dict_and_summary(self, base):
        diff = diff_snapshots(None, base)
        data = diff.to_dict()

        assert data["new_tables"] == ["t-users", "t-orders"]
        assert diff.summary().startswith("+2 tables")
