"""
Integration Tests for the Progressive Schema Builder
Tests learning, extraction and notification against in-memory collaborators
"""
import pytest
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schema_knowledge.config import EngineConfig
from schema_knowledge.schema_intelligence import (
    BuilderState,
    Column,
    ColumnType,
    InMemorySnapshotStore,
    Relationship,
    SchemaBuilder,
    SchemaSnapshot,
    SchemaTaskQueue,
    StaticSchemaExtractor,
    Table,
)
from schema_knowledge.schema_intelligence.providers import BaseSchemaExtractor
from schema_knowledge.utils import (
    BuilderStateError,
    ExtractionError,
    NotFoundError,
    PersistenceError,
    TableNotFoundError,
)

JOIN_SQL = (
    "SELECT u.id, u.name FROM users u JOIN orders o ON u.id = o.user_id "
    "WHERE o.status = 'paid'"
)

EXTRACTED = {
    "databaseId": "db-1",
    "tables": [
        {"name": "users", "columns": [
            {"name": "id", "type": "integer", "isPrimaryKey": True},
            {"name": "email", "type": "string"},
        ]},
        {"name": "orders", "columns": [
            {"name": "id", "type": "integer", "isPrimaryKey": True},
            {"name": "user_id", "type": "integer", "isForeignKey": True},
        ]},
    ],
}

EXTRACTED_RELATIONSHIPS = [{
    "sourceTableName": "orders",
    "sourceColumnName": "user_id",
    "targetTableName": "users",
    "targetColumnName": "id",
}]


class FlakyStore(InMemorySnapshotStore):
    """In-memory store that can fail the next save and tracks overlapping saves"""

    def __init__(self):
        super().__init__()
        self.fail_next_save = False
        self.saves = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def save_snapshot(self, snapshot):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.005)
            if self.fail_next_save:
                self.fail_next_save = False
                raise OSError("disk full")
            self.saves += 1
            return await super().save_snapshot(snapshot)
        finally:
            self.in_flight -= 1


class FailingExtractor(BaseSchemaExtractor):
    """Extractor whose source is never observable"""

    async def extract_raw_schema(self, options=None):
        raise ExtractionError("Database browser page is not open")

    async def extract_relationships(self):
        return []


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def config():
    return EngineConfig()


class TestSchemaTaskQueue:
    """Tests for the single-consumer task queue"""

    @pytest.mark.asyncio
    async def test_jobs_run_in_submission_order(self):
        queue = SchemaTaskQueue("test")
        order = []

        async def job(n):
            # the first job is the slowest; it must still finish first
            await asyncio.sleep(0.01 if n == 0 else 0)
            order.append(n)
            return n

        futures = [queue.submit(lambda n=n: job(n)) for n in range(3)]

        assert await asyncio.gather(*futures) == [0, 1, 2]
        assert order == [0, 1, 2]
        await queue.close()

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_queue(self):
        queue = SchemaTaskQueue("test")

        async def boom():
            raise ValueError("bad job")

        async def ok():
            return "ok"

        failed = queue.submit(boom)
        succeeded = queue.submit(ok)

        with pytest.raises(ValueError):
            await failed
        assert await succeeded == "ok"
        await queue.close()

    @pytest.mark.asyncio
    async def test_closed_queue_rejects_jobs(self):
        queue = SchemaTaskQueue("test")

        async def ok():
            return 1

        assert await queue.submit(ok) == 1
        await queue.close()

        assert queue.closed
        with pytest.raises(BuilderStateError):
            queue.submit(ok)


class TestBuilderLifecycle:
    """Tests for initialize/close"""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)

        assert builder.state == BuilderState.UNINITIALIZED
        assert builder.current_schema is None
        with pytest.raises(BuilderStateError):
            await builder.learn_from_query("SELECT * FROM users")

    @pytest.mark.asyncio
    async def test_initialize_empty(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        snapshot = await builder.initialize()

        assert builder.state == BuilderState.READY
        assert snapshot.database_id == "db-1"
        assert snapshot.tables == []
        assert not builder.has_schema()
        assert builder.should_refresh()
        await builder.close()

    @pytest.mark.asyncio
    async def test_initialize_loads_stored_snapshot(self, store, config):
        await store.save_snapshot(SchemaSnapshot(
            database_id="db-1",
            tables=[Table(id="t-users", name="users")],
        ))
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        assert builder.has_schema()
        assert builder.current_schema.find_table("users") is not None
        await builder.close()

    @pytest.mark.asyncio
    async def test_initialize_storage_failure(self, config):
        store = InMemorySnapshotStore()
        store.get_snapshot = AsyncMock(side_effect=OSError("unreachable"))
        builder = SchemaBuilder("db-1", store, config=config)

        with pytest.raises(PersistenceError):
            await builder.initialize()
        assert builder.state == BuilderState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_closed_builder_rejects_work(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        await builder.close()

        assert builder.state == BuilderState.CLOSED
        with pytest.raises(BuilderStateError):
            await builder.extract_schema()
        with pytest.raises(BuilderStateError):
            await builder.initialize()

    @pytest.mark.asyncio
    async def test_current_schema_is_a_copy(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        await builder.learn_from_query("SELECT * FROM users")

        builder.current_schema.tables.clear()

        assert builder.current_schema.find_table("users") is not None
        await builder.close()


class TestLearnFromQuery:
    """Tests for learning from executed queries"""

    @pytest.mark.asyncio
    async def test_learns_tables_and_columns(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        changed = await builder.learn_from_query(JOIN_SQL)
        schema = builder.current_schema

        assert changed is True
        assert [c.name for c in schema.find_table("users").columns] == ["id", "name"]
        assert [c.name for c in schema.find_table("orders").columns] == ["user_id", "status"]
        assert all(
            c.column_type == ColumnType.UNKNOWN and not c.is_nullable
            for t in schema.tables for c in t.columns
        )
        assert (await store.get_snapshot("db-1")).content_dict() == schema.content_dict()
        await builder.close()

    @pytest.mark.asyncio
    async def test_repeated_query_changes_nothing(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        assert await builder.learn_from_query(JOIN_SQL) is True
        assert await builder.learn_from_query(JOIN_SQL) is False
        assert store.saves == 1
        await builder.close()

    @pytest.mark.asyncio
    async def test_infers_types_from_results(self, store, config):
        """Test `alias.column` headers resolve to their tables"""
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        await builder.learn_from_query(
            JOIN_SQL,
            result_columns=["u.id", "u.name", "o.status", "total"],
            result_data=[
                [1, "Ann", "paid", 9.5],
                [2, "Bob", None, 3.0],
            ],
        )
        schema = builder.current_schema
        users = schema.find_table("users")
        status = schema.find_table("orders").find_column("status")

        assert users.find_column("id").column_type == ColumnType.INTEGER
        assert users.find_column("name").column_type == ColumnType.STRING
        assert users.find_column("name").examples == ["Ann", "Bob"]
        assert status.column_type == ColumnType.STRING
        assert status.is_nullable
        assert schema.find_table("total") is None
        assert schema.find_table("u") is None
        await builder.close()

    @pytest.mark.asyncio
    async def test_type_never_downgraded(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        sql = "SELECT users.id FROM users"

        await builder.learn_from_query(sql, ["users.id"], [[1], [2]])
        await builder.learn_from_query(sql, ["users.id"], [["a"], ["b"]])

        column = builder.current_schema.find_table("users").find_column("id")
        assert column.column_type == ColumnType.INTEGER
        await builder.close()

    @pytest.mark.asyncio
    async def test_unparseable_sql(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        assert await builder.learn_from_query(")))(((") is False
        assert builder.current_schema.tables == []
        await builder.close()

    @pytest.mark.asyncio
    async def test_save_failure_reported_as_no_change(self, store, config):
        """Test a failed save leaves the snapshot untouched and the queue running"""
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        store.fail_next_save = True

        assert await builder.learn_from_query("SELECT * FROM users") is False
        assert builder.current_schema.tables == []
        assert await store.get_snapshot("db-1") is None

        assert await builder.learn_from_query("SELECT * FROM users") is True
        assert builder.current_schema.find_table("users") is not None
        await builder.close()

    @pytest.mark.asyncio
    async def test_concurrent_learning_is_serialized(self, store, config):
        """Test merges never overlap and no update is lost"""
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        results = await asyncio.gather(*[
            builder.learn_from_query(f"SELECT t{i}.c{i} FROM t{i}")
            for i in range(8)
        ])

        assert results == [True] * 8
        assert store.max_in_flight == 1
        assert [t.name for t in builder.current_schema.tables] == [f"t{i}" for i in range(8)]
        assert len((await store.get_snapshot("db-1")).tables) == 8
        await builder.close()

    @pytest.mark.asyncio
    async def test_last_updated_is_monotonic(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        stamps = []
        for table in ["a", "b", "c"]:
            await builder.learn_from_query(f"SELECT * FROM {table}")
            stamps.append(builder.current_schema.last_updated)

        assert stamps == sorted(stamps)
        await builder.close()


class TestExtractSchema:
    """Tests for full extraction"""

    @pytest.mark.asyncio
    async def test_extraction_merges_tables_and_relationships(self, store, config):
        extractor = StaticSchemaExtractor(EXTRACTED, EXTRACTED_RELATIONSHIPS)
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        snapshot = await builder.extract_schema()

        assert [t.name for t in snapshot.tables] == ["users", "orders"]
        assert len(snapshot.relationships) == 1
        assert snapshot.validate() == []
        assert not builder.is_extracting
        await builder.close()

    @pytest.mark.asyncio
    async def test_fresh_schema_is_cached(self, store, config):
        extractor = StaticSchemaExtractor(EXTRACTED)
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        await builder.extract_schema()
        await builder.extract_schema()
        assert extractor.calls == 1

        await builder.extract_schema(force_refresh=True)
        assert extractor.calls == 2
        await builder.close()

    @pytest.mark.asyncio
    async def test_stale_schema_is_refreshed(self, store, config):
        await store.save_snapshot(SchemaSnapshot(
            database_id="db-1",
            last_updated=datetime(2020, 1, 1, tzinfo=timezone.utc),
            tables=[Table(id="t-users", name="users")],
        ))
        extractor = StaticSchemaExtractor(EXTRACTED)
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        assert builder.should_refresh()
        snapshot = await builder.extract_schema()

        assert extractor.calls == 1
        assert snapshot.find_table("orders") is not None
        await builder.close()

    @pytest.mark.asyncio
    async def test_extraction_keeps_learned_knowledge(self, store, config):
        """Test extraction adds to what was learned from queries"""
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED), config=config)
        await builder.initialize()
        await builder.learn_from_query("SELECT users.nickname FROM users JOIN audit_log ON 1 = 1")

        snapshot = await builder.extract_schema(force_refresh=True)
        users = snapshot.find_table("users")

        assert [c.name for c in users.columns] == ["nickname", "id", "email"]
        assert snapshot.find_table("audit_log") is not None
        await builder.close()

    @pytest.mark.asyncio
    async def test_extractor_failure_keeps_last_snapshot(self, store, config):
        builder = SchemaBuilder("db-1", store, FailingExtractor(), config=config)
        await builder.initialize()
        await builder.learn_from_query("SELECT * FROM users")

        snapshot = await builder.extract_schema(force_refresh=True)

        assert [t.name for t in snapshot.tables] == ["users"]
        await builder.close()

    @pytest.mark.asyncio
    async def test_empty_extraction_keeps_last_snapshot(self, store, config):
        extractor = StaticSchemaExtractor()
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        snapshot = await builder.extract_schema()

        assert extractor.calls == 1
        assert snapshot.tables == []
        assert store.saves == 0
        await builder.close()

    @pytest.mark.asyncio
    async def test_no_extractor(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        assert (await builder.extract_schema()).tables == []
        await builder.close()

    @pytest.mark.asyncio
    async def test_save_failure_is_raised(self, store, config):
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED), config=config)
        await builder.initialize()
        store.fail_next_save = True

        with pytest.raises(PersistenceError):
            await builder.extract_schema()

        assert builder.current_schema.tables == []
        assert await builder.learn_from_query("SELECT * FROM users") is True
        await builder.close()

    @pytest.mark.asyncio
    async def test_tables_to_include(self, store):
        config = EngineConfig()
        config.extraction.tables_to_include = ["orders"]
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED), config=config)
        await builder.initialize()

        snapshot = await builder.extract_schema()

        assert [t.name for t in snapshot.tables] == ["orders"]
        await builder.close()

    @pytest.mark.asyncio
    async def test_id_only_relationships_after_learning(self, store, config):
        """Test extracted foreign keys given by id attach to tables first learned from SQL"""
        extractor = StaticSchemaExtractor(
            {
                "databaseId": "db-1",
                "tables": [
                    {"id": "10", "name": "users", "columns": [
                        {"id": "100", "name": "id", "type": "integer", "isPrimaryKey": True},
                    ]},
                    {"id": "20", "name": "orders", "columns": [
                        {"id": "200", "name": "user_id", "type": "integer", "isForeignKey": True},
                    ]},
                ],
            },
            [{
                "sourceTableId": "20",
                "sourceColumnId": "200",
                "targetTableId": "10",
                "targetColumnId": "100",
            }],
        )
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        await builder.learn_from_query("SELECT o.user_id FROM orders o")
        snapshot = await builder.extract_schema(force_refresh=True)

        orders = snapshot.find_table("orders")
        user_id = orders.find_column("user_id")
        assert user_id.column_type == ColumnType.INTEGER
        assert len(snapshot.relationships) == 1
        rel = snapshot.relationships[0]
        assert (rel.source_table_id, rel.source_column_id) == (orders.id, user_id.id)
        assert (rel.target_table_id, rel.target_column_id) == ("10", "100")
        assert snapshot.validate() == []
        await builder.close()

    @pytest.mark.asyncio
    async def test_tables_to_include_follows_foreign_keys(self, store):
        config = EngineConfig()
        config.extraction.tables_to_include = ["orders"]
        config.extraction.max_depth = 2
        extractor = StaticSchemaExtractor(EXTRACTED, EXTRACTED_RELATIONSHIPS)
        builder = SchemaBuilder("db-1", store, extractor, config=config)
        await builder.initialize()

        snapshot = await builder.extract_schema()

        assert sorted(t.name for t in snapshot.tables) == ["orders", "users"]
        assert len(snapshot.relationships) == 1
        await builder.close()


class TestDirectEdits:
    """Tests for removing and updating entities through the builder"""

    @pytest.mark.asyncio
    async def test_removed_table_stays_removed(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        await builder.learn_from_query("SELECT * FROM orders")
        orders_id = builder.current_schema.find_table("orders").id

        snapshot = await builder.remove_table(orders_id)
        await builder.learn_from_query("SELECT * FROM users")

        assert snapshot.find_table("orders") is None
        assert [t.name for t in builder.current_schema.tables] == ["users"]
        assert [t.name for t in (await store.get_snapshot("db-1")).tables] == ["users"]
        await builder.close()

    @pytest.mark.asyncio
    async def test_removal_is_ordered_with_learning(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        await builder.learn_from_query(JOIN_SQL)
        orders_id = builder.current_schema.find_table("orders").id

        await asyncio.gather(
            builder.learn_from_query("SELECT p.sku FROM products p"),
            builder.remove_table(orders_id),
            builder.learn_from_query("SELECT u.email FROM users u"),
        )

        stored = await store.get_snapshot("db-1")
        assert [t.name for t in stored.tables] == ["users", "products"]
        assert stored.find_table("users").find_column("email") is not None
        assert store.max_in_flight == 1
        await builder.close()

    @pytest.mark.asyncio
    async def test_remove_unknown_table(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()

        with pytest.raises(TableNotFoundError):
            await builder.remove_table("t-ghost")

        assert await builder.learn_from_query("SELECT * FROM users") is True
        await builder.close()

    @pytest.mark.asyncio
    async def test_update_table_is_merged(self, store, config):
        """Test a caller-supplied table adds knowledge without resetting known facts"""
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED), config=config)
        await builder.initialize()
        users = (await builder.extract_schema()).find_table("users")
        id_column = users.find_column("id")

        snapshot = await builder.update_table(Table(
            id=users.id,
            name="users",
            description="Registered customers",
            columns=[
                Column(id=id_column.id, name="id"),
                Column(id="c-signup", name="signed_up_at", column_type=ColumnType.DATE),
            ],
        ))

        updated = snapshot.get_table(users.id)
        assert updated.description == "Registered customers"
        assert updated.find_column("id").column_type == ColumnType.INTEGER
        assert updated.find_column("id").is_primary_key is True
        assert [c.name for c in updated.columns] == ["id", "email", "signed_up_at"]
        assert (await store.get_snapshot("db-1")).to_dict() == snapshot.to_dict()
        await builder.close()

    @pytest.mark.asyncio
    async def test_update_relationship(self, store, config):
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED), config=config)
        await builder.initialize()
        extracted = await builder.extract_schema()
        users, orders = extracted.find_table("users"), extracted.find_table("orders")

        snapshot = await builder.update_relationship(Relationship(
            id="rel-manual",
            source_table_id=orders.id,
            source_column_id=orders.find_column("user_id").id,
            target_table_id=users.id,
            target_column_id=users.find_column("id").id,
        ))

        assert [r.id for r in snapshot.relationships] == ["rel-manual"]

        with pytest.raises(NotFoundError):
            await builder.update_relationship(Relationship(
                id="rel-dangling",
                source_table_id="t-ghost",
                source_column_id="c-ghost",
                target_table_id=users.id,
                target_column_id=users.find_column("id").id,
            ))
        assert [r.id for r in builder.current_schema.relationships] == ["rel-manual"]
        await builder.close()

    @pytest.mark.asyncio
    async def test_edits_need_ready_builder(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)

        with pytest.raises(BuilderStateError):
            await builder.remove_table("t-1")


class TestDiffListeners:
    """Tests for change notification"""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        seen = []

        def on_change(database_id, diff):
            seen.append(("sync", database_id, list(diff.new_tables)))

        async def on_change_async(database_id, diff):
            await asyncio.sleep(0)
            seen.append(("async", database_id, len(diff.new_tables)))

        builder.add_diff_listener(on_change)
        builder.add_diff_listener(on_change_async)
        await builder.learn_from_query("SELECT * FROM users")
        await builder.close()

        users_id = builder.current_schema.find_table("users").id
        assert ("sync", "db-1", [users_id]) in seen
        assert ("async", "db-1", 1) in seen

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_learning(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        calls = []

        def broken(database_id, diff):
            raise RuntimeError("listener bug")

        async def broken_async(database_id, diff):
            raise RuntimeError("async listener bug")

        builder.add_diff_listener(broken)
        builder.add_diff_listener(broken_async)
        builder.add_diff_listener(lambda db, diff: calls.append(db))

        assert await builder.learn_from_query("SELECT * FROM users") is True
        assert calls == ["db-1"]
        await builder.close()

    @pytest.mark.asyncio
    async def test_no_notification_without_change(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        calls = []
        builder.add_diff_listener(lambda db, diff: calls.append(diff))

        await builder.learn_from_query("SELECT * FROM users")
        await builder.learn_from_query("SELECT * FROM users")

        assert len(calls) == 1
        await builder.close()

    @pytest.mark.asyncio
    async def test_remove_listener(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        calls = []
        remove = builder.add_diff_listener(lambda db, diff: calls.append(diff))

        remove()
        await builder.learn_from_query("SELECT * FROM users")

        assert calls == []
        await builder.close()

    @pytest.mark.asyncio
    async def test_diff_schema(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        await builder.initialize()
        await builder.learn_from_query("SELECT * FROM users")

        candidate = builder.current_schema
        candidate.tables.append(Table(id="t-extra", name="extra"))

        assert builder.diff_schema(candidate).new_tables == ["t-extra"]
        await builder.close()


class TestBuilderCompression:
    @pytest.mark.asyncio
    async def test_compress_prioritizes_referenced_tables(self, store, config):
        builder = SchemaBuilder("db-1", store, StaticSchemaExtractor(EXTRACTED, EXTRACTED_RELATIONSHIPS), config=config)
        await builder.initialize()
        await builder.extract_schema()

        compressed = builder.compress(referenced_tables=["orders"])

        assert compressed.table_names == ["orders", "users"]
        assert compressed.relationships[0].source == "orders"
        assert builder.compress(["orders"], max_tables=1).table_names == ["orders"]
        await builder.close()

    def test_compress_before_initialize(self, store, config):
        builder = SchemaBuilder("db-1", store, config=config)
        assert builder.compress().tables == []
