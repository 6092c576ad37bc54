"""
Schema Knowledge Examples

Demonstrates the three ways schema knowledge is built up:
1. Extraction plus learning from executed queries
2. Learning only (no extractor available)
3. Prompt construction under a token budget

Run this example:
    python examples/schema_knowledge_example.py
"""
import asyncio
import sys
import tempfile
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from schema_knowledge import EngineConfig, setup_logging
from schema_knowledge.config import StorageBackend, StorageConfig
from schema_knowledge.schema_intelligence import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    SchemaBuilder,
    SchemaBuilderRegistry,
    StaticSchemaExtractor,
    generate_schema_description,
    schema_to_sql_statements,
)

SAMPLE_EXTRACTION = {
    "databaseId": "42",
    "databaseName": "Sample Shop",
    "tables": [
        {"id": "10", "name": "users", "description": "Registered customers", "columns": [
            {"id": "100", "name": "id", "type": "type/Integer", "isPrimaryKey": True},
            {"id": "101", "name": "email", "type": "type/Text"},
            {"id": "102", "name": "created_at", "type": "type/DateTime"},
        ]},
        {"id": "11", "name": "orders", "description": "One row per checkout", "columns": [
            {"id": "110", "name": "id", "type": "type/Integer", "isPrimaryKey": True},
            {"id": "111", "name": "user_id", "type": "type/Integer", "isForeignKey": True},
            {"id": "112", "name": "total", "type": "type/Decimal"},
        ]},
    ],
}

SAMPLE_RELATIONSHIPS = [{
    "sourceTableId": "11",
    "sourceColumnId": "111",
    "targetTableId": "10",
    "targetColumnId": "100",
}]


async def scenario_a_extraction_and_learning():
    """
    Scenario A: An extractor provides the bulk of the schema and executed
    queries fill in what it missed.
    """
    print("\n" + "=" * 70)
    print("SCENARIO A: Extraction + Learning")
    print("=" * 70)

    registry = SchemaBuilderRegistry(
        store=InMemorySnapshotStore(),
        extractor=StaticSchemaExtractor(SAMPLE_EXTRACTION, SAMPLE_RELATIONSHIPS),
        config=EngineConfig(),
    )

    snapshot = await registry.start_extraction("42")
    print(f"\n✓ Extracted {len(snapshot.tables)} tables, {len(snapshot.relationships)} relationships")

    builder = await registry.acquire("42")
    changed = await builder.learn_from_query(
        "SELECT o.id, o.status FROM orders o WHERE o.total > 100",
        result_columns=["o.id", "o.status"],
        result_data=[[1, "paid"], [2, "refunded"], [3, None]],
    )
    print(f"✓ Learned from query (changed: {changed})")

    for diff in registry.get_schema_diffs("42"):
        print(f"  - {diff.summary()}")

    status = builder.current_schema.find_table("orders").find_column("status")
    print(f"✓ orders.status is {status.column_type.value} (nullable: {status.is_nullable})")
    print(f"  Examples: {status.examples}")

    await registry.dispose_all()


async def scenario_b_learning_only():
    """
    Scenario B: No extractor. Everything is learned from SQL and persisted
    to disk so a later process starts where this one stopped.
    """
    print("\n" + "=" * 70)
    print("SCENARIO B: Learning Only (persisted to disk)")
    print("=" * 70)

    with tempfile.TemporaryDirectory() as cache_dir:
        builder = SchemaBuilder("42", store=FileSnapshotStore(cache_dir), config=EngineConfig())
        await builder.initialize()

        queries = [
            "SELECT u.id, u.email FROM users u",
            "SELECT u.id, COUNT(o.id) FROM users u JOIN orders o ON o.user_id = u.id GROUP BY u.id",
            "SELECT p.sku, p.price FROM products p WHERE p.active = true",
        ]
        results = await asyncio.gather(*[builder.learn_from_query(q) for q in queries])
        print(f"\n✓ {sum(results)} of {len(queries)} queries added schema knowledge")
        await builder.close()

        restarted = SchemaBuilder("42", store=FileSnapshotStore(cache_dir), config=EngineConfig())
        snapshot = await restarted.initialize()

        print(f"\n✓ Reloaded {len(snapshot.tables)} tables from {cache_dir}")
        for table in snapshot.tables:
            print(f"  - {table.name}: {', '.join(c.name for c in table.columns)}")
        await restarted.close()


async def scenario_c_prompt_construction():
    """
    Scenario C: Compress the snapshot for an LLM prompt, prioritizing the
    tables the user's question is about.
    """
    print("\n" + "=" * 70)
    print("SCENARIO C: Prompt Construction")
    print("=" * 70)

    config = EngineConfig(storage=StorageConfig(backend=StorageBackend.MEMORY))
    builder = SchemaBuilder(
        "42",
        store=InMemorySnapshotStore(),
        extractor=StaticSchemaExtractor(SAMPLE_EXTRACTION, SAMPLE_RELATIONSHIPS),
        config=config,
    )
    await builder.initialize()
    await builder.extract_schema()

    compressed = builder.compress(referenced_tables=["orders"], max_tokens=60)
    print(f"\n✓ Compressed to tables: {compressed.table_names}")
    print("\n" + generate_schema_description(compressed))
    print("\nAs DDL:")
    print(schema_to_sql_statements(compressed))

    await builder.close()


if __name__ == "__main__":
    setup_logging(level="WARNING")

    print("Schema Knowledge Examples")
    print("=" * 70)

    asyncio.run(scenario_a_extraction_and_learning())
    asyncio.run(scenario_b_learning_only())
    asyncio.run(scenario_c_prompt_construction())

    print("\n" + "=" * 70)
    print("All examples completed!")
    print("=" * 70)
