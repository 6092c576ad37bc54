"""
Schema Knowledge Engine
=======================

Progressive, token-budgeted schema knowledge for LLM-assisted SQL tools.

The engine keeps one snapshot per database and improves it from three
unreliable sources: a one-shot schema scrape, the SQL statements users
run, and the result rows those statements return. On demand it projects
the snapshot into a prompt-sized schema that favours the tables the
current question is about.

Features:
- Heuristic table/column extraction from SQL (never raises)
- Type and nullability inference from sampled values
- Additive, monotonic merging with first-concrete-type-wins semantics
- Structural diffs for change notification
- Single-consumer task queue per database
- Token-budgeted compression with a fixed shedding order

Quick Start:
------------

    import asyncio
    from schema_knowledge import (
        InMemorySnapshotStore,
        SchemaBuilderRegistry,
        generate_schema_description,
    )

    async def main():
        registry = SchemaBuilderRegistry(InMemorySnapshotStore())
        builder = await registry.acquire("sample-db")

        await builder.learn_from_query(
            "SELECT o.id, o.total FROM orders o WHERE o.status = 'paid'",
            result_columns=["orders.id", "orders.total"],
            result_data=[[1, 9.5], [2, 12.0]],
        )

        compressed = builder.compress(referenced_tables=["orders"])
        print(generate_schema_description(compressed))
        await registry.dispose_all()

    asyncio.run(main())
"""

__version__ = "1.0.0"
__author__ = "Schema Knowledge Team"

# Configuration
from .config import (
    LogLevel,
    StorageBackend,
    StorageFormat,
    CompressionConfig,
    LearningConfig,
    ExtractionConfig,
    StorageConfig,
    EngineConfig,
    get_config,
    set_config,
    reset_config,
)

# Schema Intelligence
from .schema_intelligence import (
    # Models
    ColumnType,
    Cardinality,
    Column,
    Table,
    Relationship,
    SchemaSnapshot,
    # Observations
    ObservationKind,
    SchemaObservation,
    ExtractedSchema,
    ExtractedRelationship,
    # Signal sources
    ReferenceExtractor,
    extract_references,
    TypeInferencer,
    infer_column_type,
    # Merge and diff
    SchemaMerger,
    merge_snapshot,
    SchemaDiff,
    diff_snapshots,
    # Compression
    CompressedSchema,
    SchemaCompressor,
    compress_schema,
    estimate_tokens,
    generate_schema_description,
    schema_to_sql_statements,
    # Collaborators
    BaseSnapshotStore,
    InMemorySnapshotStore,
    FileSnapshotStore,
    create_snapshot_store,
    ExtractionOptions,
    BaseSchemaExtractor,
    StaticSchemaExtractor,
    FileSchemaExtractor,
    # Orchestration
    BuilderState,
    SchemaBuilder,
    SchemaBuilderRegistry,
)

# Utilities
from .utils import (
    setup_logging,
    get_logger,
    SchemaEngineError,
    ExtractionError,
    PersistenceError,
    NotFoundError,
    SnapshotNotFoundError,
    TableNotFoundError,
    BuilderStateError,
    ConfigurationError,
    get_metrics_collector,
    SchemaEngineMetrics,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "LogLevel",
    "StorageBackend",
    "StorageFormat",
    "CompressionConfig",
    "LearningConfig",
    "ExtractionConfig",
    "StorageConfig",
    "EngineConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Models
    "ColumnType",
    "Cardinality",
    "Column",
    "Table",
    "Relationship",
    "SchemaSnapshot",
    # Observations
    "ObservationKind",
    "SchemaObservation",
    "ExtractedSchema",
    "ExtractedRelationship",
    # Signal sources
    "ReferenceExtractor",
    "extract_references",
    "TypeInferencer",
    "infer_column_type",
    # Merge and diff
    "SchemaMerger",
    "merge_snapshot",
    "SchemaDiff",
    "diff_snapshots",
    # Compression
    "CompressedSchema",
    "SchemaCompressor",
    "compress_schema",
    "estimate_tokens",
    "generate_schema_description",
    "schema_to_sql_statements",
    # Collaborators
    "BaseSnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "create_snapshot_store",
    "ExtractionOptions",
    "BaseSchemaExtractor",
    "StaticSchemaExtractor",
    "FileSchemaExtractor",
    # Orchestration
    "BuilderState",
    "SchemaBuilder",
    "SchemaBuilderRegistry",
    # Utilities
    "setup_logging",
    "get_logger",
    "SchemaEngineError",
    "ExtractionError",
    "PersistenceError",
    "NotFoundError",
    "SnapshotNotFoundError",
    "TableNotFoundError",
    "BuilderStateError",
    "ConfigurationError",
    "get_metrics_collector",
    "SchemaEngineMetrics",
]
