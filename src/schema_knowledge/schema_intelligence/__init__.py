"""
Schema Intelligence Module

Progressive schema knowledge for a database that can only be observed
partially:
- Extract tables and qualified columns from executed SQL
- Infer column types and nullability from sampled result rows
- Merge every observation additively into one snapshot per database
- Diff snapshots for change notification
- Compress a snapshot to fit an LLM prompt token budget

USAGE SCENARIOS:
================

Scenario A: Extraction plus learning
    registry = SchemaBuilderRegistry(InMemorySnapshotStore(), extractor)
    builder = await registry.acquire("42")
    await builder.extract_schema()
    await builder.learn_from_query(sql, ["orders.total"], rows)

Scenario B: Learning only (no extractor)
    builder = SchemaBuilder("42", store=FileSnapshotStore("./.schema_cache"))
    await builder.initialize()
    await builder.learn_from_query("SELECT u.id FROM users u")

Scenario C: Prompt construction
    compressed = builder.compress(referenced_tables=["orders"], max_tokens=1500)
    prompt_block = generate_schema_description(compressed)
"""

# Core models
from .models import (
    EPOCH,
    MAX_COLUMN_EXAMPLES,
    ColumnType,
    Cardinality,
    Column,
    Table,
    Relationship,
    SchemaSnapshot,
)

# Observations
from .observations import (
    ObservationKind,
    ObservedColumn,
    ObservedTable,
    ObservedRelationship,
    SchemaObservation,
    ExtractedColumn,
    ExtractedTable,
    ExtractedSchema,
    ExtractedRelationship,
    observation_from_extraction,
    observation_from_references,
    observation_from_inferences,
    observation_from_dict,
    observation_from_table,
    observation_from_relationship,
)

# Signal sources
from .reference_extractor import (
    SQLReferences,
    ReferenceExtractor,
    extract_references,
)
from .type_inference import (
    TypeInference,
    TypeInferencer,
    infer_column_type,
)

# Merge and diff
from .merger import (
    MergeResult,
    SchemaMerger,
    merge_snapshot,
)
from .differ import (
    SchemaDiff,
    diff_snapshots,
)

# Compression
from .compressor import (
    CompressedColumn,
    CompressedTable,
    CompressedRelationship,
    CompressedSchema,
    CompressionReport,
    SchemaCompressor,
    compress_schema,
    estimate_tokens,
    render_compressed_schema,
    generate_schema_description,
    schema_to_sql_statements,
)

# Collaborators
from .storage import (
    BaseSnapshotStore,
    InMemorySnapshotStore,
    FileSnapshotStore,
    create_snapshot_store,
)
from .providers import (
    ExtractionOptions,
    BaseSchemaExtractor,
    StaticSchemaExtractor,
    FileSchemaExtractor,
)

# Orchestration
from .builder import (
    SchemaTaskQueue,
    BuilderState,
    SchemaBuilder,
)
from .registry import (
    ExtractionMetadata,
    SchemaBuilderRegistry,
)

__all__ = [
    # Models
    "EPOCH",
    "MAX_COLUMN_EXAMPLES",
    "ColumnType",
    "Cardinality",
    "Column",
    "Table",
    "Relationship",
    "SchemaSnapshot",
    # Observations
    "ObservationKind",
    "ObservedColumn",
    "ObservedTable",
    "ObservedRelationship",
    "SchemaObservation",
    "ExtractedColumn",
    "ExtractedTable",
    "ExtractedSchema",
    "ExtractedRelationship",
    "observation_from_extraction",
    "observation_from_references",
    "observation_from_inferences",
    "observation_from_dict",
    "observation_from_table",
    "observation_from_relationship",
    # Signal sources
    "SQLReferences",
    "ReferenceExtractor",
    "extract_references",
    "TypeInference",
    "TypeInferencer",
    "infer_column_type",
    # Merge and diff
    "MergeResult",
    "SchemaMerger",
    "merge_snapshot",
    "SchemaDiff",
    "diff_snapshots",
    # Compression
    "CompressedColumn",
    "CompressedTable",
    "CompressedRelationship",
    "CompressedSchema",
    "CompressionReport",
    "SchemaCompressor",
    "compress_schema",
    "estimate_tokens",
    "render_compressed_schema",
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
    "SchemaTaskQueue",
    "BuilderState",
    "SchemaBuilder",
    "ExtractionMetadata",
    "SchemaBuilderRegistry",
]
