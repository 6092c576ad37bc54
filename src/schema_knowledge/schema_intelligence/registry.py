"""
Schema Builder Registry

Explicit owner of the per-database builders. Callers hold a registry (for
example on their application context) instead of reaching for a global
map; builders are created on first use and disposed explicitly.
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .builder import BuilderState, SchemaBuilder
from .differ import SchemaDiff
from .models import SchemaSnapshot, utcnow
from .providers import BaseSchemaExtractor
from .storage import BaseSnapshotStore, create_snapshot_store
from ..config import EngineConfig, get_config
from ..utils import SchemaEngineError, get_logger, log_context

logger = get_logger(__name__)

DEFAULT_DIFF_HISTORY = 20


@dataclass
class ExtractionMetadata:
    """Extraction bookkeeping for one database"""
    last_extracted: Optional[datetime] = None
    extraction_count: int = 0
    is_extraction_in_progress: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_extracted": self.last_extracted.isoformat() if self.last_extracted else None,
            "extraction_count": self.extraction_count,
            "is_extraction_in_progress": self.is_extraction_in_progress,
        }


class SchemaBuilderRegistry:
    """
    Creates, tracks and disposes SchemaBuilders keyed by database id

    Usage:
        registry = SchemaBuilderRegistry(store, extractor)
        builder = await registry.acquire("42")
        await registry.start_extraction("42")
        await registry.dispose_all()
    """

    def __init__(
        self,
        store: Optional[BaseSnapshotStore] = None,
        extractor: Optional[BaseSchemaExtractor] = None,
        config: Optional[EngineConfig] = None,
        diff_history: int = DEFAULT_DIFF_HISTORY,
    ):
        self.config = config or get_config()
        self.store = store or create_snapshot_store(self.config.storage)
        self.extractor = extractor
        self.diff_history = diff_history

        self.current_database_id: Optional[str] = None
        self._builders: Dict[str, SchemaBuilder] = {}
        self._metadata: Dict[str, ExtractionMetadata] = {}
        self._diffs: Dict[str, Deque[SchemaDiff]] = {}
        self._lock: Optional[asyncio.Lock] = None

    def __contains__(self, database_id: str) -> bool:
        return database_id in self._builders

    def __len__(self) -> int:
        return len(self._builders)

    @property
    def database_ids(self) -> List[str]:
        return list(self._builders)

    # Builders

    def get_builder(self, database_id: str) -> SchemaBuilder:
        """Get the builder for a database, creating it if needed (not initialized)"""
        builder = self._builders.get(database_id)
        if builder is None:
            builder = SchemaBuilder(
                database_id,
                store=self.store,
                extractor=self.extractor,
                config=self.config,
            )
            builder.add_diff_listener(self.record_schema_diff)
            self._builders[database_id] = builder
            logger.debug(f"Created schema builder for database {database_id}")
        return builder

    async def acquire(self, database_id: str) -> SchemaBuilder:
        """Get an initialized builder for a database"""
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            builder = self.get_builder(database_id)
            if builder.state == BuilderState.UNINITIALIZED:
                await builder.initialize()
        return builder

    async def dispose(self, database_id: str) -> bool:
        """Close and forget one builder"""
        builder = self._builders.pop(database_id, None)
        if builder is None:
            return False
        await builder.close()
        logger.debug(f"Disposed schema builder for database {database_id}")
        return True

    async def dispose_all(self) -> None:
        for database_id in list(self._builders):
            await self.dispose(database_id)

    # Current database

    def set_current_database(self, database_id: str) -> SchemaBuilder:
        self.current_database_id = database_id
        self._metadata.setdefault(database_id, ExtractionMetadata())
        return self.get_builder(database_id)

    def current_builder(self) -> Optional[SchemaBuilder]:
        if self.current_database_id is None:
            return None
        return self._builders.get(self.current_database_id)

    # Extraction bookkeeping

    def get_metadata(self, database_id: str) -> Optional[ExtractionMetadata]:
        return self._metadata.get(database_id)

    def update_extraction_metadata(self, database_id: str, **updates: Any) -> ExtractionMetadata:
        metadata = self._metadata.setdefault(database_id, ExtractionMetadata())
        for key, value in updates.items():
            if not hasattr(metadata, key):
                raise AttributeError(f"Unknown extraction metadata field: {key}")
            setattr(metadata, key, value)
        return metadata

    async def start_extraction(self, database_id: str) -> SchemaSnapshot:
        """Force a fresh extraction for a database and record its outcome"""
        self.update_extraction_metadata(database_id, is_extraction_in_progress=True)

        with log_context(database_id=database_id, operation="start_extraction"):
            try:
                builder = await self.acquire(database_id)
                snapshot = await builder.extract_schema(force_refresh=True)
            except SchemaEngineError as e:
                logger.error(f"Schema extraction failed: {e}")
                self.complete_extraction(database_id, success=False)
                raise

        self.complete_extraction(database_id, success=snapshot.is_sufficient())
        return snapshot

    def complete_extraction(self, database_id: str, success: bool) -> ExtractionMetadata:
        metadata = self._metadata.setdefault(database_id, ExtractionMetadata())
        return self.update_extraction_metadata(
            database_id,
            is_extraction_in_progress=False,
            last_extracted=utcnow() if success else metadata.last_extracted,
            extraction_count=metadata.extraction_count + 1 if success else metadata.extraction_count,
        )

    # Change history

    def record_schema_diff(self, database_id: str, diff: SchemaDiff) -> None:
        history = self._diffs.setdefault(database_id, deque(maxlen=self.diff_history))
        history.append(diff)
        logger.info(f"Schema changed for database {database_id}: {diff.summary()}")

    def get_schema_diffs(self, database_id: str) -> List[SchemaDiff]:
        return list(self._diffs.get(database_id, ()))
