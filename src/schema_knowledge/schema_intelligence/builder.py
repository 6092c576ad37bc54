"""
Progressive Schema Builder

One builder per database id. It owns the current snapshot and funnels every
mutation through a single-consumer task queue, so two merges never
interleave against the same snapshot. Direct edits such as remove_table go
through the same queue rather than straight to the store. A failing task
is logged and does not stop the queue.

Usage:
    builder = SchemaBuilder("42", store=InMemorySnapshotStore(), extractor=extractor)
    await builder.initialize()
    await builder.extract_schema()
    await builder.learn_from_query(sql, result_columns, result_rows)
    compressed = builder.compress(referenced_tables=["orders"])
"""
from __future__ import annotations

import asyncio
import inspect
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from .compressor import CompressedSchema, SchemaCompressor
from .differ import SchemaDiff, diff_snapshots
from .merger import MergeResult, SchemaMerger
from .models import Relationship, SchemaSnapshot, Table
from .observations import (
    ObservationKind,
    SchemaObservation,
    observation_from_extraction,
    observation_from_inferences,
    observation_from_references,
    observation_from_relationship,
    observation_from_table,
)
from .providers import BaseSchemaExtractor, ExtractionOptions
from .reference_extractor import ReferenceExtractor, SQLReferences
from .storage import BaseSnapshotStore
from .type_inference import TypeInference, TypeInferencer
from ..config import EngineConfig, get_config
from ..utils import (
    BuilderStateError,
    ErrorContext,
    SchemaEngineError,
    SchemaEngineMetrics,
    classify_storage_error,
    get_logger,
    log_context,
    log_operation,
)

logger = get_logger(__name__)

DiffListener = Callable[[str, SchemaDiff], Any]
Job = Callable[[], Awaitable[Any]]


class SchemaTaskQueue:
    """
    FIFO queue drained by a single worker task

    Jobs run strictly one at a time in submission order. Each job's outcome,
    result or exception, is delivered through the future returned by
    submit(); the worker itself never stops on a failing job.
    """

    def __init__(self, name: str = "schema"):
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, job: Job) -> asyncio.Future:
        if self._closed:
            raise BuilderStateError(f"Task queue {self.name} is closed", state="closed")

        loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())

        future = loop.create_future()
        self._queue.put_nowait((job, future))
        return future

    async def _drain(self) -> None:
        while True:
            job, future = await self._queue.get()
            try:
                if job is None:
                    return
                result = await job()
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted job has finished"""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop accepting jobs; already submitted jobs still run"""
        if self._closed:
            return
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._queue.put_nowait((None, None))
            await self._worker


class BuilderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class SchemaBuilder:
    """Owns and progressively improves the schema of one database"""

    def __init__(
        self,
        database_id: str,
        store: BaseSnapshotStore,
        extractor: Optional[BaseSchemaExtractor] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.database_id = database_id
        self.store = store
        self.extractor = extractor
        self.config = config or get_config()

        learning = self.config.learning
        self.merger = SchemaMerger(max_examples=learning.max_examples)
        self.inferencer = TypeInferencer(
            max_samples=learning.max_sample_rows,
            max_examples=learning.examples_per_inference,
        )
        self.reference_extractor = ReferenceExtractor()
        self.compressor = SchemaCompressor(self.config.compression)

        self._queue = SchemaTaskQueue(name=database_id)
        self._state = BuilderState.UNINITIALIZED
        self._current: Optional[SchemaSnapshot] = None
        self._extracting = False
        self._learning = False
        self._listeners: List[DiffListener] = []
        self._listener_tasks: Set[asyncio.Task] = set()

    # State

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def is_extracting(self) -> bool:
        return self._extracting

    @property
    def is_learning(self) -> bool:
        return self._learning

    @property
    def current_schema(self) -> Optional[SchemaSnapshot]:
        """A copy of the current snapshot (None before initialize)"""
        return self._current.copy() if self._current is not None else None

    @property
    def queue(self) -> SchemaTaskQueue:
        return self._queue

    def has_schema(self) -> bool:
        return self._current is not None and self._current.is_sufficient()

    def should_refresh(self) -> bool:
        """Whether the snapshot is missing or older than the freshness window"""
        if not self.has_schema():
            return True
        return self._current.age_seconds() > self.config.extraction.max_age_seconds

    def _require_ready(self, operation: str) -> None:
        if self._state != BuilderState.READY:
            raise BuilderStateError(
                f"Cannot {operation.replace('_', ' ')}: builder for database "
                f"{self.database_id} is {self._state.value}",
                state=self._state.value,
                context=ErrorContext(database_id=self.database_id, operation=operation),
            )

    # Lifecycle

    async def initialize(self) -> SchemaSnapshot:
        """Load the persisted snapshot, or start from an empty one"""
        if self._state == BuilderState.CLOSED:
            raise BuilderStateError(
                f"Builder for database {self.database_id} is closed",
                state=self._state.value,
            )

        with log_context(database_id=self.database_id, operation="initialize"):
            try:
                stored = await self.store.get_snapshot(self.database_id)
            except SchemaEngineError:
                raise
            except Exception as e:
                raise classify_storage_error(e, "get_snapshot", self.database_id) from e

            self._current = stored or SchemaSnapshot.empty(self.database_id)
            self._state = BuilderState.READY
            logger.info(
                f"Schema builder ready with {len(self._current.tables)} tables"
                + ("" if stored else " (no stored schema)")
            )
        return self._current.copy()

    async def close(self) -> None:
        """Finish queued tasks and refuse new ones"""
        if self._state == BuilderState.CLOSED:
            return
        self._state = BuilderState.CLOSED
        await self._queue.close()
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)

    # Extraction

    async def extract_schema(self, force_refresh: bool = False) -> SchemaSnapshot:
        """
        Refresh the schema from the extraction collaborator

        Returns the cached snapshot when it is fresh and force_refresh is
        False. An extractor failure or empty result keeps the last known
        snapshot; a storage failure is raised.
        """
        self._require_ready("extract_schema")
        future = self._queue.submit(lambda: self._run_extraction(force_refresh))
        SchemaEngineMetrics.set_queue_depth(self.database_id, self._queue.pending)
        return await future

    async def _run_extraction(self, force_refresh: bool) -> SchemaSnapshot:
        with log_context(database_id=self.database_id, operation="extract_schema"):
            start_time = time.time()

            if not force_refresh and not self.should_refresh():
                SchemaEngineMetrics.record_extraction(time.time() - start_time, True, cached=True)
                logger.debug("Using cached schema")
                return self._current.copy()

            if self.extractor is None:
                logger.warning("No schema extractor configured, keeping current schema")
                return self._current.copy()

            self._extracting = True
            try:
                options = ExtractionOptions.from_config(self.config.extraction)
                try:
                    raw_schema = await self.extractor.extract_raw_schema(options)
                    relationships = []
                    if raw_schema is not None and options.extract_relationships:
                        relationships = await self.extractor.extract_relationships() or []
                except Exception as e:
                    logger.warning(f"Schema extraction failed, keeping last known schema: {e}")
                    SchemaEngineMetrics.record_extraction(time.time() - start_time, False, cached=False)
                    SchemaEngineMetrics.record_error(
                        type(e).__name__,
                        getattr(getattr(e, "category", None), "value", "extraction"),
                    )
                    return self._current.copy()

                if raw_schema is None or not raw_schema.tables:
                    logger.warning("Extractor returned no tables, keeping last known schema")
                    SchemaEngineMetrics.record_extraction(time.time() - start_time, False, cached=False)
                    return self._current.copy()

                observation = observation_from_extraction(raw_schema, relationships)
                with log_operation(logger, "schema_extraction", tables=len(raw_schema.tables)) as ctx:
                    changed = await self._apply([observation])
                    ctx["changed"] = changed

                SchemaEngineMetrics.record_extraction(time.time() - start_time, True, cached=False)
                return self._current.copy()
            finally:
                self._extracting = False

    # Learning

    async def learn_from_query(
        self,
        sql: str,
        result_columns: Optional[Sequence[str]] = None,
        result_data: Optional[Sequence[Sequence[Any]]] = None,
    ) -> bool:
        """
        Learn tables, columns, types and examples from an executed query

        Returns whether the snapshot changed. Failures inside the task are
        logged and reported as False; they never reach the caller.
        """
        self._require_ready("learn_from_query")
        future = self._queue.submit(lambda: self._run_learning(sql, result_columns, result_data))
        SchemaEngineMetrics.set_queue_depth(self.database_id, self._queue.pending)
        return await future

    async def _run_learning(
        self,
        sql: str,
        result_columns: Optional[Sequence[str]],
        result_data: Optional[Sequence[Sequence[Any]]],
    ) -> bool:
        with log_context(database_id=self.database_id, operation="learn_from_query"):
            start_time = time.time()
            self._learning = True
            try:
                references = self.reference_extractor.analyze(sql)
                observations = [observation_from_references(references.tables)]

                if result_columns and result_data:
                    inferred = self._infer_from_results(references, result_columns, result_data)
                    if inferred:
                        observations.append(observation_from_inferences(inferred))

                changed = await self._apply(observations)
                SchemaEngineMetrics.record_learning_task(time.time() - start_time, True, changed)
                logger.debug(
                    f"Learned from query: {len(references.tables)} tables referenced"
                    + (", schema updated" if changed else "")
                )
                return changed
            except Exception as e:
                logger.error(f"Failed to learn from query: {e}", exc_info=True)
                SchemaEngineMetrics.record_learning_task(time.time() - start_time, False, False)
                SchemaEngineMetrics.record_error(
                    type(e).__name__,
                    getattr(getattr(e, "category", None), "value", "internal"),
                )
                return False
            finally:
                self._learning = False

    def _infer_from_results(
        self,
        references: SQLReferences,
        result_columns: Sequence[str],
        result_data: Sequence[Sequence[Any]],
    ) -> Dict[str, Dict[str, TypeInference]]:
        """Infer types for `table.column` result headers; others are ignored"""
        inferred: Dict[str, Dict[str, TypeInference]] = {}
        for index, header in enumerate(result_columns):
            parts = str(header).split(".")
            if len(parts) != 2:
                continue
            table_name, column_name = parts[0].strip(), parts[1].strip()
            if not table_name or not column_name:
                continue

            table_name = references.resolve(table_name)
            inferred.setdefault(table_name, {})[column_name] = self.inferencer.infer_column(
                result_data, index
            )
        return inferred

    # Direct edits

    async def remove_table(self, table_id: str) -> SchemaSnapshot:
        """Remove a table and its relationships, in order with queued merges"""
        self._require_ready("remove_table")
        return await self._queue.submit(lambda: self._run_edit(
            "remove_table", lambda current: self.merger.remove_table(current, table_id)
        ))

    async def update_table(self, table: Table) -> SchemaSnapshot:
        """Merge a caller-supplied table; it can add knowledge but never remove it"""
        self._require_ready("update_table")
        observation = observation_from_table(table)
        return await self._queue.submit(lambda: self._run_edit(
            "update_table", lambda current: self.merger.merge(current, observation)
        ))

    async def update_relationship(self, relationship: Relationship) -> SchemaSnapshot:
        """Add a relationship between existing columns"""
        self._require_ready("update_relationship")
        observation = observation_from_relationship(relationship)
        return await self._queue.submit(lambda: self._run_edit(
            "update_relationship", lambda current: self.merger.add_relationship(current, observation)
        ))

    async def _run_edit(
        self,
        operation: str,
        edit: Callable[[SchemaSnapshot], MergeResult],
    ) -> SchemaSnapshot:
        with log_context(database_id=self.database_id, operation=operation):
            result = edit(self._current)
            SchemaEngineMetrics.record_merge(ObservationKind.UPDATE.value, result.changed)
            if result.changed:
                await self._persist(result.snapshot)
            return self._current.copy()

    # Merge and persist

    async def _apply(self, observations: Sequence[SchemaObservation]) -> bool:
        """Merge into a working copy; swap it in only after it is saved"""
        working = self._current
        changed = False
        for observation in observations:
            if observation.is_empty():
                continue
            result = self.merger.merge(working, observation)
            SchemaEngineMetrics.record_merge(observation.kind.value, result.changed)
            if result.unresolved_relationships:
                logger.debug(f"{result.unresolved_relationships} relationship(s) could not be resolved")
            working = result.snapshot
            changed = changed or result.changed

        if not changed:
            return False

        await self._persist(working)
        return True

    async def _persist(self, working: SchemaSnapshot) -> None:
        try:
            saved = await self.store.save_snapshot(working)
        except SchemaEngineError:
            raise
        except Exception as e:
            raise classify_storage_error(e, "save_snapshot", self.database_id) from e

        previous, self._current = self._current, saved
        self._notify(diff_snapshots(previous, saved))

    # Diff and notification

    def diff_schema(self, new_snapshot: SchemaSnapshot) -> SchemaDiff:
        """Compare a snapshot against the current one"""
        return diff_snapshots(self._current, new_snapshot)

    def add_diff_listener(self, listener: DiffListener) -> Callable[[], None]:
        """Register a callback for (database_id, diff); returns an unsubscribe function"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, diff: SchemaDiff) -> None:
        if not diff.has_changes:
            return
        for listener in list(self._listeners):
            try:
                outcome = listener(self.database_id, diff)
                if inspect.isawaitable(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as e:
                logger.warning(f"Schema diff listener failed: {e}")

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Schema diff listener failed: {task.exception()}")

    # Compression

    def compress(
        self,
        referenced_tables: Optional[Sequence[str]] = None,
        **overrides: Any,
    ) -> CompressedSchema:
        """Prompt-sized projection of the current snapshot"""
        snapshot = self._current or SchemaSnapshot.empty(self.database_id)
        return self.compressor.compress(snapshot, referenced_tables, **overrides)
