"""
Snapshot Storage

Durable key-value storage of schema snapshots, keyed by database id:
1. InMemorySnapshotStore - process-local, for tests and embedding callers
2. FileSnapshotStore - one YAML or JSON document per database in a directory

Stores hand out copies; mutating a returned snapshot never changes what is
stored until it is saved again. Backend failures surface as
PersistenceError and are not retried here.
"""
from __future__ import annotations

import asyncio
import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .merger import SchemaMerger
from .models import Relationship, SchemaSnapshot, Table
from .observations import observation_from_relationship, observation_from_table
from ..config import StorageBackend, StorageConfig, StorageFormat
from ..utils import (
    ConfigurationError,
    SnapshotNotFoundError,
    TableNotFoundError,
    classify_storage_error,
    get_logger,
)

logger = get_logger(__name__)


class BaseSnapshotStore(ABC):
    """Abstract base class for snapshot stores"""

    @abstractmethod
    async def get_snapshot(self, database_id: str) -> Optional[SchemaSnapshot]:
        """Load the snapshot for a database, or None if there is none"""
        pass

    @abstractmethod
    async def save_snapshot(self, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        """Persist a snapshot, replacing any previous one for its database"""
        pass

    @abstractmethod
    async def delete_snapshot(self, database_id: str) -> bool:
        """Delete a snapshot; returns False if there was nothing to delete"""
        pass

    @abstractmethod
    async def list_snapshots(self) -> List[str]:
        """Database ids with a stored snapshot"""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Destroy every stored snapshot"""
        pass

    async def require_snapshot(self, database_id: str) -> SchemaSnapshot:
        snapshot = await self.get_snapshot(database_id)
        if snapshot is None:
            raise SnapshotNotFoundError(database_id)
        return snapshot

    async def get_table(self, database_id: str, table_id: str) -> Table:
        snapshot = await self.require_snapshot(database_id)
        table = snapshot.get_table(table_id)
        if table is None:
            raise TableNotFoundError(table_id, database_id)
        return table

    async def remove_table(self, database_id: str, table_id: str) -> SchemaSnapshot:
        """
        Remove a table and every relationship that pointed at it

        This writes the stored document directly. While a SchemaBuilder owns
        the database, call SchemaBuilder.remove_table instead so its queued
        merges do not write the table back.
        """
        snapshot = await self.require_snapshot(database_id)
        result = SchemaMerger().remove_table(snapshot, table_id)
        return await self.save_snapshot(result.snapshot)

    async def update_table(self, database_id: str, table: Table) -> SchemaSnapshot:
        """Merge a table into the stored snapshot, appending it if it is new"""
        snapshot = await self.require_snapshot(database_id)
        result = SchemaMerger().merge(snapshot, observation_from_table(table))
        if not result.changed:
            return snapshot
        return await self.save_snapshot(result.snapshot)

    async def update_relationship(
        self,
        database_id: str,
        relationship: Relationship,
    ) -> SchemaSnapshot:
        """Add a relationship between stored columns; an existing one is kept as is"""
        snapshot = await self.require_snapshot(database_id)
        result = SchemaMerger().add_relationship(
            snapshot, observation_from_relationship(relationship)
        )
        if not result.changed:
            return snapshot
        return await self.save_snapshot(result.snapshot)


class InMemorySnapshotStore(BaseSnapshotStore):
    """Dictionary-backed store"""

    def __init__(self):
        self._snapshots: Dict[str, SchemaSnapshot] = {}

    async def get_snapshot(self, database_id: str) -> Optional[SchemaSnapshot]:
        snapshot = self._snapshots.get(database_id)
        return snapshot.copy() if snapshot else None

    async def save_snapshot(self, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        self._snapshots[snapshot.database_id] = snapshot.copy()
        return snapshot.copy()

    async def delete_snapshot(self, database_id: str) -> bool:
        return self._snapshots.pop(database_id, None) is not None

    async def list_snapshots(self) -> List[str]:
        return list(self._snapshots)

    async def clear(self) -> None:
        self._snapshots.clear()


_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class FileSnapshotStore(BaseSnapshotStore):
    """
    Stores each snapshot as a document in a directory

    File access runs in worker threads via asyncio.to_thread so a slow
    disk never stalls the event loop.

    Usage:
        store = FileSnapshotStore("./.schema_cache", fmt=StorageFormat.YAML)
        await store.save_snapshot(snapshot)
    """

    def __init__(self, directory: str, fmt: StorageFormat = StorageFormat.YAML):
        self.directory = Path(directory)
        self.format = fmt
        self.extension = ".yaml" if fmt == StorageFormat.YAML else ".json"

    def _path_for(self, database_id: str) -> Path:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", database_id) or "_"
        return self.directory / f"{safe_name}{self.extension}"

    def _read(self, path: Path) -> SchemaSnapshot:
        with open(path, 'r') as f:
            if self.format == StorageFormat.YAML:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path.name} does not contain a schema snapshot")
        return SchemaSnapshot.from_dict(data)

    def _read_if_exists(self, path: Path) -> Optional[SchemaSnapshot]:
        if not path.exists():
            return None
        return self._read(path)

    def _write(self, path: Path, content: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            f.write(content)
        os.replace(tmp_path, path)

    def _unlink_if_exists(self, path: Path) -> bool:
        if not path.exists():
            return False
        path.unlink()
        return True

    def _read_all_ids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return [
            self._read(path).database_id
            for path in sorted(self.directory.glob(f"*{self.extension}"))
        ]

    def _unlink_all(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.glob(f"*{self.extension}"):
            path.unlink()

    async def get_snapshot(self, database_id: str) -> Optional[SchemaSnapshot]:
        path = self._path_for(database_id)
        try:
            return await asyncio.to_thread(self._read_if_exists, path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise classify_storage_error(e, "get_snapshot", database_id) from e

    async def save_snapshot(self, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        path = self._path_for(snapshot.database_id)
        try:
            content = snapshot.to_yaml() if self.format == StorageFormat.YAML else snapshot.to_json()
            await asyncio.to_thread(self._write, path, content)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise classify_storage_error(e, "save_snapshot", snapshot.database_id) from e

        logger.debug(f"Saved schema snapshot to {path}")
        return snapshot.copy()

    async def delete_snapshot(self, database_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._unlink_if_exists, self._path_for(database_id))
        except OSError as e:
            raise classify_storage_error(e, "delete_snapshot", database_id) from e

    async def list_snapshots(self) -> List[str]:
        try:
            return await asyncio.to_thread(self._read_all_ids)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise classify_storage_error(e, "list_snapshots") from e

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self._unlink_all)
        except OSError as e:
            raise classify_storage_error(e, "clear") from e


def create_snapshot_store(config: Optional[StorageConfig] = None) -> BaseSnapshotStore:
    """Build a store for the configured backend"""
    config = config or StorageConfig()

    if config.backend == StorageBackend.FILE:
        if not config.directory:
            raise ConfigurationError(
                "File snapshot storage requires a directory",
                config_key="storage.directory",
            )
        return FileSnapshotStore(config.directory, fmt=config.format)

    return InMemorySnapshotStore()
