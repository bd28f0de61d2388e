# Observability APM MCP Server
# File: catalog_cache.py
# Version: v1

"""Persistent cache for external catalog metadata.

Two blobs live in a key-value store:

- the data source tree (data source -> database -> table -> columns), and
- the acceleration (skipping / covering index, materialized view) list.

Each blob is read, mutated and written back as a whole. There is no
locking: two writers interleaving a read-modify-write lose the first
write. Entries never expire; they go away only through the clear methods.

Lookups that miss raise a ``CatalogNotFoundError`` subclass so callers can
tell "not cached yet" apart from an empty result.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

DATA_SOURCE_CACHE_KEY = "async-query-catalog-cache"
ACCELERATIONS_CACHE_KEY = "async-query-acclerations-cache"
CACHE_VERSION = "1.0"


class CachedDataSourceStatus(str, Enum):
    UPDATED = "Updated"
    FAILED = "Failed"
    EMPTY = "Empty"


def _status(value: Any) -> CachedDataSourceStatus:
    try:
        return CachedDataSourceStatus(value)
    except ValueError:
        return CachedDataSourceStatus.EMPTY


def _mappings(value: Any) -> List[Mapping[str, Any]]:
    """Child entries of a list, ignoring anything that is not an object."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CatalogNotFoundError(LookupError):
    """A data source, database or table is missing from the cache."""

    kind = "Catalog entry"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{self.kind} not found exception: {name}")


class DataSourceNotFoundError(CatalogNotFoundError):
    kind = "DataSource"


class DatabaseNotFoundError(CatalogNotFoundError):
    kind = "Database"


class TableNotFoundError(CatalogNotFoundError):
    kind = "Table"


# ---------------------------------------------------------------------------
# Cached shapes
# ---------------------------------------------------------------------------


@dataclass
class CachedColumn:
    field_name: str
    data_type: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CachedColumn":
        return cls(
            field_name=str(payload.get("fieldName", "")),
            data_type=str(payload.get("dataType", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"fieldName": self.field_name, "dataType": self.data_type}


@dataclass
class CachedTable:
    name: str
    columns: List[CachedColumn] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CachedTable":
        return cls(
            name=str(payload.get("name", "")),
            columns=[CachedColumn.from_dict(c) for c in _mappings(payload.get("columns"))],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "columns": [c.to_dict() for c in self.columns]}


@dataclass
class CachedDatabase:
    name: str
    tables: List[CachedTable] = field(default_factory=list)
    last_updated: str = ""
    status: CachedDataSourceStatus = CachedDataSourceStatus.EMPTY

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CachedDatabase":
        return cls(
            name=str(payload.get("name", "")),
            tables=[CachedTable.from_dict(t) for t in _mappings(payload.get("tables"))],
            last_updated=str(payload.get("lastUpdated", "")),
            status=_status(payload.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tables": [t.to_dict() for t in self.tables],
            "lastUpdated": self.last_updated,
            "status": self.status.value,
        }


@dataclass
class CachedDataSource:
    name: str
    last_updated: str = ""
    status: CachedDataSourceStatus = CachedDataSourceStatus.EMPTY
    databases: List[CachedDatabase] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CachedDataSource":
        return cls(
            name=str(payload.get("name", "")),
            last_updated=str(payload.get("lastUpdated", "")),
            status=_status(payload.get("status")),
            databases=[CachedDatabase.from_dict(d) for d in _mappings(payload.get("databases"))],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "lastUpdated": self.last_updated,
            "status": self.status.value,
            "databases": [d.to_dict() for d in self.databases],
        }


@dataclass
class CachedAcceleration:
    flint_index_name: str
    type: str
    database: str
    table: str
    index_name: str
    auto_refresh: bool = False
    status: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CachedAcceleration":
        return cls(
            flint_index_name=str(payload.get("flintIndexName", "")),
            type=str(payload.get("type", "")),
            database=str(payload.get("database", "")),
            table=str(payload.get("table", "")),
            index_name=str(payload.get("indexName", "")),
            auto_refresh=bool(payload.get("autoRefresh", False)),
            status=str(payload.get("status", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flintIndexName": self.flint_index_name,
            "type": self.type,
            "database": self.database,
            "table": self.table,
            "indexName": self.index_name,
            "autoRefresh": self.auto_refresh,
            "status": self.status,
        }


@dataclass
class DataSourceCacheData:
    version: str = CACHE_VERSION
    data_sources: List[CachedDataSource] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DataSourceCacheData":
        return cls(
            version=str(payload.get("version", CACHE_VERSION)),
            data_sources=[
                CachedDataSource.from_dict(ds) for ds in _mappings(payload.get("dataSources"))
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "dataSources": [ds.to_dict() for ds in self.data_sources],
        }


@dataclass
class AccelerationsCacheData:
    version: str = CACHE_VERSION
    accelerations: List[CachedAcceleration] = field(default_factory=list)
    last_updated: str = ""
    status: CachedDataSourceStatus = CachedDataSourceStatus.EMPTY

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AccelerationsCacheData":
        return cls(
            version=str(payload.get("version", CACHE_VERSION)),
            accelerations=[
                CachedAcceleration.from_dict(a) for a in _mappings(payload.get("accelerations"))
            ],
            last_updated=str(payload.get("lastUpdated", "")),
            status=_status(payload.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "accelerations": [a.to_dict() for a in self.accelerations],
            "lastUpdated": self.last_updated,
            "status": self.status.value,
        }


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; contents are lost on restart."""

    def __init__(self) -> None:
        self._store: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._store.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._store[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class FileStorage:
    """One ``<key>.json`` file per key inside a directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        # One temp file per writer; os.replace makes the swap atomic.
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.directory,
            prefix=f"{key}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(value)
        try:
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class CatalogCacheManager:
    """Read / write access to the cached catalog tree and accelerations."""

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.storage = storage
        self._clock = clock or _utc_now_iso

    def _load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unparsable catalog cache entry '%s'.", key)
            return None
        return payload if isinstance(payload, dict) else None

    # -- data sources ------------------------------------------------------

    def save_data_source_cache(self, data: DataSourceCacheData) -> None:
        self.storage.set_item(DATA_SOURCE_CACHE_KEY, json.dumps(data.to_dict()))

    def get_data_source_cache(self) -> DataSourceCacheData:
        payload = self._load(DATA_SOURCE_CACHE_KEY)
        if payload is None:
            return DataSourceCacheData(version=CACHE_VERSION, data_sources=[])
        return DataSourceCacheData.from_dict(payload)

    def add_or_update_data_source(self, data_source: CachedDataSource) -> None:
        cache = self.get_data_source_cache()
        for index, existing in enumerate(cache.data_sources):
            if existing.name == data_source.name:
                cache.data_sources[index] = data_source
                break
        else:
            cache.data_sources.append(data_source)
        self.save_data_source_cache(cache)

    def get_or_create_data_source(self, data_source_name: str) -> CachedDataSource:
        """Return the cached entry, or a fresh ``Empty`` one that is not saved."""
        cache = self.get_data_source_cache()
        for data_source in cache.data_sources:
            if data_source.name == data_source_name:
                return data_source

        return CachedDataSource(
            name=data_source_name,
            last_updated=self._clock(),
            status=CachedDataSourceStatus.EMPTY,
            databases=[],
        )

    def _find_data_source(
        self, cache: DataSourceCacheData, data_source_name: str
    ) -> CachedDataSource:
        for data_source in cache.data_sources:
            if data_source.name == data_source_name:
                return data_source
        raise DataSourceNotFoundError(data_source_name)

    @staticmethod
    def _find_database(data_source: CachedDataSource, database_name: str) -> CachedDatabase:
        for database in data_source.databases:
            if database.name == database_name:
                return database
        raise DatabaseNotFoundError(database_name)

    def get_database(self, data_source_name: str, database_name: str) -> CachedDatabase:
        data_source = self._find_data_source(self.get_data_source_cache(), data_source_name)
        return self._find_database(data_source, database_name)

    def get_table(
        self,
        data_source_name: str,
        database_name: str,
        table_name: str,
    ) -> CachedTable:
        database = self.get_database(data_source_name, database_name)
        for table in database.tables:
            if table.name == table_name:
                return table
        raise TableNotFoundError(table_name)

    def update_database(self, data_source_name: str, updated_database: CachedDatabase) -> None:
        cache = self.get_data_source_cache()
        data_source = self._find_data_source(cache, data_source_name)

        for index, database in enumerate(data_source.databases):
            if database.name == updated_database.name:
                data_source.databases[index] = updated_database
                break
        else:
            raise DatabaseNotFoundError(updated_database.name)

        self.save_data_source_cache(cache)

    def update_table(
        self,
        data_source_name: str,
        database_name: str,
        updated_table: CachedTable,
    ) -> None:
        cache = self.get_data_source_cache()
        database = self._find_database(
            self._find_data_source(cache, data_source_name), database_name
        )

        for index, table in enumerate(database.tables):
            if table.name == updated_table.name:
                database.tables[index] = updated_table
                break
        else:
            raise TableNotFoundError(updated_table.name)

        self.save_data_source_cache(cache)

    def clear_data_source_cache(self) -> None:
        self.storage.remove_item(DATA_SOURCE_CACHE_KEY)

    # -- accelerations -----------------------------------------------------

    def save_accelerations_cache(self, data: AccelerationsCacheData) -> None:
        self.storage.set_item(ACCELERATIONS_CACHE_KEY, json.dumps(data.to_dict()))

    def get_accelerations_cache(self) -> AccelerationsCacheData:
        payload = self._load(ACCELERATIONS_CACHE_KEY)
        if payload is None:
            return AccelerationsCacheData(
                version=CACHE_VERSION,
                accelerations=[],
                last_updated="",
                status=CachedDataSourceStatus.EMPTY,
            )
        return AccelerationsCacheData.from_dict(payload)

    def clear_accelerations_cache(self) -> None:
        self.storage.remove_item(ACCELERATIONS_CACHE_KEY)

    # -- summaries ---------------------------------------------------------

    def summary(self) -> Dict[str, Any]:
        """Small JSON-friendly overview used by diagnostics."""
        data_sources = self.get_data_source_cache().data_sources
        accelerations = self.get_accelerations_cache()
        return {
            "data_sources": [
                {
                    "name": ds.name,
                    "status": ds.status.value,
                    "last_updated": ds.last_updated,
                    "databases": len(ds.databases),
                }
                for ds in data_sources
            ],
            "accelerations": {
                "count": len(accelerations.accelerations),
                "status": accelerations.status.value,
                "last_updated": accelerations.last_updated,
            },
        }
