# Observability APM MCP Server
# File: tests/test_catalog_cache.py
# Version: v1

import json

import pytest

from observability_apm_mcp.catalog_cache import (
    ACCELERATIONS_CACHE_KEY,
    DATA_SOURCE_CACHE_KEY,
    AccelerationsCacheData,
    CachedAcceleration,
    CachedColumn,
    CachedDatabase,
    CachedDataSource,
    CachedDataSourceStatus,
    CachedTable,
    CatalogCacheManager,
    DataSourceCacheData,
    DatabaseNotFoundError,
    DataSourceNotFoundError,
    FileStorage,
    MemoryStorage,
    TableNotFoundError,
)

FIXED_NOW = "2024-01-01T00:00:00.000Z"


def _manager(storage=None) -> CatalogCacheManager:
    return CatalogCacheManager(storage or MemoryStorage(), clock=lambda: FIXED_NOW)


def _sample_data_source() -> CachedDataSource:
    orders = CachedTable(
        name="orders",
        columns=[
            CachedColumn(field_name="id", data_type="bigint"),
            CachedColumn(field_name="amount", data_type="double"),
        ],
    )
    sales = CachedDatabase(
        name="sales",
        tables=[orders],
        last_updated=FIXED_NOW,
        status=CachedDataSourceStatus.UPDATED,
    )
    return CachedDataSource(
        name="glue",
        last_updated=FIXED_NOW,
        status=CachedDataSourceStatus.UPDATED,
        databases=[sales],
    )


def test_empty_cache_defaults() -> None:
    manager = _manager()

    data = manager.get_data_source_cache()
    assert data.version == "1.0"
    assert data.data_sources == []

    acc = manager.get_accelerations_cache()
    assert acc.version == "1.0"
    assert acc.accelerations == []
    assert acc.last_updated == ""
    assert acc.status is CachedDataSourceStatus.EMPTY


def test_get_or_create_does_not_persist() -> None:
    storage = MemoryStorage()
    manager = _manager(storage)

    ds = manager.get_or_create_data_source("glue")
    assert ds.name == "glue"
    assert ds.status is CachedDataSourceStatus.EMPTY
    assert ds.last_updated == FIXED_NOW
    assert ds.databases == []
    assert storage.get_item(DATA_SOURCE_CACHE_KEY) is None


def test_add_or_update_replaces_by_name() -> None:
    manager = _manager()
    manager.add_or_update_data_source(_sample_data_source())
    manager.add_or_update_data_source(CachedDataSource(name="s3"))
    manager.add_or_update_data_source(
        CachedDataSource(name="glue", status=CachedDataSourceStatus.FAILED)
    )

    names = [ds.name for ds in manager.get_data_source_cache().data_sources]
    assert names == ["glue", "s3"]
    assert manager.get_or_create_data_source("glue").status is CachedDataSourceStatus.FAILED


def test_lookups_and_not_found_messages() -> None:
    manager = _manager()
    manager.add_or_update_data_source(_sample_data_source())

    table = manager.get_table("glue", "sales", "orders")
    assert [c.field_name for c in table.columns] == ["id", "amount"]

    with pytest.raises(DataSourceNotFoundError) as exc:
        manager.get_database("missing", "sales")
    assert str(exc.value) == "DataSource not found exception: missing"

    with pytest.raises(DatabaseNotFoundError) as exc:
        manager.get_database("glue", "nope")
    assert str(exc.value) == "Database not found exception: nope"

    with pytest.raises(TableNotFoundError) as exc:
        manager.get_table("glue", "sales", "nope")
    assert str(exc.value) == "Table not found exception: nope"


def test_update_database_and_table() -> None:
    manager = _manager()
    manager.add_or_update_data_source(_sample_data_source())

    manager.update_database(
        "glue", CachedDatabase(name="sales", status=CachedDataSourceStatus.FAILED)
    )
    assert manager.get_database("glue", "sales").status is CachedDataSourceStatus.FAILED
    assert manager.get_database("glue", "sales").tables == []

    with pytest.raises(DatabaseNotFoundError):
        manager.update_database("glue", CachedDatabase(name="other"))

    manager.update_database("glue", _sample_data_source().databases[0])
    manager.update_table(
        "glue",
        "sales",
        CachedTable(name="orders", columns=[CachedColumn("id", "string")]),
    )
    assert manager.get_table("glue", "sales", "orders").columns[0].data_type == "string"

    with pytest.raises(TableNotFoundError):
        manager.update_table("glue", "sales", CachedTable(name="refunds"))


def test_persisted_layout_uses_camel_case() -> None:
    storage = MemoryStorage()
    manager = _manager(storage)
    manager.add_or_update_data_source(_sample_data_source())

    payload = json.loads(storage.get_item(DATA_SOURCE_CACHE_KEY))
    assert payload["version"] == "1.0"
    ds = payload["dataSources"][0]
    assert ds["lastUpdated"] == FIXED_NOW
    assert ds["status"] == "Updated"
    assert ds["databases"][0]["tables"][0]["columns"][0] == {
        "fieldName": "id",
        "dataType": "bigint",
    }


def test_accelerations_round_trip_and_clear() -> None:
    storage = MemoryStorage()
    manager = _manager(storage)
    manager.save_accelerations_cache(
        AccelerationsCacheData(
            accelerations=[
                CachedAcceleration(
                    flint_index_name="flint_glue_sales_orders_skipping_index",
                    type="skipping",
                    database="sales",
                    table="orders",
                    index_name="skipping_index",
                    auto_refresh=True,
                    status="active",
                )
            ],
            last_updated=FIXED_NOW,
            status=CachedDataSourceStatus.UPDATED,
        )
    )

    raw = json.loads(storage.get_item(ACCELERATIONS_CACHE_KEY))
    assert raw["accelerations"][0]["flintIndexName"] == "flint_glue_sales_orders_skipping_index"
    assert raw["accelerations"][0]["autoRefresh"] is True

    acc = manager.get_accelerations_cache()
    assert acc.status is CachedDataSourceStatus.UPDATED
    assert acc.accelerations[0].table == "orders"

    manager.clear_accelerations_cache()
    assert storage.get_item(ACCELERATIONS_CACHE_KEY) is None
    assert manager.get_accelerations_cache().status is CachedDataSourceStatus.EMPTY


def test_unknown_status_and_corrupt_entry_degrade() -> None:
    storage = MemoryStorage()
    storage.set_item(
        DATA_SOURCE_CACHE_KEY,
        json.dumps({"version": "1.0", "dataSources": [{"name": "glue", "status": "Weird"}]}),
    )
    manager = _manager(storage)
    assert manager.get_or_create_data_source("glue").status is CachedDataSourceStatus.EMPTY

    storage.set_item(DATA_SOURCE_CACHE_KEY, "{not json")
    assert manager.get_data_source_cache().data_sources == []


def test_file_storage_persists_between_managers(tmp_path) -> None:
    first = _manager(FileStorage(tmp_path / "catalog"))
    first.add_or_update_data_source(_sample_data_source())
    assert (tmp_path / "catalog" / f"{DATA_SOURCE_CACHE_KEY}.json").exists()

    second = _manager(FileStorage(tmp_path / "catalog"))
    assert second.get_table("glue", "sales", "orders").name == "orders"

    second.clear_data_source_cache()
    second.clear_data_source_cache()
    assert first.get_data_source_cache().data_sources == []


def test_summary_counts() -> None:
    manager = _manager()
    manager.add_or_update_data_source(_sample_data_source())
    summary = manager.summary()
    assert summary["data_sources"] == [
        {"name": "glue", "status": "Updated", "last_updated": FIXED_NOW, "databases": 1}
    ]
    assert summary["accelerations"]["count"] == 0
    assert summary["accelerations"]["status"] == "Empty"


def test_data_source_cache_round_trip() -> None:
    manager = _manager()
    data = DataSourceCacheData(
        version="1.1",
        data_sources=[
            _sample_data_source(),
            CachedDataSource(name="s3", status=CachedDataSourceStatus.FAILED),
        ],
    )
    manager.save_data_source_cache(data)
    assert manager.get_data_source_cache() == data


def test_malformed_children_are_skipped() -> None:
    ds = CachedDataSource.from_dict(
        {
            "name": "glue",
            "databases": [
                "not-a-database",
                {"name": "sales", "tables": {"orders": {}}},
                {
                    "name": "hr",
                    "tables": [
                        {"name": "people", "columns": ["id", {"fieldName": "x", "dataType": "int"}]}
                    ],
                },
            ],
        }
    )
    assert [d.name for d in ds.databases] == ["sales", "hr"]
    assert ds.databases[0].tables == []
    assert ds.databases[1].tables[0].columns == [CachedColumn("x", "int")]

    assert CachedDataSource.from_dict({"name": "s3", "databases": {"a": {}}}).databases == []


def test_file_storage_leaves_no_temp_files(tmp_path) -> None:
    storage = FileStorage(tmp_path)
    storage.set_item("k", "one")
    storage.set_item("k", "two")

    assert storage.get_item("k") == "two"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["k.json"]
