"""Tests for the DuckDB metadata store."""

from datetime import datetime

import pytest

from feed_loader.errors import NotFoundError
from feed_loader.metadata import DuckDBMetadataStore
from feed_loader.models import PackageIdentity, PackageMetadata, VersionKey


@pytest.fixture
def store(conn):
    store = DuckDBMetadataStore(conn)
    store.ensure_schema()
    return store


@pytest.fixture
def sibling():
    return PackageIdentity("ppl", "people", "ppl_premium", "ppl_premium_extra", 1)


def metadata_for(identity, schema=VersionKey(1, 12), data=VersionKey(1, 1234)):
    return PackageMetadata(
        identity=identity,
        schema_version=schema,
        schema_loaded_at=datetime(2024, 3, 1, 6, 0, 0, 123456),
        data_version=data,
        data_loaded_at=datetime(2024, 3, 2, 6, 30, 0),
    )


class TestPackageMetadata:

    def test_ensure_schema_is_repeatable(self, store):
        store.ensure_schema()

    def test_get_without_row_raises(self, store, people):
        with pytest.raises(NotFoundError):
            store.get(people)

    def test_upsert_then_get(self, store, people):
        stored = metadata_for(people)
        store.upsert(stored)

        assert store.get(people) == stored

    def test_upsert_replaces_row(self, store, people, conn):
        store.upsert(metadata_for(people))
        store.upsert(metadata_for(people, data=VersionKey(1, 1300)))

        assert store.get(people).data_version == VersionKey(1, 1300)
        assert conn.execute("SELECT count(*) FROM metadata_package_version").fetchone() == (1,)

    def test_rows_are_keyed_on_product_and_bundle(self, store, people, sibling):
        store.upsert(metadata_for(people))

        with pytest.raises(NotFoundError):
            store.get(sibling)


class TestTableVersions:

    def test_upsert_and_get(self, store, people):
        store.upsert_table_version("ppl_names", VersionKey(1, 12), people)
        store.upsert_table_version("ppl_names", VersionKey(1, 1234), people)

        assert store.get_table_version("ppl_names") == VersionKey(1, 1234)

    def test_unknown_table_raises(self, store):
        with pytest.raises(NotFoundError):
            store.get_table_version("ppl_names")

    def test_drop_tables_only_touches_own_bundle(self, store, conn, people, sibling):
        for table in ("ppl_names", "ppl_jobs", "ppl_extra"):
            conn.execute(f"CREATE TABLE {table} (x VARCHAR)")
        store.upsert_table_version("ppl_names", VersionKey(1, 1), people)
        store.upsert_table_version("ppl_jobs", VersionKey(1, 1), people)
        store.upsert_table_version("ppl_extra", VersionKey(1, 1), sibling)

        dropped = store.drop_tables(people)

        assert dropped == ["ppl_jobs", "ppl_names"]
        remaining = {row[0] for row in conn.execute("SELECT table_name FROM information_schema.tables").fetchall()}
        assert "ppl_extra" in remaining
        assert not {"ppl_names", "ppl_jobs"} & remaining
        assert store.get_table_version("ppl_extra") == VersionKey(1, 1)
        with pytest.raises(NotFoundError):
            store.get_table_version("ppl_names")

    def test_drop_tables_with_nothing_registered(self, store, people):
        assert store.drop_tables(people) == []

    def test_drop_tables_tolerates_already_missing_table(self, store, people):
        store.upsert_table_version("ppl_names", VersionKey(1, 1), people)

        assert store.drop_tables(people) == ["ppl_names"]
