"""
Metadata store: what has been applied for every package and table.

Two tables live next to the loaded data:

    metadata_package_version  one row per (product, bundle)
    metadata_table_version    one row per loaded table, tagged with the
                              (product, bundle) that owns it

Products that share a schema directory are kept apart by the
(product, bundle) key, so dropping one bundle's tables never touches
another's.
"""

from typing import Protocol

import duckdb
import structlog

from feed_loader.errors import NotFoundError, PersistenceError
from feed_loader.models import PackageIdentity, PackageMetadata, VersionKey, utc_now

log = structlog.get_logger()


class MetadataStore(Protocol):
    """Durable record of the schema and data versions applied per package."""

    def ensure_schema(self) -> None:
        """Create the metadata tables if they don't exist."""
        ...

    def get(self, identity: PackageIdentity) -> PackageMetadata:
        """Current metadata for a package. Raises NotFoundError if none."""
        ...

    def upsert(self, metadata: PackageMetadata) -> None:
        """Replace the metadata row for a package."""
        ...

    def upsert_table_version(
        self, table: str, version: VersionKey, identity: PackageIdentity
    ) -> None:
        """Record the version a table was last built or loaded at."""
        ...

    def drop_tables(self, identity: PackageIdentity) -> list[str]:
        """Drop every table registered to a package and return their names."""
        ...


class DuckDBMetadataStore:
    """Metadata store kept in the same DuckDB database as the feed tables."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def ensure_schema(self) -> None:
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata_package_version (
                    product VARCHAR NOT NULL,
                    bundle VARCHAR NOT NULL,
                    schema_feed_version INTEGER NOT NULL,
                    schema_sequence INTEGER NOT NULL,
                    schema_date_loaded TIMESTAMP NOT NULL,
                    package_feed_version INTEGER NOT NULL,
                    package_sequence INTEGER NOT NULL,
                    package_date_loaded TIMESTAMP NOT NULL,
                    PRIMARY KEY (product, bundle)
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata_table_version (
                    tablename VARCHAR NOT NULL,
                    feed_version INTEGER NOT NULL,
                    sequence INTEGER NOT NULL,
                    date_loaded TIMESTAMP NOT NULL,
                    product VARCHAR NOT NULL,
                    bundle VARCHAR NOT NULL,
                    PRIMARY KEY (tablename)
                )
            """)
        except duckdb.Error as e:
            raise PersistenceError(f"Could not create metadata tables: {e}") from e

    def get(self, identity: PackageIdentity) -> PackageMetadata:
        try:
            row = self.conn.execute(
                """
                SELECT schema_feed_version, schema_sequence, schema_date_loaded,
                       package_feed_version, package_sequence, package_date_loaded
                FROM metadata_package_version
                WHERE product = ? AND bundle = ?
                """,
                [identity.product, identity.bundle],
            ).fetchone()
        except duckdb.Error as e:
            raise PersistenceError(f"Could not read metadata for {identity.product}: {e}") from e

        if row is None:
            raise NotFoundError(
                f"No metadata for product {identity.product} bundle {identity.bundle}"
            )

        return PackageMetadata(
            identity=identity,
            schema_version=VersionKey(row[0], row[1]),
            schema_loaded_at=row[2],
            data_version=VersionKey(row[3], row[4]),
            data_loaded_at=row[5],
        )

    def upsert(self, metadata: PackageMetadata) -> None:
        identity = metadata.identity
        try:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO metadata_package_version
                    (product, bundle, schema_feed_version, schema_sequence,
                     schema_date_loaded, package_feed_version, package_sequence,
                     package_date_loaded)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    identity.product,
                    identity.bundle,
                    metadata.schema_version.feed_version,
                    metadata.schema_version.sequence,
                    metadata.schema_loaded_at,
                    metadata.data_version.feed_version,
                    metadata.data_version.sequence,
                    metadata.data_loaded_at,
                ],
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Could not write metadata for {identity.product}: {e}") from e

    def upsert_table_version(
        self, table: str, version: VersionKey, identity: PackageIdentity
    ) -> None:
        try:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO metadata_table_version
                    (tablename, feed_version, sequence, date_loaded, product, bundle)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    table,
                    version.feed_version,
                    version.sequence,
                    utc_now(),
                    identity.product,
                    identity.bundle,
                ],
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Could not record version of table {table}: {e}") from e

    def get_table_version(self, table: str) -> VersionKey:
        """Version a table was last loaded at. Raises NotFoundError."""
        try:
            row = self.conn.execute(
                "SELECT feed_version, sequence FROM metadata_table_version WHERE tablename = ?",
                [table],
            ).fetchone()
        except duckdb.Error as e:
            raise PersistenceError(f"Could not read version of table {table}: {e}") from e

        if row is None:
            raise NotFoundError(f"Table {table} has no recorded version")
        return VersionKey(row[0], row[1])

    def drop_tables(self, identity: PackageIdentity) -> list[str]:
        try:
            rows = self.conn.execute(
                """
                SELECT tablename FROM metadata_table_version
                WHERE product = ? AND bundle = ?
                ORDER BY tablename
                """,
                [identity.product, identity.bundle],
            ).fetchall()
            tables = [row[0] for row in rows]

            for table in tables:
                self.conn.execute(f"DROP TABLE IF EXISTS {table}")

            self.conn.execute(
                "DELETE FROM metadata_table_version WHERE product = ? AND bundle = ?",
                [identity.product, identity.bundle],
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Could not drop tables for {identity.product}: {e}") from e

        if tables:
            log.info("tables_dropped", fs_product=identity.product, bundle=identity.bundle, tables=tables)
        return tables
