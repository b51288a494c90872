"""
Load orchestration: bring every configured package up to date.

For each package, in configured order:
1. Read the stored metadata (none means a first-time load)
2. Find the newest published schema document
3. If it is newer than the stored schema, drop the package's tables and
   rebuild them from the schema DDL
4. Load the newest full data archive for the package's feed version,
   unless that version has already been loaded
5. Replace the package metadata

A failing package is logged and recorded, and the run moves on to the
next one. Nothing is rolled back: tables already reloaded keep their new
contents, but the package metadata is not updated, so the next run sees
the package as out of date and reloads it.
"""

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from feed_loader.archive import (
    created_table_name,
    split_statements,
    table_name_for,
    unpack_archive,
)
from feed_loader.catalog import parse_catalog, parse_schema_catalog
from feed_loader.config import SCHEMA_DOCS_DIR, Config
from feed_loader.errors import NotFoundError, TableExistsError, TransportError
from feed_loader.loader import TableSink
from feed_loader.metadata import MetadataStore
from feed_loader.metrics import MetricsClient
from feed_loader.models import (
    CatalogEntry,
    PackageIdentity,
    PackageMetadata,
    VersionKey,
    utc_now,
)
from feed_loader.resolver import get_latest_archive, latest_schema
from feed_loader.storage import RemoteStore

log = structlog.get_logger()


class LoadState(str, Enum):
    """Steps a package goes through. ERROR can follow any step."""
    START = "start"
    CHECK_METADATA = "check_metadata"
    FIND_SCHEMA = "find_schema"
    SCHEMA_STALE = "schema_stale"
    SCHEMA_CURRENT = "schema_current"
    RELOAD_SCHEMA = "reload_schema"
    FULL_LOAD = "full_load"
    PERSIST_METADATA = "persist_metadata"
    DONE = "done"
    ERROR = "error"


@dataclass
class DataLoadOutcome:
    """Result of a data load step."""
    version: VersionKey
    loaded: bool                        # False when the version was already loaded
    tables: list[str] = field(default_factory=list)
    rows: int = 0


@dataclass
class PackageLoadResult:
    """What happened to one package during a run."""
    identity: PackageIdentity
    state: LoadState = LoadState.START
    schema_version: VersionKey | None = None
    schema_rebuilt: bool = False
    data_version: VersionKey | None = None
    data_loaded: bool = False
    tables_loaded: list[str] = field(default_factory=list)
    rows_loaded: int = 0
    failed_step: LoadState | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == LoadState.DONE


@dataclass
class RunSummary:
    """Per-package results of a run, in configured order."""
    results: list[PackageLoadResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def failures(self) -> list[PackageLoadResult]:
        return [r for r in self.results if not r.succeeded]


def is_schema_out_of_date(observed: VersionKey, current: PackageMetadata | None) -> bool:
    """A schema is stale when nothing is stored or the observed one sorts strictly after it."""
    return current is None or observed > current.schema_version


class LoadOrchestrator:
    """Loads configured packages one after another."""

    def __init__(
        self,
        config: Config,
        remote: RemoteStore,
        sink: TableSink,
        metadata: MetadataStore,
        metrics: MetricsClient | None = None,
    ) -> None:
        self.config = config
        self.remote = remote
        self.sink = sink
        self.metadata = metadata
        self.metrics = metrics
        self.workspace = Path(config.workspace)

    def load_packages(self) -> RunSummary:
        """
        Load every configured package.

        The workspace is emptied before the first package and after the
        last. A failing package never stops the run.
        """
        self.refresh_workspace()

        summary = RunSummary()
        for identity in self.config.packages:
            result = self.load_package(identity)
            summary.results.append(result)
            if self.metrics is not None:
                self.metrics.record_package(result)

        self.refresh_workspace()

        log.info(
            "run_complete",
            packages_succeeded=summary.succeeded,
            packages_failed=summary.failed,
            failed_products=[r.identity.product for r in summary.failures],
        )
        if self.metrics is not None:
            self.metrics.record_run(summary)
            self.metrics.flush()
        return summary

    def load_package(self, identity: PackageIdentity) -> PackageLoadResult:
        """
        Bring one package up to date.

        Never raises: failures are logged and returned in the result with
        the step they happened in.
        """
        result = PackageLoadResult(identity=identity)
        log.info("package_load_started", fs_product=identity.product, bundle=identity.bundle)

        try:
            result.state = LoadState.CHECK_METADATA
            current = self.check_metadata(identity)

            result.state = LoadState.FIND_SCHEMA
            schema = self.find_latest_schema(identity)
            result.schema_version = schema.version

            if is_schema_out_of_date(schema.version, current):
                result.state = LoadState.SCHEMA_STALE
                log.info(
                    "schema_out_of_date",
                    fs_product=identity.product,
                    observed=str(schema.version),
                    stored=str(current.schema_version) if current else None,
                )

                result.state = LoadState.RELOAD_SCHEMA
                self.reload_schema(identity, schema)
                result.schema_rebuilt = True
                schema_version = schema.version
                schema_loaded_at = utc_now()

                # Rebuilt tables are empty: reload, but never below the stored data version
                result.state = LoadState.FULL_LOAD
                outcome = self.full_load(
                    identity, None, floor=current.data_version if current else None
                )
            else:
                result.state = LoadState.SCHEMA_CURRENT
                log.debug("schema_up_to_date", fs_product=identity.product, version=str(current.schema_version))
                schema_version = current.schema_version
                schema_loaded_at = current.schema_loaded_at

                result.state = LoadState.FULL_LOAD
                outcome = self.incremental_load(identity, current.data_version)

            result.data_version = outcome.version
            result.data_loaded = outcome.loaded
            result.tables_loaded = outcome.tables
            result.rows_loaded = outcome.rows

            result.state = LoadState.PERSIST_METADATA
            updated = PackageMetadata(
                identity=identity,
                schema_version=schema_version,
                schema_loaded_at=schema_loaded_at,
                data_version=outcome.version,
                data_loaded_at=utc_now() if outcome.loaded else current.data_loaded_at,
            )
            self.persist_metadata(updated, current)

            result.state = LoadState.DONE
        except Exception as e:
            result.failed_step = result.state
            result.state = LoadState.ERROR
            result.error = str(e)
            result.error_type = type(e).__name__
            log.exception(
                "package_load_failed",
                fs_product=identity.product,
                bundle=identity.bundle,
                step=result.failed_step.value,
                error=str(e),
                error_type=type(e).__name__,
            )

        return result

    def check_metadata(self, identity: PackageIdentity) -> PackageMetadata | None:
        """Stored metadata for a package, or None before its first load."""
        self.metadata.ensure_schema()
        try:
            return self.metadata.get(identity)
        except NotFoundError:
            log.info("package_metadata_not_found", fs_product=identity.product, bundle=identity.bundle)
            return None

    def find_latest_schema(self, identity: PackageIdentity) -> CatalogEntry:
        """Newest schema document published for the package's dataset."""
        listing = self.remote.list_dir(self.schema_dir(identity))
        schema = latest_schema(parse_schema_catalog(identity.dataset, listing))
        log.info("latest_schema_found", fs_product=identity.product, schema=schema.name)
        return schema

    def reload_schema(self, identity: PackageIdentity, schema: CatalogEntry) -> list[str]:
        """
        Rebuild a package's tables from a schema document.

        Tables registered to the package are dropped first. Every CREATE
        TABLE statement in the document's .sql files is run and the table
        registered to the package. Tables that already exist (created by a
        sibling package sharing the schema) are skipped.

        Returns:
            Names of the tables created
        """
        dropped = self.metadata.drop_tables(identity)
        log.debug("schema_reload_started", fs_product=identity.product, dropped=dropped)

        files = self._fetch_and_unpack(identity, schema)

        created = []
        for path in files:
            if path.suffix.lower() != ".sql":
                continue

            try:
                script = path.read_text()
            except OSError as e:
                raise TransportError(f"Could not read schema file {path}: {e}", path=str(path)) from e

            for statement in split_statements(script):
                table = created_table_name(statement)
                try:
                    self.sink.execute_ddl(statement)
                except TableExistsError:
                    log.warning("table_already_exists", fs_product=identity.product, table=table)
                    continue

                if table:
                    self.metadata.upsert_table_version(table, schema.version, identity)
                    created.append(table)

        log.info(
            "schema_reloaded",
            fs_product=identity.product,
            version=str(schema.version),
            tables_created=len(created),
        )
        return created

    def incremental_load(
        self, identity: PackageIdentity, current: VersionKey | None
    ) -> DataLoadOutcome:
        """
        Load what was published since the current version.

        Incremental archives are not applied yet; this performs a full load.
        """
        return self.full_load(identity, current)

    def full_load(
        self,
        identity: PackageIdentity,
        current: VersionKey | None,
        floor: VersionKey | None = None,
    ) -> DataLoadOutcome:
        """
        Load the newest full archive at the package's feed version.

        Every flat file in the archive replaces the contents of the table
        it is named after, and the table's version is recorded.

        Args:
            identity: Package to load
            current: Data version already loaded, or None to load regardless
            floor: Oldest acceptable archive version. Used after a schema
                rebuild, when the load is forced but the recorded data
                version must not go backwards.

        Returns:
            The loaded version, or the current one unchanged when the newest
            archive has already been loaded

        Raises:
            NotFoundError: If no full archive exists at the feed version, or
                the newest one is older than floor
        """
        listing = self.remote.list_dir(self.data_dir(identity))
        catalog = parse_catalog(identity.bundle, listing, want_full_archive=True)
        archive = get_latest_archive(catalog, identity.feed_version, want_full_archive=True)

        if floor is not None and archive.version < floor:
            raise NotFoundError(
                f"Newest full archive {archive.name} is older than the loaded "
                f"data version {floor}"
            )

        if current is not None and current >= archive.version:
            log.info(
                "data_up_to_date",
                fs_product=identity.product,
                version=str(current),
                latest=str(archive.version),
            )
            return DataLoadOutcome(version=current, loaded=False)

        files = self._fetch_and_unpack(identity, archive)

        outcome = DataLoadOutcome(version=archive.version, loaded=True)
        for path in files:
            table = table_name_for(path)
            self.sink.clear(table)
            try:
                rows = self.sink.load_file(path, table)
            except Exception:
                log.error("table_load_failed", fs_product=identity.product, table=table, file=str(path))
                raise
            self.metadata.upsert_table_version(table, archive.version, identity)

            outcome.tables.append(table)
            outcome.rows += rows
            log.info(
                "table_loaded",
                fs_product=identity.product,
                table=table,
                rows=rows,
                version=str(archive.version),
            )

        log.info(
            "package_data_loaded",
            fs_product=identity.product,
            version=str(archive.version),
            tables=len(outcome.tables),
            rows=outcome.rows,
        )
        return outcome

    def persist_metadata(self, updated: PackageMetadata, current: PackageMetadata | None) -> None:
        """Replace the package metadata unless nothing changed."""
        if updated == current:
            log.info("package_up_to_date", fs_product=updated.identity.product, version=str(updated.data_version))
            return

        self.metadata.upsert(updated)
        log.info(
            "package_metadata_updated",
            fs_product=updated.identity.product,
            schema_version=str(updated.schema_version),
            data_version=str(updated.data_version),
        )

    def refresh_workspace(self) -> None:
        """Empty the workspace, creating it if needed."""
        log.info("workspace_refresh", workspace=str(self.workspace))
        self.workspace.mkdir(parents=True, exist_ok=True)
        for child in self.workspace.iterdir():
            log.debug("workspace_entry_removed", entry=child.name)
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    def data_dir(self, identity: PackageIdentity) -> str:
        """<base>/<fs_package>/<product>"""
        return self.remote.join(self.config.base_dir, identity.fs_package, identity.product)

    def schema_dir(self, identity: PackageIdentity) -> str:
        """<base>/documents/docs_<dataset>"""
        return self.remote.join(self.config.base_dir, SCHEMA_DOCS_DIR, f"docs_{identity.dataset}")

    def _fetch_and_unpack(self, identity: PackageIdentity, entry: CatalogEntry) -> list[Path]:
        staging = self.workspace / identity.bundle
        local = self.remote.fetch(entry.path, staging)
        log.info("archive_fetched", fs_product=identity.product, archive=entry.name)
        return unpack_archive(local, staging / Path(entry.name).stem)
