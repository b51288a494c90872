"""
Table sink implementations for the feed loader.

Provides a unified interface for pouring vendor flat files into tables of
the local relational store and for running the vendor's schema DDL.

Vendor flat files are pipe-delimited, optionally enclosed in double
quotes, with a header line naming the columns.
"""

from pathlib import Path
from typing import Protocol

import duckdb
import polars as pl
import structlog

from feed_loader.errors import PersistenceError, TableExistsError

log = structlog.get_logger()

FIELD_SEPARATOR = "|"
QUOTE_CHAR = '"'


class TableSink(Protocol):
    """
    Protocol defining the table sink interface.

    Any backend must implement these three methods:
    - execute_ddl: Run one schema statement
    - clear: Remove every row of a table
    - load_file: Bulk-load a flat file into a table
    """

    def execute_ddl(self, statement: str) -> None:
        """
        Run a DDL statement.

        Raises TableExistsError when a CREATE TABLE hits an existing table.
        """
        ...

    def clear(self, table: str) -> None:
        """Delete every row of a table."""
        ...

    def load_file(self, path: Path, table: str) -> int:
        """Load a flat file into a table and return the number of rows."""
        ...


class DuckDBSink:
    """
    DuckDB table sink.

    Reads flat files with Polars and inserts them through DuckDB's ability
    to query Polars DataFrames directly via Apache Arrow.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        """
        Args:
            conn: Open DuckDB connection, shared with the metadata store
        """
        self.conn = conn

    def execute_ddl(self, statement: str) -> None:
        try:
            self.conn.execute(statement)
        except duckdb.CatalogException as e:
            if "already exists" in str(e):
                raise TableExistsError(str(e)) from e
            raise PersistenceError(f"DDL failed: {e}") from e
        except duckdb.Error as e:
            raise PersistenceError(f"DDL failed: {e}") from e

    def clear(self, table: str) -> None:
        try:
            self.conn.execute(f"DELETE FROM {table}")
        except duckdb.Error as e:
            raise PersistenceError(f"Could not clear table {table}: {e}") from e

    def load_file(self, path: Path, table: str) -> int:
        """
        Load a pipe-delimited flat file into an existing table.

        Every column is read as a string (no type inference); DuckDB casts
        to the column types declared by the vendor DDL on insert. Columns
        are matched by position, the header line is skipped.

        Args:
            path: Local flat file
            table: Target table, which must already exist

        Returns:
            Number of rows loaded
        """
        try:
            df = pl.read_csv(
                path,
                separator=FIELD_SEPARATOR,
                quote_char=QUOTE_CHAR,
                infer_schema_length=0,
            )
        except (pl.exceptions.PolarsError, OSError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

        try:
            # DuckDB can reference 'df' directly from the Python scope
            self.conn.execute(f"INSERT INTO {table} SELECT * FROM df")
        except duckdb.Error as e:
            raise PersistenceError(f"Could not load {path} into {table}: {e}") from e

        log.debug("table_file_loaded", table=table, file=str(path), rows=len(df))
        return len(df)
