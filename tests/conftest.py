"""
Shared test fixtures.

The vendor feed is modelled as a temporary directory tree of real zip
archives served through LocalStorage, and the relational store is an
in-memory DuckDB database.
"""

import zipfile
from pathlib import Path

import duckdb
import pytest
import structlog

from feed_loader.config import Config
from feed_loader.models import PackageIdentity

PEOPLE_DDL = """
-- People tables, feed version 1
CREATE TABLE ppl_names (
    person_id VARCHAR,
    name VARCHAR
);
CREATE TABLE ppl_jobs (
    person_id VARCHAR,
    title VARCHAR
);
"""

PEOPLE_NAMES = 'person_id|name\nP1|"Smith, Jo"\nP2|Lee\n'
PEOPLE_JOBS = "person_id|title\nP1|Analyst\n"


def write_zip(path: Path, members: dict[str, str]) -> Path:
    """Write a zip archive holding the given text members."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in members.items():
            zf.writestr(name, content)
    return path


class Feed:
    """Builds a vendor feed tree under a root directory."""

    def __init__(self, root: Path):
        self.root = root

    def publish_schema(self, dataset: str, name: str, ddl: str = PEOPLE_DDL) -> Path:
        return write_zip(
            self.root / "documents" / f"docs_{dataset}" / name,
            {f"{dataset}_schema.sql": ddl, "readme.txt": "table documentation"},
        )

    def publish_data(self, fs_package: str, product: str, name: str, members: dict[str, str]) -> Path:
        return write_zip(self.root / fs_package / product / name, members)

    def add_file(self, relpath: str, content: str = "") -> Path:
        path = self.root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path


@pytest.fixture
def feed(tmp_path) -> Feed:
    root = tmp_path / "datafeeds"
    root.mkdir()
    return Feed(root)


@pytest.fixture
def people() -> PackageIdentity:
    return PackageIdentity(
        dataset="ppl",
        fs_package="people",
        product="ppl_premium",
        bundle="ppl_premium",
        feed_version=1,
    )


@pytest.fixture
def conn():
    connection = duckdb.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def make_config(tmp_path, feed):
    """Build a Config pointing at the test feed and a temporary workspace."""
    def _make(*packages: PackageIdentity) -> Config:
        return Config(
            packages=tuple(packages),
            base_dir=str(feed.root),
            workspace=str(tmp_path / "feeds"),
        )
    return _make


@pytest.fixture(autouse=True)
def reset_logging():
    """main() reconfigures structlog globally; put the defaults back."""
    yield
    structlog.reset_defaults()
