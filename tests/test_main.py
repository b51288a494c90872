"""Tests for the command line entry point."""

from unittest.mock import patch

import duckdb
import pytest

from feed_loader.config import Config
from feed_loader.errors import TransportError
from feed_loader.main import create_remote, main
from feed_loader.storage import GCSStorage, LocalStorage
from tests.conftest import PEOPLE_NAMES


@pytest.fixture
def environment(monkeypatch, tmp_path, feed):
    monkeypatch.delenv("PACKAGES_CONFIG_PATH", raising=False)
    monkeypatch.delenv("REMOTE_BACKEND", raising=False)
    monkeypatch.delenv("DYNATRACE_ENDPOINT", raising=False)
    monkeypatch.setenv("PACKAGES", "ppl,people,ppl_premium,1")
    monkeypatch.setenv("FEED_BASE_DIR", str(feed.root))
    monkeypatch.setenv("WORKSPACE", str(tmp_path / "feeds"))
    monkeypatch.setenv("DUCKDB_PATH", str(tmp_path / "feeds.duckdb"))
    monkeypatch.setenv("DYNATRACE_TOKEN_PATH", str(tmp_path / "no-token"))
    monkeypatch.setenv("LOG_LEVEL", "warning")
    return tmp_path / "feeds.duckdb"


def test_successful_run_exits_zero(environment, feed):
    feed.publish_schema("ppl", "ppl_v1_schema_12.zip")
    feed.publish_data("people", "ppl_premium", "ppl_premium_v1_full_1234.zip", {"ppl_names.txt": PEOPLE_NAMES})

    assert main() == 0

    conn = duckdb.connect(str(environment))
    try:
        assert conn.execute("SELECT count(*) FROM ppl_names").fetchone() == (2,)
    finally:
        conn.close()


def test_failed_package_exits_one(environment, feed):
    feed.add_file("documents/docs_ppl/readme.txt")

    assert main() == 1


def test_bad_config_exits_one(environment, monkeypatch):
    monkeypatch.setenv("PACKAGES", "ppl,people")

    assert main() == 1


def test_create_remote(people, tmp_path):
    local = Config(packages=(people,), workspace=str(tmp_path / "feeds"))
    assert isinstance(create_remote(local), LocalStorage)

    gcs = Config(packages=(people,), workspace=str(tmp_path / "feeds"), backend="gcs")
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("feed_loader.main.GCSStorage", lambda: GCSStorage(client=object()))
        assert isinstance(create_remote(gcs), GCSStorage)


def test_create_remote_sftp(people, tmp_path):
    config = Config(
        packages=(people,),
        workspace=str(tmp_path / "feeds"),
        backend="sftp",
        sftp_host="sftp.vendor.example",
        sftp_port=6671,
        sftp_user="loader",
        sftp_key_path="/secrets/vendor-key",
    )
    with patch("feed_loader.main.SFTPStorage.connect") as connect:
        remote = create_remote(config)

    connect.assert_called_once_with(
        "sftp.vendor.example", 6671, "loader", "/secrets/vendor-key", known_hosts_path=""
    )
    assert remote is connect.return_value


def test_sftp_connection_failure_exits_one(environment, monkeypatch):
    monkeypatch.setenv("REMOTE_BACKEND", "sftp")
    monkeypatch.setenv("SFTP_HOST", "sftp.vendor.example")
    monkeypatch.setenv("SFTP_USER", "loader")

    with patch("feed_loader.main.SFTPStorage.connect", side_effect=TransportError("refused")):
        assert main() == 1
