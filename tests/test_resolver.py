"""Tests for latest schema and archive selection."""

import pytest

from feed_loader.catalog import parse_catalog
from feed_loader.errors import NotFoundError
from feed_loader.models import CatalogEntry, VersionKey
from feed_loader.resolver import get_latest_archive, get_schema_version, latest_schema
from feed_loader.storage import RemoteFile


def entry(name: str, version: VersionKey | None, full: bool = False) -> CatalogEntry:
    return CatalogEntry(name=name, path=f"/datafeeds/{name}", version=version, is_full_archive=full)


class TestGetLatestArchive:

    @pytest.fixture
    def ppl_test(self):
        files = [
            RemoteFile(name=name, path=f"/datafeeds/people/ppl_test/{name}")
            for name in ("ppl_test_v1_full_1234.zip", "ppl_test_v1_5678.zip")
        ]
        return parse_catalog("ppl_test", files, want_full_archive=True) + parse_catalog(
            "ppl_test", files, want_full_archive=False
        )

    def test_full_archive_selected(self, ppl_test):
        latest = get_latest_archive(ppl_test, 1, want_full_archive=True)

        assert latest.name == "ppl_test_v1_full_1234.zip"
        assert latest.version == VersionKey(1, 1234)
        assert latest.is_full_archive

    def test_incremental_archive_selected(self, ppl_test):
        latest = get_latest_archive(ppl_test, 1, want_full_archive=False)

        assert latest.name == "ppl_test_v1_5678.zip"
        assert latest.version == VersionKey(1, 5678)
        assert not latest.is_full_archive

    def test_highest_sequence_wins(self):
        entries = [
            entry("a_v1_full_10.zip", VersionKey(1, 10), full=True),
            entry("a_v1_full_30.zip", VersionKey(1, 30), full=True),
            entry("a_v1_full_20.zip", VersionKey(1, 20), full=True),
        ]
        assert get_latest_archive(entries, 1, want_full_archive=True).name == "a_v1_full_30.zip"

    def test_other_feed_versions_are_ignored(self):
        entries = [
            entry("a_v1_full_10.zip", VersionKey(1, 10), full=True),
            entry("a_v2_full_99.zip", VersionKey(2, 99), full=True),
        ]
        assert get_latest_archive(entries, 1, want_full_archive=True).name == "a_v1_full_10.zip"

    def test_never_returns_the_wrong_kind(self):
        entries = [
            entry("a_v1_full_10.zip", VersionKey(1, 10), full=True),
            entry("a_v1_50.zip", VersionKey(1, 50)),
        ]
        assert get_latest_archive(entries, 1, want_full_archive=True).is_full_archive
        assert not get_latest_archive(entries, 1, want_full_archive=False).is_full_archive

    def test_unversioned_entries_are_never_selected(self):
        entries = [entry("a_vendor.txt", None), entry("a_v1_3.zip", VersionKey(1, 3))]
        assert get_latest_archive(entries, 1, want_full_archive=False).name == "a_v1_3.zip"

    def test_first_of_equal_versions_wins(self):
        entries = [
            entry("a_v1_full_7.zip", VersionKey(1, 7), full=True),
            entry("a_v1_full_extra_7.zip", VersionKey(1, 7), full=True),
        ]
        assert get_latest_archive(entries, 1, want_full_archive=True).name == "a_v1_full_7.zip"

    def test_nothing_at_target_version_raises(self):
        entries = [entry("a_v2_full_1.zip", VersionKey(2, 1), full=True)]
        with pytest.raises(NotFoundError, match="v1"):
            get_latest_archive(entries, 1, want_full_archive=True)

    def test_empty_catalog_raises(self):
        with pytest.raises(NotFoundError):
            get_latest_archive([], 1, want_full_archive=False)


class TestLatestSchema:

    def test_greatest_version_across_feed_versions(self):
        entries = [
            entry("ppl_v1_schema_40.zip", VersionKey(1, 40)),
            entry("ppl_v2_schema_1.zip", VersionKey(2, 1)),
            entry("ppl_v1_schema_12.zip", VersionKey(1, 12)),
        ]
        assert latest_schema(entries).name == "ppl_v2_schema_1.zip"
        assert get_schema_version(entries) == VersionKey(2, 1)

    def test_first_of_equal_versions_wins(self):
        entries = [
            entry("ppl_v1_schema_2.zip", VersionKey(1, 2)),
            entry("ppl_v1_schema_02.zip", VersionKey(1, 2)),
        ]
        assert latest_schema(entries).name == "ppl_v1_schema_2.zip"

    def test_no_schema_raises(self):
        with pytest.raises(NotFoundError, match="no schema"):
            latest_schema([])

    def test_unversioned_only_raises(self):
        with pytest.raises(NotFoundError):
            get_schema_version([entry("ppl_notes.txt", None)])
