"""
Pick the revision to apply from a parsed catalog.

Two independent queries over catalog entries:
- the newest published schema document
- the newest data archive at the feed version a package targets

Unversioned entries are never selected. Among equal versions the first
entry in listing order wins, so repeated runs over the same listing make
the same choice.
"""

from collections.abc import Iterable

from feed_loader.errors import NotFoundError
from feed_loader.models import CatalogEntry, VersionKey


def latest_schema(entries: Iterable[CatalogEntry]) -> CatalogEntry:
    """
    Return the schema document with the greatest version.

    Raises:
        NotFoundError: If there is no versioned schema document
    """
    latest = None
    for entry in entries:
        if entry.version is None:
            continue
        if latest is None or entry.version > latest.version:
            latest = entry

    if latest is None:
        raise NotFoundError("There was no schema to process")
    return latest


def get_schema_version(entries: Iterable[CatalogEntry]) -> VersionKey:
    """Version of the newest schema document. Raises NotFoundError."""
    return latest_schema(entries).version


def get_latest_archive(
    entries: Iterable[CatalogEntry],
    target_feed_version: int,
    want_full_archive: bool,
) -> CatalogEntry:
    """
    Return the archive with the highest sequence at the target feed version.

    Args:
        entries: Catalog entries for one bundle
        target_feed_version: Feed version the package is pinned to
        want_full_archive: True for full snapshots, False for incrementals

    Returns:
        The selected entry

    Raises:
        NotFoundError: If no archive of the requested kind matches the
            target feed version
    """
    latest = None
    for entry in entries:
        if entry.version is None or entry.is_full_archive != want_full_archive:
            continue
        if entry.version.feed_version != target_feed_version:
            continue
        if latest is None or entry.version.sequence > latest.version.sequence:
            latest = entry

    if latest is None:
        kind = "full" if want_full_archive else "incremental"
        raise NotFoundError(
            f"No {kind} archive found for feed version v{target_feed_version}"
        )
    return latest
