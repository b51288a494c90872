"""
Decode vendor file names into catalog entries.

Data archives are named:

    <bundle>_v<feed_version>_[full_]<sequence>.<ext>

Schema documents are named:

    <dataset>_v<feed_version>_schema_<sequence>.<ext>

Vendor directories mix archives with documentation and nested folders, so
names that do not follow the grammar are dropped here rather than raised.
"""

import re
from collections.abc import Iterable

import structlog

from feed_loader.errors import ParseError
from feed_loader.models import CatalogEntry, VersionKey
from feed_loader.storage import RemoteFile

log = structlog.get_logger()

FULL_MARKER = "full"
SCHEMA_MARKER = "schema"

FEED_TOKEN = re.compile(r"v(\d+)", re.ASCII)
SEQUENCE_TOKEN = re.compile(r"\d+", re.ASCII)


def _basename(name: str) -> str:
    return name[name.rfind("/") + 1:]


def _strip_extension(name: str) -> str:
    dot = name.rfind(".")
    return name[:dot] if dot > 0 else name


def _residual_tokens(prefix: str, name: str) -> list[str]:
    """
    Strip "<prefix>_" and the extension from a file name and split the rest.

    Raises:
        ParseError: If the name does not start with "<prefix>_v"
    """
    base = _basename(name)
    if not prefix or not base.startswith(f"{prefix}_v"):
        raise ParseError(f"{base} does not belong to {prefix}", name=base)
    return _strip_extension(base)[len(prefix) + 1:].split("_")


def parse_data_name(bundle_prefix: str, name: str) -> tuple[VersionKey | None, bool]:
    """
    Decode the version tokens of a data archive name.

    Each "_" separated token after the bundle prefix is one of:
    - "full": the archive is a full snapshot
    - v<digits>: the feed version
    - <digits>: the sequence
    Anything else is ignored so extra vendor segments do not break parsing.

    Args:
        bundle_prefix: Bundle the name is expected to belong to
        name: Remote file name (a leading directory is ignored)

    Returns:
        Tuple of (version, is_full_archive). version is None when the name
        lacks either the feed version or the sequence.

    Raises:
        ParseError: If the name does not belong to the bundle

    Example:
        "ppl_test_v1_full_1234.zip" -> (VersionKey(1, 1234), True)
    """
    is_full = False
    feed_version = None
    sequence = None

    for token in _residual_tokens(bundle_prefix, name):
        feed = FEED_TOKEN.fullmatch(token)
        if token == FULL_MARKER:
            is_full = True
        elif feed:
            feed_version = int(feed.group(1))
        elif SEQUENCE_TOKEN.fullmatch(token):
            sequence = int(token)

    if feed_version is None or sequence is None:
        return None, is_full
    return VersionKey(feed_version, sequence), is_full


def parse_catalog(
    bundle_prefix: str,
    files: Iterable[RemoteFile],
    want_full_archive: bool,
) -> list[CatalogEntry]:
    """
    Turn a remote listing into catalog entries for one bundle.

    Directories, names belonging to other bundles and archives of the
    wrong kind (full vs incremental) are left out. Listing order is kept.

    Args:
        bundle_prefix: File name prefix of the bundle
        files: Remote directory listing
        want_full_archive: True to keep only full archives, False to keep
            only incremental ones

    Returns:
        Catalog entries in listing order
    """
    entries = []
    for remote_file in files:
        if remote_file.is_dir:
            log.debug("catalog_skipped_directory", name=remote_file.name)
            continue

        try:
            version, is_full = parse_data_name(bundle_prefix, remote_file.name)
        except ParseError as e:
            log.debug("catalog_skipped_name", name=e.name, bundle=bundle_prefix)
            continue

        if is_full != want_full_archive:
            continue

        entries.append(CatalogEntry(
            name=_basename(remote_file.name),
            path=remote_file.path,
            version=version,
            is_full_archive=is_full,
        ))
    return entries


def parse_schema_name(dataset: str, name: str) -> VersionKey:
    """
    Decode a schema document name.

    Raises:
        ParseError: If the name is not "<dataset>_v<feed>_schema_<sequence>"
            (documentation indexes such as "ppl_v1_docs_3.zip" included)
    """
    tokens = _residual_tokens(dataset, name)
    if len(tokens) < 3 or tokens[1] != SCHEMA_MARKER:
        raise ParseError(f"{name} is not a schema document", name=name)

    feed = FEED_TOKEN.fullmatch(tokens[0])
    if feed is None or not SEQUENCE_TOKEN.fullmatch(tokens[2]):
        raise ParseError(f"{name} has no schema version", name=name)
    return VersionKey(int(feed.group(1)), int(tokens[2]))


def parse_schema_catalog(dataset: str, files: Iterable[RemoteFile]) -> list[CatalogEntry]:
    """Catalog entries for every valid schema document of a dataset."""
    entries = []
    for remote_file in files:
        if remote_file.is_dir:
            continue
        try:
            version = parse_schema_name(dataset, remote_file.name)
        except ParseError as e:
            log.debug("schema_catalog_skipped_name", name=e.name, dataset=dataset)
            continue
        entries.append(CatalogEntry(
            name=_basename(remote_file.name),
            path=remote_file.path,
            version=version,
        ))
    return entries
