"""
Data model shared by the catalog parser, resolver and orchestrator.

Vendor revisions are identified by a two part version: a feed version that
changes rarely (and signals a schema change) and a sequence number that
increases with every publication inside a feed version.

Example file naming and package breakdown:

    dataset         ppl                     ent
    fs_package      people                  entity
    product         ppl_premium             ent_entity_advanced
    bundle          ppl_premium             ent_entity_advanced
    feed_version    1                       1

    /datafeeds/people/ppl_premium/ppl_premium_v1_full_1234.zip
    /datafeeds/people/ppl_premium/ppl_premium_v1_1235.zip
    /datafeeds/documents/docs_ppl/ppl_v1_schema_12.zip
"""

from dataclasses import dataclass
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, the form the metadata tables store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True, order=True)
class VersionKey:
    """
    A published revision: compared on feed_version first, then sequence.

    Field order matters - the generated comparison methods walk the fields
    in declaration order.
    """
    feed_version: int
    sequence: int

    def __post_init__(self) -> None:
        if self.feed_version < 0 or self.sequence < 0:
            raise ValueError(
                f"Version parts must be non-negative, got "
                f"feed_version={self.feed_version} sequence={self.sequence}"
            )

    def __str__(self) -> str:
        return f"v{self.feed_version}_{self.sequence}"


@dataclass(frozen=True)
class PackageIdentity:
    """
    One configured package.

    dataset picks the schema documentation directory, fs_package and
    product pick the data directory, and bundle is the file name prefix
    used when several products share a directory.
    """
    dataset: str
    fs_package: str
    product: str
    bundle: str
    feed_version: int

    @property
    def key(self) -> tuple[str, str]:
        """Metadata is keyed on (product, bundle)."""
        return self.product, self.bundle


@dataclass(frozen=True)
class CatalogEntry:
    """
    A remote file decoded against a bundle prefix.

    version is None when the name carried no usable version tokens; such
    entries are never selected as the latest revision.
    """
    name: str
    path: str
    version: VersionKey | None
    is_full_archive: bool = False

    @property
    def is_versioned(self) -> bool:
        return self.version is not None


@dataclass(frozen=True)
class PackageMetadata:
    """What has been applied for a package. Replaced wholesale on every load."""
    identity: PackageIdentity
    schema_version: VersionKey
    schema_loaded_at: datetime
    data_version: VersionKey
    data_loaded_at: datetime
