"""
Exceptions raised by the feed loader.

Every failure that should abort a single package derives from
FeedLoaderError so the orchestrator can log it and move on.
"""


class FeedLoaderError(Exception):
    """Base exception for all feed loader errors."""
    pass


class ConfigError(FeedLoaderError):
    """Configuration is missing or malformed."""
    pass


class NotFoundError(FeedLoaderError):
    """
    Something expected was not there.

    Raised when:
    - A remote directory is empty or has no matching files
    - No metadata record exists for a package
    - No archive matches the targeted feed version
    """
    pass


class ParseError(FeedLoaderError):
    """
    A remote file name does not follow the vendor naming grammar.

    Never escapes the catalog parser: vendor directories legitimately
    contain documentation and nested folders.
    """

    def __init__(self, message: str, name: str | None = None):
        super().__init__(message)
        self.name = name


class TransportError(FeedLoaderError):
    """Listing or fetching a remote file failed, or the payload is unusable."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class PersistenceError(FeedLoaderError):
    """Writing to the relational store failed."""
    pass


class TableExistsError(PersistenceError):
    """A CREATE TABLE statement hit a table created by a sibling package."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table
