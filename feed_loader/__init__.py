"""
Feed Loader - keeps a local DuckDB store in step with a vendor file feed.

The vendor publishes versioned snapshot archives per package. On every run
each configured package is re-checked: a newer table schema triggers a
schema rebuild followed by a full reload, otherwise the newest full data
archive is loaded if it has not been loaded already.

Usage:
    python -m feed_loader

Environment Variables:
    PACKAGES: dataset,fs_package,product[,bundle],feed_version;...
    PACKAGES_CONFIG_PATH: YAML file listing packages (overrides PACKAGES)
    REMOTE_BACKEND: "sftp", "local" or "gcs" (default: local)
    SFTP_HOST, SFTP_PORT, SFTP_USER, SFTP_KEY_PATH: Vendor SFTP server
    FEED_BASE_DIR: Root of the vendor feed (default: /datafeeds)
    WORKSPACE: Staging directory, wiped on every run (default: /vol/feeds)
    DUCKDB_PATH: Path to the DuckDB database file (default: feeds.duckdb)
"""

__version__ = "0.1.0"
