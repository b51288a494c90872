"""
Configuration management for the feed loader.

This module handles:
- Loading environment variables into a typed Config dataclass
- Parsing the PACKAGES environment string into package identities
- Loading the package list from a YAML file when one is configured
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from feed_loader.errors import ConfigError
from feed_loader.models import PackageIdentity

# The workspace is wiped on every run, so it must be a directory with this name
WORKSPACE_DIRNAME = "feeds"

DEFAULT_BASE_DIR = "/datafeeds"
DEFAULT_SFTP_PORT = 22
SCHEMA_DOCS_DIR = "documents"

REMOTE_BACKENDS = ("sftp", "local", "gcs")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass(frozen=True)
class Config:
    """
    Application configuration loaded from environment variables.

    Supports three remote backends:
    - sftp: The vendor's SFTP server, with private key authentication
    - local: The vendor feed is mounted or mirrored onto local disk
    - gcs: The vendor feed is mirrored into a GCS bucket
    """
    packages: tuple[PackageIdentity, ...]

    # Remote feed
    backend: str = "local"              # "sftp", "local" or "gcs"
    base_dir: str = DEFAULT_BASE_DIR    # Feed root, gs://bucket/prefix for gcs

    # SFTP connection, sftp backend only
    sftp_host: str = ""
    sftp_port: int = DEFAULT_SFTP_PORT
    sftp_user: str = ""
    sftp_key_path: str = "/secrets/sftp-key"
    sftp_known_hosts_path: str = ""

    # Local staging and storage
    workspace: str = f"/vol/{WORKSPACE_DIRNAME}"
    duckdb_path: str = "feeds.duckdb"

    # Observability
    env: str = "int"
    log_level: str = "info"
    dynatrace_endpoint: str = ""
    dynatrace_token_path: str = "/secrets/dynatrace-token"

    def __post_init__(self) -> None:
        if Path(self.workspace).name != WORKSPACE_DIRNAME:
            raise ConfigError(
                f"Workspace {self.workspace} is not valid as its highest level "
                f"folder is not '{WORKSPACE_DIRNAME}'"
            )
        if self.backend not in REMOTE_BACKENDS:
            raise ConfigError(f"Unknown remote backend: {self.backend}")
        if self.backend == "sftp" and not (self.sftp_host and self.sftp_user):
            raise ConfigError("The sftp backend needs SFTP_HOST and SFTP_USER")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {self.log_level}")
        if not self.packages:
            raise ConfigError("No packages configured")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Packages come from PACKAGES_CONFIG_PATH (YAML) when it is set,
        otherwise from PACKAGES.

        Optional:
            REMOTE_BACKEND: "sftp", "local" or "gcs" (default: local)
            FEED_BASE_DIR: Feed root (default: /datafeeds)
            WORKSPACE: Staging directory (default: /vol/feeds)
            DUCKDB_PATH: Path to database file (default: feeds.duckdb)
            ENV: Environment name for metric dimensions (default: int)
            LOG_LEVEL: debug, info, warning or error (default: info)
            DYNATRACE_ENDPOINT: Metrics endpoint (default: disabled)
            DYNATRACE_TOKEN_PATH: Metrics API token file
            SFTP_HOST, SFTP_PORT (default: 22), SFTP_USER: Vendor server
            SFTP_KEY_PATH: Private key file (default: /secrets/sftp-key)
            SFTP_KNOWN_HOSTS_PATH: Extra known_hosts file for the server key
        """
        packages_path = os.environ.get("PACKAGES_CONFIG_PATH")
        if packages_path:
            packages = load_packages_file(packages_path)
        else:
            packages = parse_packages(os.environ.get("PACKAGES", ""))

        return cls(
            packages=tuple(packages),
            backend=os.environ.get("REMOTE_BACKEND", "local"),
            base_dir=os.environ.get("FEED_BASE_DIR", DEFAULT_BASE_DIR),
            sftp_host=os.environ.get("SFTP_HOST", ""),
            sftp_port=_port(os.environ.get("SFTP_PORT", str(DEFAULT_SFTP_PORT))),
            sftp_user=os.environ.get("SFTP_USER", ""),
            sftp_key_path=os.environ.get("SFTP_KEY_PATH", "/secrets/sftp-key"),
            sftp_known_hosts_path=os.environ.get("SFTP_KNOWN_HOSTS_PATH", ""),
            workspace=os.environ.get("WORKSPACE", f"/vol/{WORKSPACE_DIRNAME}"),
            duckdb_path=os.environ.get("DUCKDB_PATH", "feeds.duckdb"),
            env=os.environ.get("ENV", "int"),
            log_level=os.environ.get("LOG_LEVEL", "info"),
            dynatrace_endpoint=os.environ.get("DYNATRACE_ENDPOINT", ""),
            dynatrace_token_path=os.environ.get(
                "DYNATRACE_TOKEN_PATH", "/secrets/dynatrace-token"
            ),
        )


def _port(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"SFTP_PORT is not a number: {value!r}") from None


def _feed_version(value, package: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Package {package} has an invalid feed version: {value!r}") from None


def parse_packages(value: str) -> list[PackageIdentity]:
    """
    Parse the PACKAGES environment string.

    Packages are separated by ";" and each is a comma-separated tuple of
    dataset,fs_package,product,bundle,feed_version. The bundle may be left
    out, in which case it defaults to the product.

    Args:
        value: Raw environment value

    Returns:
        Package identities in configured order

    Raises:
        ConfigError: If a package has the wrong number of values or a
            non-numeric feed version

    Example:
        "ppl,people,ppl_premium,1;ent,entity,ent_entity_advanced,1"
    """
    packages = []
    for raw in value.split(";"):
        raw = raw.strip()
        if not raw:
            continue

        parts = [part.strip() for part in raw.split(",")]
        if len(parts) == 4:
            dataset, fs_package, product, feed_version = parts
            bundle = product
        elif len(parts) == 5:
            dataset, fs_package, product, bundle, feed_version = parts
        else:
            raise ConfigError(
                f"Package config {raw!r} is incorrectly configured; it has the "
                f"wrong number of values"
            )

        packages.append(PackageIdentity(
            dataset=dataset,
            fs_package=fs_package,
            product=product,
            bundle=bundle,
            feed_version=_feed_version(feed_version, product),
        ))
    return packages


def load_packages_file(path: str) -> list[PackageIdentity]:
    """
    Load the package list from a YAML file.

    Example YAML:

        packages:
          - dataset: ppl
            fs_package: people
            product: ppl_premium
            feed_version: 1

          # Several products sharing one directory, told apart by bundle
          - dataset: ff
            fs_package: fundamentals
            product: ff_advanced_ap_v3
            bundle: ff_advanced_der_ap
            feed_version: 3
    """
    try:
        raw = yaml.safe_load(Path(path).read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read package config {path}: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("packages"), list):
        raise ConfigError(f"Package config {path} has no 'packages' list")

    packages = []
    for entry in raw["packages"]:
        try:
            product = entry["product"]
            packages.append(PackageIdentity(
                dataset=entry["dataset"],
                fs_package=entry["fs_package"],
                product=product,
                bundle=entry.get("bundle") or product,
                feed_version=_feed_version(entry["feed_version"], product),
            ))
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Package entry {entry!r} in {path} is missing {e}") from e
    return packages
