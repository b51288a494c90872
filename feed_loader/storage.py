"""
Remote store abstraction for the vendor file feed.

Provides a unified interface for listing and fetching feed files that
works with the vendor's SFTP server, a local filesystem mirror of the
feed (a mounted share or a synced copy) and a mirror kept in Google
Cloud Storage.

The Protocol pattern allows the orchestrator to work with any transport
without knowing the implementation details.
"""

import shutil
import stat
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

import paramiko
import structlog
from google.api_core import exceptions as gcp_exceptions

from feed_loader.errors import NotFoundError, TransportError

log = structlog.get_logger()


@dataclass(frozen=True)
class RemoteFile:
    """One entry of a remote directory listing."""
    name: str               # File name without its directory
    path: str               # Full remote path, usable with fetch()
    is_dir: bool = False    # Nested folders are listed but never fetched


class RemoteStore(Protocol):
    """
    Protocol defining the remote store interface.

    Any transport must implement these three methods:
    - list_dir: List the entries of a remote directory
    - fetch: Copy a remote file into a local directory
    - join: Combine a base path with path segments
    """

    def list_dir(self, path: str) -> list[RemoteFile]:
        """List a remote directory. Raises NotFoundError when it is empty."""
        ...

    def fetch(self, path: str, dest_dir: Path) -> Path:
        """Copy a remote file into dest_dir and return the local path."""
        ...

    def join(self, base: str, *parts: str) -> str:
        """Join a base path with path segments."""
        ...


class LocalStorage:
    """
    Local filesystem implementation.

    Used when the feed is mounted or mirrored onto local disk, and for
    local development. Files are accessed directly via pathlib.
    """

    def list_dir(self, path: str) -> list[RemoteFile]:
        """
        List all entries of a directory, sorted by name.

        Args:
            path: Directory path to list

        Returns:
            One RemoteFile per entry, directories flagged with is_dir

        Raises:
            TransportError: If the directory cannot be read
            NotFoundError: If the directory is empty
        """
        directory = Path(path)
        try:
            children = sorted(directory.iterdir())
            listing = [
                RemoteFile(name=child.name, path=str(child), is_dir=child.is_dir())
                for child in children
            ]
        except OSError as e:
            raise TransportError(f"Could not list {path}: {e}", path=path) from e

        if not listing:
            raise NotFoundError(f"Directory {path} had no files to read")

        log.debug("remote_dir_listed", path=path, entries=len(listing))
        return listing

    def fetch(self, path: str, dest_dir: Path) -> Path:
        """
        Copy a file into dest_dir.

        Creates dest_dir if it doesn't exist.

        Args:
            path: Source file path
            dest_dir: Local directory to copy into

        Returns:
            Path of the local copy
        """
        dest = Path(dest_dir) / Path(path).name
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, dest)
        except OSError as e:
            raise TransportError(f"Could not fetch {path}: {e}", path=path) from e

        log.debug("remote_file_fetched", path=path, dest=str(dest))
        return dest

    def join(self, base: str, *parts: str) -> str:
        return str(Path(base).joinpath(*parts))


class GCSStorage:
    """
    Google Cloud Storage implementation.

    Used when the vendor feed is mirrored into a bucket. GCS has no real
    directories, so a delimited listing is used: blobs directly under the
    prefix are files, and the returned sub-prefixes are directories.
    """

    def __init__(self, client=None):
        """
        Initialise the GCS client.

        Uses Application Default Credentials unless a client is supplied.
        """
        if client is None:
            from google.cloud import storage
            client = storage.Client()
        self.client = client

    def _parse_gcs_path(self, path: str) -> tuple[str, str]:
        """
        Parse a gs:// URI into bucket and prefix.

        Example:
            "gs://my-bucket/datafeeds/people" -> ("my-bucket", "datafeeds/people")
        """
        path = path.removeprefix("gs://")
        bucket, _, prefix = path.partition("/")
        return bucket, prefix

    def list_dir(self, path: str) -> list[RemoteFile]:
        """
        List files and sub-directories directly under a GCS prefix.

        Args:
            path: GCS path like "gs://bucket/datafeeds/people/ppl_premium"

        Returns:
            Files first (in blob order), then directories
        """
        bucket_name, prefix = self._parse_gcs_path(path)

        # Ensure prefix ends with / for directory-like listing
        if prefix and not prefix.endswith("/"):
            prefix += "/"

        try:
            blobs = self.client.list_blobs(bucket_name, prefix=prefix, delimiter="/")
            listing = [
                RemoteFile(
                    name=blob.name[len(prefix):],
                    path=f"gs://{bucket_name}/{blob.name}",
                )
                for blob in blobs
                if not blob.name.endswith("/")
            ]
            # prefixes is only populated once the pages have been consumed
            for sub_prefix in sorted(blobs.prefixes):
                listing.append(RemoteFile(
                    name=sub_prefix[len(prefix):].rstrip("/"),
                    path=f"gs://{bucket_name}/{sub_prefix}",
                    is_dir=True,
                ))
        except gcp_exceptions.GoogleAPIError as e:
            raise TransportError(f"Could not list {path}: {e}", path=path) from e

        if not listing:
            raise NotFoundError(f"Directory {path} had no files to read")

        log.debug("remote_dir_listed", path=path, entries=len(listing))
        return listing

    def fetch(self, path: str, dest_dir: Path) -> Path:
        """
        Download a blob into dest_dir.

        Args:
            path: Full GCS path like "gs://bucket/datafeeds/.../file.zip"
            dest_dir: Local directory to download into

        Returns:
            Path of the downloaded file
        """
        bucket_name, key = self._parse_gcs_path(path)
        dest = Path(dest_dir) / Path(key).name

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            blob = self.client.bucket(bucket_name).blob(key)
            blob.download_to_filename(str(dest))
        except (gcp_exceptions.GoogleAPIError, OSError) as e:
            raise TransportError(f"Could not fetch {path}: {e}", path=path) from e

        log.debug("remote_file_fetched", path=path, dest=str(dest))
        return dest

    def join(self, base: str, *parts: str) -> str:
        """Join a GCS base path with path segments."""
        return "/".join([base.rstrip("/"), *parts])


class SFTPStorage:
    """
    SFTP implementation, reading straight from the vendor's server.

    Authenticates with a private key. The server's host key must be known,
    either from the system known_hosts file or from an explicit one.
    """

    def __init__(self, sftp: paramiko.SFTPClient, ssh: paramiko.SSHClient | None = None):
        self.sftp = sftp
        self.ssh = ssh

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        username: str,
        key_path: str,
        known_hosts_path: str = "",
    ) -> "SFTPStorage":
        """
        Open an SSH connection and an SFTP session on it.

        Raises:
            TransportError: If the key cannot be read or the connection fails
        """
        ssh = paramiko.SSHClient()
        ssh.load_system_host_keys()
        ssh.set_missing_host_key_policy(paramiko.RejectPolicy())

        try:
            if known_hosts_path:
                ssh.load_host_keys(known_hosts_path)
            key = paramiko.PKey.from_path(key_path)
            ssh.connect(
                host,
                port=port,
                username=username,
                pkey=key,
                allow_agent=False,
                look_for_keys=False,
            )
            sftp = ssh.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            ssh.close()
            raise TransportError(f"Could not connect to sftp://{host}:{port}: {e}") from e

        log.info("sftp_connected", host=host, port=port, user=username)
        return cls(sftp, ssh)

    def list_dir(self, path: str) -> list[RemoteFile]:
        """
        List a remote directory, sorted by name.

        Raises:
            TransportError: If the directory cannot be read
            NotFoundError: If the directory is empty
        """
        try:
            attrs = sorted(self.sftp.listdir_attr(path), key=lambda a: a.filename)
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Could not list {path}: {e}", path=path) from e

        listing = [
            RemoteFile(
                name=attr.filename,
                path=self.join(path, attr.filename),
                is_dir=attr.st_mode is not None and stat.S_ISDIR(attr.st_mode),
            )
            for attr in attrs
        ]
        if not listing:
            raise NotFoundError(f"Directory {path} had no files to read")

        log.debug("remote_dir_listed", path=path, entries=len(listing))
        return listing

    def fetch(self, path: str, dest_dir: Path) -> Path:
        """
        Download a remote file into dest_dir.

        paramiko compares the downloaded size with the remote one, so a
        truncated transfer fails instead of leaving a partial archive.
        """
        dest = Path(dest_dir) / PurePosixPath(path).name
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            self.sftp.get(path, str(dest))
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Could not fetch {path}: {e}", path=path) from e

        log.debug("remote_file_fetched", path=path, dest=str(dest))
        return dest

    def join(self, base: str, *parts: str) -> str:
        return str(PurePosixPath(base).joinpath(*parts))

    def close(self) -> None:
        self.sftp.close()
        if self.ssh is not None:
            self.ssh.close()
