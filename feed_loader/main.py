"""
Feed loader entry point.

Runs once per invocation (schedule it with cron or a Kubernetes CronJob):
1. Load configuration
2. Connect to the local DuckDB store and the remote feed
3. Load every configured package
4. Push metrics

Exit code is 0 when every package loaded, 1 otherwise.
"""

import logging
import sys

import duckdb
import structlog

from feed_loader.config import Config
from feed_loader.loader import DuckDBSink
from feed_loader.metadata import DuckDBMetadataStore
from feed_loader.metrics import MetricsClient
from feed_loader.orchestrator import LoadOrchestrator
from feed_loader.storage import GCSStorage, LocalStorage, RemoteStore, SFTPStorage

log = structlog.get_logger()


def configure_logging(level: str) -> None:
    """JSON logs, filtered at the configured level."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


def create_remote(config: Config) -> RemoteStore:
    if config.backend == "sftp":
        return SFTPStorage.connect(
            config.sftp_host,
            config.sftp_port,
            config.sftp_user,
            config.sftp_key_path,
            known_hosts_path=config.sftp_known_hosts_path,
        )
    if config.backend == "gcs":
        return GCSStorage()
    return LocalStorage()


def main() -> int:
    """Main entry point."""
    try:
        config = Config.from_env()
    except Exception as e:
        configure_logging("info")
        log.error("config_load_failed", error=str(e), error_type=type(e).__name__)
        return 1

    configure_logging(config.log_level)
    log.info(
        "feed_loader_starting",
        env=config.env,
        backend=config.backend,
        base_dir=config.base_dir,
        workspace=config.workspace,
        packages=[p.product for p in config.packages],
    )

    metrics = MetricsClient(config)
    try:
        conn = duckdb.connect(config.duckdb_path)
    except duckdb.Error as e:
        log.error("duckdb_connect_failed", path=config.duckdb_path, error=str(e))
        return 1

    remote = None
    try:
        remote = create_remote(config)
        orchestrator = LoadOrchestrator(
            config,
            remote=remote,
            sink=DuckDBSink(conn),
            metadata=DuckDBMetadataStore(conn),
            metrics=metrics,
        )
        summary = orchestrator.load_packages()
    except Exception as e:
        log.exception("run_failed", error=str(e))
        metrics.record_run_failure(type(e).__name__)
        metrics.flush()
        return 1
    finally:
        conn.close()
        if isinstance(remote, SFTPStorage):
            remote.close()

    for failure in summary.failures:
        log.error(
            "package_failed",
            fs_product=failure.identity.product,
            step=failure.failed_step.value if failure.failed_step else None,
            error=failure.error,
        )
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
