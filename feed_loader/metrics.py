"""
Run metrics pushed to Dynatrace.

Each package result becomes a few counters tagged with the package's
product and bundle. A failed package is counted with the step it failed in
and the error type. Lines are buffered for the whole run and sent to the
metrics ingest API in one request at the end.

Line format (Dynatrace metrics ingest protocol):

    feed.packages.loaded,env=prod,product=ppl_premium,bundle=ppl_premium count,delta=1
    feed.run.duration_seconds,env=prod 12.4
"""

import time
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import structlog

from feed_loader.config import Config

if TYPE_CHECKING:
    from feed_loader.orchestrator import PackageLoadResult, RunSummary

log = structlog.get_logger()

INGEST_PATH = "/api/v2/metrics/ingest"


class MetricsClient:
    """Collects load metrics for one run."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.started = time.monotonic()
        self._lines: list[str] = []

    def record_package(self, result: "PackageLoadResult") -> None:
        """Count the outcome of one package."""
        dims = {"product": result.identity.product, "bundle": result.identity.bundle}

        if not result.succeeded:
            self._count("feed.packages.failed", 1, {
                **dims,
                "step": result.failed_step.value if result.failed_step else "unknown",
                "error_type": result.error_type or "unknown",
            })
            return

        self._count("feed.packages.loaded", 1, dims)
        if result.schema_rebuilt:
            self._count("feed.schemas.rebuilt", 1, dims)
        if result.data_loaded:
            self._count("feed.tables.loaded", len(result.tables_loaded), dims)
            self._count("feed.rows.loaded", result.rows_loaded, dims)

    def record_run(self, summary: "RunSummary") -> None:
        """Gauge the run as a whole."""
        self._gauge("feed.run.duration_seconds", round(self.elapsed(), 3))
        self._gauge("feed.run.packages_failed", summary.failed)

    def record_run_failure(self, error_type: str) -> None:
        """Count a run that stopped before any package result was produced."""
        self._count("feed.run.failures", 1, {"error_type": error_type})

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    @property
    def pending(self) -> list[str]:
        """Lines buffered since the last flush."""
        return list(self._lines)

    def _count(self, metric: str, delta: int, dims: dict[str, str] | None = None) -> None:
        self._add(metric, f"count,delta={delta}", dims)

    def _gauge(self, metric: str, value: float, dims: dict[str, str] | None = None) -> None:
        self._add(metric, str(value), dims)

    def _add(self, metric: str, payload: str, dims: dict[str, str] | None) -> None:
        tags = ",".join(
            f"{key}={value}" for key, value in {"env": self.config.env, **(dims or {})}.items()
        )
        self._lines.append(f"{metric},{tags} {payload}")

    def _token(self) -> str | None:
        path = Path(self.config.dynatrace_token_path)
        if not path.exists():
            log.debug("dynatrace_token_not_found", path=str(path))
            return None
        return path.read_text().strip() or None

    def flush(self) -> None:
        """
        Push buffered lines and clear the buffer.

        Metrics never fail a run: transport errors and rejected requests are
        logged and the lines dropped.
        """
        if not self._lines:
            return

        lines, self._lines = self._lines, []
        token = self._token()
        if not self.config.dynatrace_endpoint or not token:
            log.debug("metrics_flush_skipped", lines=len(lines))
            return

        try:
            response = httpx.post(
                self.config.dynatrace_endpoint.rstrip("/") + INGEST_PATH,
                headers={
                    "Authorization": f"Api-Token {token}",
                    "Content-Type": "text/plain; charset=utf-8",
                },
                content="\n".join(lines),
                timeout=10,
            )
        except httpx.HTTPError as e:
            log.warning("metrics_flush_error", error=str(e), lines=len(lines))
            return

        if response.status_code == 202:
            log.info("metrics_flushed", lines=len(lines))
        else:
            log.error("metrics_flush_rejected", status=response.status_code, body=response.text[:500])
