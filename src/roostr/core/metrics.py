"""
Prometheus metrics collection and HTTP exposition.

Module-level metric objects are process-wide singletons (prometheus_client
metrics are thread-safe). The
[Synchronizer][roostr.services.synchronizer.service.Synchronizer] records
event outcomes, relay outcomes and job durations; the CLI exposes them
through [MetricsServer][roostr.core.metrics.MetricsServer] when
[MetricsConfig.enabled][roostr.core.metrics.MetricsConfig] is set.

Architecture:
    SYNC_EVENTS:            Events per outcome (fetched/stored/skipped/rejected).
    RELAY_SYNCS:            Relay sync attempts per status (ok/failed).
    SYNC_DURATION_SECONDS:  Histogram of whole sync job durations.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True.
    """

    enabled: bool = Field(default=False, description="Enable the metrics endpoint")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Sync Metrics
# ---------------------------------------------------------------------------

SYNC_EVENTS = Counter(
    "roostr_sync_events",
    "Events seen by sync jobs, by outcome",
    ["outcome"],
)

RELAY_SYNCS = Counter(
    "roostr_relay_syncs",
    "Relay sync attempts, by status",
    ["status"],
)

SYNC_DURATION_SECONDS = Histogram(
    "roostr_sync_duration_seconds",
    "Duration of a sync job in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible metrics endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... sync runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start serving; a no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Safe to call if it never started."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server; the caller must ``stop()`` it."""
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
