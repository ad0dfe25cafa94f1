"""
FastAPI application exposing the metrics endpoint.

Handlers are synchronous so FastAPI runs them in its worker threadpool;
overlapping scrapes therefore reach the collector from separate threads
and are serialized by its lock.
"""

from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from ..collector import SnowflakeMetricsCollector
from ..utils.logger import PerformanceLogger, get_logger

logger = structlog.get_logger(__name__)


def create_app(
    registry: CollectorRegistry,
    collector: Optional[SnowflakeMetricsCollector] = None,
    metrics_path: str = "/metrics",
    title: str = "Snowflake Prometheus Exporter",
    version: str = "1.0.0",
) -> FastAPI:
    """
    Create the exporter application.

    Args:
        registry: Registry the collector was registered on
        collector: Collector whose connection ``/health`` probes; optional
        metrics_path: Path serving the text exposition format
    """
    app = FastAPI(title=title, version=version, docs_url=None, redoc_url=None)
    scrape_logger = get_logger(__name__)

    @app.get(metrics_path, include_in_schema=False)
    def metrics() -> Response:
        with PerformanceLogger("scrape", scrape_logger):
            payload = generate_latest(registry)
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    def health() -> JSONResponse:
        if collector is None or collector.check_health():
            return JSONResponse({"status": "ok"})
        logger.warning("Health check failed")
        return JSONResponse({"status": "unavailable"}, status_code=503)

    return app
