"""Mounting of the Prometheus /metrics endpoint on the FastAPI app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import FastAPI, Response
from prometheus_client import (
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)
import structlog

from .metrics import get_metrics_registry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MetricsConfig:
    """Configuration for Prometheus metrics endpoint.

    Attributes:
        enabled: Whether metrics endpoint is enabled
        path: URL path for the metrics endpoint
    """

    enabled: bool = False
    path: str = "/metrics"


def create_metrics_endpoint(
    app: FastAPI,
    config: MetricsConfig,
    registry: CollectorRegistry | None = None,
    on_scrape: Optional[Callable[[FastAPI], None]] = None,
) -> None:
    """Create and mount the /metrics endpoint on the FastAPI app.

    Args:
        app: FastAPI application instance
        config: Metrics configuration
        registry: Optional custom CollectorRegistry (uses default if None)
        on_scrape: Hook run before each scrape to refresh gauges
    """
    if not config.enabled:
        logger.info("prometheus_metrics_disabled")
        return

    target = registry if registry is not None else get_metrics_registry()

    async def metrics_endpoint() -> Response:
        if on_scrape is not None:
            try:
                on_scrape(app)
            except Exception as e:
                logger.warning("metrics_scrape_hook_failed", error=str(e))
        try:
            return Response(
                content=generate_latest(target),
                media_type=CONTENT_TYPE_LATEST,
            )
        except Exception as e:
            logger.error("metrics_generation_failed", error=str(e))
            return Response(
                content=f"# Error generating metrics: {e}",
                media_type="text/plain",
                status_code=500,
            )

    app.add_api_route(
        config.path,
        metrics_endpoint,
        methods=["GET"],
        name="prometheus_metrics",
        tags=["observability"],
        include_in_schema=False,
    )
    logger.info("prometheus_metrics_endpoint_mounted", path=config.path)
