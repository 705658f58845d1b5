# edumetrics/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from edumetrics.__about__ import __app_name__, __version__
from edumetrics.config import Settings, settings as default_settings
from edumetrics.export import PROMETHEUS_CONTENT_TYPE
from edumetrics.log import configure_logging
from edumetrics.metrics import MetricsAggregator, create_aggregator
from edumetrics.obs import RequestObservability


def get_metrics(request: Request) -> MetricsAggregator:
    """Dependency: the aggregator owned by this app instance."""
    return request.app.state.metrics


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.metrics = create_aggregator(settings.metrics_config())
        try:
            yield
        finally:
            app.state.metrics.dispose()

    app = FastAPI(
        title="Learning companion metrics",
        version=__version__,
        description="In-process request/agent telemetry with JSON and Prometheus export.",
        lifespan=lifespan,
    )
    app.add_middleware(RequestObservability)

    # ---------------------- Health endpoint ----------------------
    @app.get("/health")
    def health():
        """
        Operational heartbeat; no secrets, no metrics state.
        """
        return {
            "app": settings.app_name or __app_name__,
            "version": __version__,
            "status": "ok",
        }

    # ---------------------- Metrics endpoints ----------------------
    @app.get("/_metrics")
    def get_metrics_snapshot(
        format: str = Query("json", description="json | prometheus"),
        metrics: MetricsAggregator = Depends(get_metrics),
    ):
        if format not in ("json", "prometheus"):
            raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")
        out = metrics.export_metrics(format)
        if format == "prometheus":
            return PlainTextResponse(out, media_type=PROMETHEUS_CONTENT_TYPE)
        return out

    @app.get("/_metrics/health")
    def get_service_health(metrics: MetricsAggregator = Depends(get_metrics)):
        return metrics.get_health_metrics()

    return app


app = create_app()
