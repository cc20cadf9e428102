"""FastAPI entrypoint exposing health, queue and job status routes.

Run with ``uvicorn --factory vision_attrs.api.main:create_app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST

from vision_attrs.config.settings import get_settings
from vision_attrs.integrations.checks import run_all_checks
from vision_attrs.monitoring.logging import configure_logging
from vision_attrs.services.orchestrator import ExtractionOrchestrator


def create_app(orchestrator: ExtractionOrchestrator | None = None) -> FastAPI:
    """Initialise the FastAPI application."""

    configure_logging()
    settings = get_settings()
    orchestrator = orchestrator or ExtractionOrchestrator.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orchestrator.close()

    app = FastAPI(
        title="Vision Attribute Extraction API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.get("/health/integrations", tags=["system"])
    async def integrations_check() -> dict[str, Any]:
        results = await run_all_checks(orchestrator.invoker, orchestrator.cache)
        return {
            "checks": [asdict(result) for result in results],
            "cache": orchestrator.cache.stats(),
        }

    @app.get("/queue/status", tags=["jobs"])
    async def queue_status() -> dict[str, Any]:
        return {
            **orchestrator.queue_status(),
            "retries": orchestrator.coordinator.statistics(),
        }

    @app.get("/jobs/{job_id}", tags=["jobs"])
    async def job_status(job_id: str) -> dict[str, Any]:
        status = orchestrator.get_status(job_id)
        if status is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return status

    @app.get("/metrics", tags=["system"])
    async def metrics() -> Response:
        return Response(content=orchestrator.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app
