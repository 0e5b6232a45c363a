"""FastAPI server for InboxQ"""

from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from inboxq.api.routes.health import router as health_router
from inboxq.api.routes.triage import router as triage_router
from inboxq.config import APP_VERSION
from inboxq.errors import ConfigurationError, KnowledgeFetchError
from inboxq.infrastructure.env import ensure_env_loaded
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event

ensure_env_loaded()

app = FastAPI(title="InboxQ Triage API", version=APP_VERSION)

logger = get_logger(__name__)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """Name the offending setting, never its value."""
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    counter("api.configuration_errors")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": f"Server configuration error: check the {exc.key} setting.",
            "config_key": exc.key,
        },
    )


@app.exception_handler(KnowledgeFetchError)
async def knowledge_error_handler(request: Request, exc: KnowledgeFetchError) -> JSONResponse:
    logger.error("Knowledge fetch failed on %s: %s", request.url.path, exc)
    counter("api.knowledge_errors")
    return JSONResponse(
        status_code=status.HTTP_424_FAILED_DEPENDENCY,
        content={"detail": str(exc), "config_key": exc.config_key},
    )


app.include_router(health_router)
app.include_router(triage_router)

log_event("api.startup", service="inboxq", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "InboxQ Triage API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "run": "/triage/run",
        },
    }


def main() -> None:
    """Console entry point: serve the API with uvicorn (PORT env, default 8080)."""
    import uvicorn

    uvicorn.run(
        "inboxq.api.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=os.getenv("INBOXQ_LOG_LEVEL", "info").lower(),
    )
