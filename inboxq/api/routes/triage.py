"""Triage trigger endpoint (called by Cloud Scheduler or by hand)."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from inboxq.config import TriageSettings
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import RunSummary
from inboxq.triage.pipeline import TriagePipeline, build_pipeline

router = APIRouter(prefix="/triage", tags=["triage"])
logger = get_logger(__name__)

PipelineBuilder = Callable[[TriageSettings], TriagePipeline]


class TriageRunRequest(BaseModel):
    """Optional per-call overrides; omitted fields keep the environment value."""

    dry_run: bool | None = None


def get_settings() -> TriageSettings:
    return TriageSettings.from_env()


def get_pipeline_builder() -> PipelineBuilder:
    return build_pipeline


@router.post("/run", response_model=RunSummary)
def run_triage(
    request: TriageRunRequest | None = None,
    settings: TriageSettings = Depends(get_settings),
    builder: PipelineBuilder = Depends(get_pipeline_builder),
) -> RunSummary:
    """
    Run one triage pass and return its summary.

    Declared sync so FastAPI runs the blocking Google calls in its threadpool.
    ConfigurationError and KnowledgeFetchError are mapped to responses by
    the app-level handlers.
    """
    if request is not None and request.dry_run is not None:
        settings = settings.with_overrides(dry_run=request.dry_run)

    counter("api.triage.run")
    logger.info("Triage run requested (dry_run=%s)", settings.dry_run)
    return builder(settings).run()
