"""Health check endpoint.

Liveness probe for Cloud Run; reports credential presence without calling
any Google API.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from inboxq.config import APP_VERSION

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "InboxQ",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
        "knowledge": {
            "document": bool(os.getenv("KNOWLEDGE_DOC_URL")),
            "folder": bool(os.getenv("KNOWLEDGE_FOLDER_URL")),
        },
    }
