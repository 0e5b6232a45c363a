"""
Domain models (Pydantic v2) for the InboxQ triage pipeline.

MailItem is created per discovery pass and never persisted. Sensitive fields
(subject, sender, body excerpt) are hashed in repr so models can be logged.
"""

from __future__ import annotations

import math
from enum import Enum
from hashlib import sha256
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Reason codes for results that carry no label
REASON_BUDGET_EXCEEDED = "budget-exceeded"
REASON_FALLBACK_ON_ERROR = "fallback-on-error"
REASON_INVALID_OR_MISSING = "invalid-or-missing"
REASON_OK = "ok"


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


def estimate_tokens(char_count: int) -> int:
    """Rough token estimate used for context budgeting (4 chars per token)."""
    return math.ceil(char_count / 4)


class MailItem(BaseModel):
    """One discovered mailbox item, as presented to the classifier."""

    model_config = ConfigDict(frozen=True)
    _redact_fields = {"subject", "sender", "body_excerpt"}

    id: str
    thread_id: str
    subject: str = ""
    sender: str = ""
    date: str = ""
    age_days: int = 0
    body_excerpt: str = ""

    def redacted(self) -> dict[str, Any]:
        """Telemetry-safe dump."""
        data = self.model_dump()
        for field in self._redact_fields:
            if data.get(field):
                data[field] = _hash_value(data[field])
        return data

    def __repr__(self) -> str:
        return f"MailItem({self.redacted()})"


class ClassificationResult(BaseModel):
    """Classification decision for one MailItem. ``label`` is None when skipped or invalid."""

    id: str
    thread_id: str
    label: str | None = None
    reason: str = REASON_OK


class KnowledgeSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    char_count: int
    reference: str


class KnowledgeMetadata(BaseModel):
    char_count: int = 0
    estimated_tokens: int = 0
    model_limit: int = 0
    utilization_percent: float = 0.0
    sources: list[KnowledgeSource] = Field(default_factory=list)

    @classmethod
    def for_text(
        cls,
        text: str,
        model_limit: int,
        sources: list[KnowledgeSource],
        char_count: int | None = None,
    ) -> KnowledgeMetadata:
        """Build metadata whose token estimate and utilization are computed over ``text``."""
        tokens = estimate_tokens(len(text))
        utilization = round(tokens / model_limit * 100, 2) if model_limit else 0.0
        return cls(
            char_count=len(text) if char_count is None else char_count,
            estimated_tokens=tokens,
            model_limit=model_limit,
            utilization_percent=utilization,
            sources=sources,
        )


class KnowledgeBundle(BaseModel):
    """Optional reference text injected into prompts, plus usage metadata."""

    configured: bool = False
    text: str | None = None
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)

    @model_validator(mode="after")
    def _check_text(self) -> KnowledgeBundle:
        if not self.configured and self.text is not None:
            raise ValueError("an unconfigured KnowledgeBundle cannot carry text")
        if self.configured and not self.text:
            raise ValueError("a configured KnowledgeBundle must carry non-empty text")
        return self

    @classmethod
    def not_configured(cls) -> KnowledgeBundle:
        return cls(configured=False, text=None)


class BudgetCounter(BaseModel):
    date_key: str
    count: int
    limit: int


class DispatchStatus(str, Enum):
    OK = "ok"
    SKIP = "skip"
    RETRY = "retry"
    ERROR = "error"


class DispatchOutcome(BaseModel):
    """Result of one agent hook invocation."""

    agent_name: str
    status: DispatchStatus
    info: str | None = None
    retry_after_ms_hint: int | None = None


class DispatchCounts(BaseModel):
    ok: int = 0
    skip: int = 0
    retry: int = 0
    error: int = 0

    def add(self, outcomes: list[DispatchOutcome]) -> None:
        for outcome in outcomes:
            name = outcome.status.value
            setattr(self, name, getattr(self, name) + 1)


class ApplySummary(BaseModel):
    """Aggregate of one LabelApplicator pass."""

    labeled: int = 0
    skipped: int = 0
    errors: int = 0
    dispatch: DispatchCounts = Field(default_factory=DispatchCounts)


class RunSummary(BaseModel):
    """End-of-run report returned by the pipeline and the API."""

    discovered: int = 0
    labeled: int = 0
    skipped: int = 0
    errors: int = 0
    dry_run: bool = False
    dispatch: DispatchCounts = Field(default_factory=DispatchCounts)
    post_label: DispatchCounts = Field(default_factory=DispatchCounts)
    reasons: dict[str, int] = Field(default_factory=dict)
    budget: BudgetCounter | None = None
    knowledge: KnowledgeMetadata | None = None
    registration_errors: list[str] = Field(default_factory=list)
    decisions_sample: list[ClassificationResult] = Field(default_factory=list)
