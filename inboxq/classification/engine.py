"""
Batch classification engine.

Granularity is strictly per batch for cost control:
- one budget unit is consumed per batch (no unit -> every item in the batch
  is marked ``budget-exceeded`` and no call is made)
- one Gemini call per batch, plus exactly one retry of the whole batch when
  the response cannot be parsed (or the call itself fails)
- after the retry, the whole batch is marked ``fallback-on-error``

Every emitted label is either None or a member of the allowed label set.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date
from typing import assert_never

from inboxq.classification.parsing import (
    ItemDecision,
    ParseFailure,
    ParseOk,
    ParseOutcome,
    SchemaInvalid,
    parse_batch_response,
)
from inboxq.config import TriageSettings
from inboxq.infrastructure.llm_budget import BudgetTracker, date_key
from inboxq.llm.gemini import TextGenerator
from inboxq.llm.prompts import build_classification_prompt
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event, time_block
from inboxq.storage.models import (
    REASON_BUDGET_EXCEEDED,
    REASON_FALLBACK_ON_ERROR,
    REASON_INVALID_OR_MISSING,
    REASON_OK,
    ClassificationResult,
    KnowledgeBundle,
    MailItem,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClassificationSettings:
    batch_size: int
    daily_limit: int
    allowed_labels: tuple[str, ...]
    fallback_label: str

    @classmethod
    def from_triage(cls, settings: TriageSettings) -> ClassificationSettings:
        return cls(
            batch_size=settings.batch_size,
            daily_limit=settings.daily_budget,
            allowed_labels=settings.allowed_labels,
            fallback_label=settings.fallback_label,
        )


def _batches(items: Sequence[MailItem], size: int) -> Iterator[Sequence[MailItem]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _mark(batch: Sequence[MailItem], reason: str) -> list[ClassificationResult]:
    return [
        ClassificationResult(id=item.id, thread_id=item.thread_id, label=None, reason=reason)
        for item in batch
    ]


class ClassificationEngine:
    def __init__(
        self,
        llm: TextGenerator,
        budget: BudgetTracker,
        *,
        model: str | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.llm = llm
        self.budget = budget
        self.model = model
        self._today = today

    def classify(
        self,
        items: Sequence[MailItem],
        knowledge: KnowledgeBundle,
        settings: ClassificationSettings,
    ) -> list[ClassificationResult]:
        """
        Classify ``items`` in discovery order, one result per item.

        Side Effects:
            - Consumes daily budget (one unit per attempted batch)
            - Calls Gemini (at most twice per batch)
            - Increments telemetry counters per reason code
        """
        results: list[ClassificationResult] = []
        for index, batch in enumerate(_batches(items, settings.batch_size), start=1):
            with time_block("classification.batch.latency"):
                batch_results = self._classify_batch(index, batch, knowledge, settings)
            results.extend(batch_results)

        for result in results:
            counter("classification.labeled" if result.label else f"classification.{result.reason}")
        return results

    def _classify_batch(
        self,
        index: int,
        batch: Sequence[MailItem],
        knowledge: KnowledgeBundle,
        settings: ClassificationSettings,
    ) -> list[ClassificationResult]:
        if not self.budget.try_consume(date_key(self._today()), 1, settings.daily_limit):
            log_event("classification.batch.budget_exceeded", batch=index, size=len(batch))
            return _mark(batch, REASON_BUDGET_EXCEEDED)

        prompt = build_classification_prompt(
            batch, knowledge, settings.allowed_labels, settings.fallback_label
        )

        outcome = self._call_and_parse(prompt, index, attempt=1)
        if not isinstance(outcome, ParseOk):
            counter("classification.batch.retry")
            outcome = self._call_and_parse(prompt, index, attempt=2)

        match outcome:
            case ParseOk(decisions=decisions):
                return self._resolve(batch, decisions, settings)
            case ParseFailure(error=error) | SchemaInvalid(error=error):
                counter("classification.batch.fallback")
                logger.warning(
                    "Batch %d (%d items) unparseable after retry, marking fallback: %s",
                    index,
                    len(batch),
                    error,
                )
                return _mark(batch, REASON_FALLBACK_ON_ERROR)
            case _:
                assert_never(outcome)

    def _call_and_parse(self, prompt: str, index: int, *, attempt: int) -> ParseOutcome:
        try:
            response_text = self.llm.generate(prompt, self.model)
        except Exception as e:
            logger.warning("Classification call failed (batch %d, attempt %d): %s", index, attempt, e)
            return ParseFailure(f"call failed: {e}")

        outcome = parse_batch_response(response_text)
        if not isinstance(outcome, ParseOk):
            log_event(
                "classification.parse_error",
                batch=index,
                attempt=attempt,
                kind=type(outcome).__name__,
                error=outcome.error,
            )
        return outcome

    def _resolve(
        self,
        batch: Sequence[MailItem],
        decisions: dict[str, ItemDecision],
        settings: ClassificationSettings,
    ) -> list[ClassificationResult]:
        allowed = {label.strip().lower() for label in settings.allowed_labels}
        results: list[ClassificationResult] = []
        for item in batch:
            decision = decisions.get(item.id)
            label = (decision.label or "").strip().lower() if decision else ""
            if decision is None or label not in allowed:
                results.append(
                    ClassificationResult(
                        id=item.id,
                        thread_id=item.thread_id,
                        label=None,
                        reason=REASON_INVALID_OR_MISSING,
                    )
                )
                continue

            reason = (decision.reason or "").strip() or REASON_OK
            results.append(
                ClassificationResult(id=item.id, thread_id=item.thread_id, label=label, reason=reason)
            )
        return results
