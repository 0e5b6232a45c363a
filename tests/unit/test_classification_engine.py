"""Unit tests for the batch classification engine."""

from __future__ import annotations

import json
from datetime import date

import pytest
from conftest import ScriptedLLM, batch_ids, label_everything, make_item

from inboxq.classification.engine import ClassificationEngine, ClassificationSettings
from inboxq.config import ACTION_LABELS
from inboxq.infrastructure.llm_budget import BudgetTracker
from inboxq.llm.gemini import LLMError
from inboxq.observability.telemetry import get_counter
from inboxq.storage.models import KnowledgeBundle

TODAY = date(2024, 5, 20)


def _settings(batch_size: int = 10, daily_limit: int = 50) -> ClassificationSettings:
    return ClassificationSettings(
        batch_size=batch_size,
        daily_limit=daily_limit,
        allowed_labels=ACTION_LABELS,
        fallback_label="review",
    )


@pytest.fixture
def budget(properties):
    return BudgetTracker(properties)


def _engine(llm, budget) -> ClassificationEngine:
    return ClassificationEngine(llm, budget, model="gemini-test", today=lambda: TODAY)


class TestBudgetGating:
    def test_batches_past_daily_limit_are_budget_exceeded(self, budget):
        llm = ScriptedLLM(default=label_everything("todo"))
        items = [make_item(i) for i in range(25)]

        results = _engine(llm, budget).classify(
            items, KnowledgeBundle.not_configured(), _settings(batch_size=10, daily_limit=2)
        )

        assert llm.calls == 2
        assert [r.label for r in results[:20]] == ["todo"] * 20
        assert all(r.label is None and r.reason == "budget-exceeded" for r in results[20:])
        assert len(results) == 25
        assert budget.usage("2024-05-20", 2).count == 2

    def test_no_call_when_budget_already_spent(self, budget):
        budget.try_consume("2024-05-20", 3, 3)
        llm = ScriptedLLM()

        results = _engine(llm, budget).classify(
            [make_item(1)], KnowledgeBundle.not_configured(), _settings(daily_limit=3)
        )

        assert llm.calls == 0
        assert results[0].reason == "budget-exceeded"


class TestResponseResolution:
    def test_missing_id_is_invalid_or_missing(self, budget):
        response = json.dumps(
            {"items": [{"id": "m0", "label": "todo"}, {"id": "m2", "label": "archive", "reason": "promo"}]}
        )
        llm = ScriptedLLM(response)

        results = _engine(llm, budget).classify(
            [make_item(0), make_item(1), make_item(2)], KnowledgeBundle.not_configured(), _settings()
        )

        assert [(r.id, r.label, r.reason) for r in results] == [
            ("m0", "todo", "ok"),
            ("m1", None, "invalid-or-missing"),
            ("m2", "archive", "promo"),
        ]

    def test_labels_normalized_and_unknown_rejected(self, budget):
        response = json.dumps(
            {
                "items": [
                    {"id": "m0", "label": "  Reply_Needed "},
                    {"id": "m1", "label": "urgent"},
                    {"id": "m2", "label": None},
                ]
            }
        )
        llm = ScriptedLLM(response)

        results = _engine(llm, budget).classify(
            [make_item(0), make_item(1), make_item(2)], KnowledgeBundle.not_configured(), _settings()
        )

        assert [r.label for r in results] == ["reply_needed", None, None]
        assert results[1].reason == "invalid-or-missing"

    def test_results_carry_thread_ids_in_discovery_order(self, budget):
        llm = ScriptedLLM(default=label_everything("review"))
        items = [make_item(i) for i in (5, 3, 9)]

        results = _engine(llm, budget).classify(items, KnowledgeBundle.not_configured(), _settings())

        assert [(r.id, r.thread_id) for r in results] == [("m5", "t5"), ("m3", "t3"), ("m9", "t9")]

    def test_model_passed_through(self, budget):
        llm = ScriptedLLM(default=label_everything("review"))

        _engine(llm, budget).classify([make_item(1)], KnowledgeBundle.not_configured(), _settings())

        assert llm.models == ["gemini-test"]


class TestRetryAndFallback:
    def test_unparseable_then_ok_retries_once(self, budget):
        llm = ScriptedLLM("not json at all", label_everything("todo"))

        results = _engine(llm, budget).classify(
            [make_item(1)], KnowledgeBundle.not_configured(), _settings()
        )

        assert llm.calls == 2
        assert llm.prompts[0] == llm.prompts[1]
        assert results[0].label == "todo"
        assert get_counter("classification.batch.retry") == 1

    def test_two_failures_fall_back_for_whole_batch(self, budget):
        llm = ScriptedLLM("nope", '{"wrong": true}')

        results = _engine(llm, budget).classify(
            [make_item(1), make_item(2)], KnowledgeBundle.not_configured(), _settings()
        )

        assert llm.calls == 2
        assert [(r.label, r.reason) for r in results] == [
            (None, "fallback-on-error"),
            (None, "fallback-on-error"),
        ]

    def test_transport_error_is_retried_then_falls_back(self, budget):
        llm = ScriptedLLM(LLMError("503"), LLMError("503"))

        results = _engine(llm, budget).classify(
            [make_item(1)], KnowledgeBundle.not_configured(), _settings()
        )

        assert results[0].reason == "fallback-on-error"

    def test_retry_does_not_consume_extra_budget(self, budget):
        llm = ScriptedLLM("garbage", label_everything("todo"))

        _engine(llm, budget).classify([make_item(1)], KnowledgeBundle.not_configured(), _settings())

        assert budget.usage("2024-05-20", 50).count == 1

    def test_failed_batch_does_not_affect_next_batch(self, budget):
        llm = ScriptedLLM("bad", "bad", default=label_everything("archive"))
        items = [make_item(i) for i in range(4)]

        results = _engine(llm, budget).classify(
            items, KnowledgeBundle.not_configured(), _settings(batch_size=2)
        )

        assert [r.reason for r in results[:2]] == ["fallback-on-error"] * 2
        assert [r.label for r in results[2:]] == ["archive", "archive"]


def test_every_label_is_allowed_or_none(budget):
    def chaotic(prompt: str) -> str:
        labels = ["todo", "TODO", "spam", "", "Archive", "review!", "reply_needed"]
        items = [
            {"id": item_id, "label": labels[i % len(labels)]}
            for i, item_id in enumerate(batch_ids(prompt))
        ]
        return json.dumps({"items": items})

    llm = ScriptedLLM(default=chaotic)
    items = [make_item(i) for i in range(30)]

    results = _engine(llm, budget).classify(
        items, KnowledgeBundle.not_configured(), _settings(batch_size=7, daily_limit=3)
    )

    assert len(results) == 30
    assert all(r.label is None or r.label in ACTION_LABELS for r in results)
