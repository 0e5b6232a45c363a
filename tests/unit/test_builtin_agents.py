"""Unit tests for the built-in agents, including re-run idempotency."""

from __future__ import annotations

import json

import pytest
from conftest import ScriptedLLM, make_item

from inboxq.agents.builtin import BUILTIN_AGENTS, auto_archive, reply_drafter, todo_digest
from inboxq.agents.dispatcher import Dispatcher
from inboxq.agents.registry import AgentContext, AgentServices, Registry, register_modules
from inboxq.config import TriageSettings
from inboxq.storage.models import ClassificationResult, DispatchStatus, KnowledgeBundle


@pytest.fixture
def llm():
    return ScriptedLLM(default="Thanks, I will send it over by Friday.")


@pytest.fixture
def services(mailbox, llm, properties):
    return AgentServices(
        mailbox=mailbox,
        llm=llm,
        knowledge=KnowledgeBundle(configured=True, text="Sign off as Sam."),
        properties=properties,
        settings=TriageSettings(digest_recipient="owner@example.com", gemini_model="gemini-test"),
    )


def _registry(register, services) -> Registry:
    registry = Registry()
    register(registry, services)
    return registry


def _context(thread, label, item=None) -> AgentContext:
    return AgentContext(
        label=label,
        decision=ClassificationResult(id=f"m-{thread.id}", thread_id=thread.id, label=label),
        thread=thread,
        item=item,
    )


def test_builtin_agents_all_register(services):
    registry = Registry()

    outcomes = register_modules(registry, BUILTIN_AGENTS, services)

    assert all(o.ok for o in outcomes)
    assert registry.labels() == ["reply_needed", "todo", "archive"]


class TestReplyDrafter:
    def test_drafts_reply_with_policy_prompt(self, services, mailbox, llm):
        thread = mailbox.add("t1", subject="Contract", sender="bob@example.com")
        dispatcher = Dispatcher(_registry(reply_drafter.register, services), budget_per_run=10)

        outcomes = dispatcher.run_on_label("reply_needed", _context(thread, "reply_needed", make_item(1)))

        assert outcomes[0].status is DispatchStatus.OK
        assert thread.drafts == ["Thanks, I will send it over by Friday."]
        assert "Sign off as Sam." in llm.prompts[0]
        assert "Subject 1" in llm.prompts[0]
        assert llm.models == ["gemini-test"]

    def test_falls_back_to_thread_message_without_item(self, services, mailbox, llm):
        thread = mailbox.add("t1", subject="Contract")
        dispatcher = Dispatcher(_registry(reply_drafter.register, services), budget_per_run=10)

        dispatcher.run_on_label("reply_needed", _context(thread, "reply_needed"))

        assert "Subject: Contract" in llm.prompts[0]

    def test_rerun_does_not_stack_drafts(self, services, mailbox, llm):
        thread = mailbox.add("t1")
        dispatcher = Dispatcher(_registry(reply_drafter.register, services), budget_per_run=10)
        context = _context(thread, "reply_needed")

        dispatcher.run_on_label("reply_needed", context)
        second = dispatcher.run_on_label("reply_needed", context)

        assert len(thread.drafts) == 1
        assert (second[0].status, second[0].info) == (DispatchStatus.SKIP, "draft-exists")
        assert llm.calls == 1

    def test_empty_generation_asks_for_retry(self, services, mailbox):
        services.llm = ScriptedLLM("   ")
        thread = mailbox.add("t1")
        dispatcher = Dispatcher(_registry(reply_drafter.register, services), budget_per_run=10)

        outcome = dispatcher.run_on_label("reply_needed", _context(thread, "reply_needed"))[0]

        assert outcome.status is DispatchStatus.RETRY
        assert outcome.retry_after_ms_hint == 60_000
        assert thread.drafts == []


class TestTodoDigest:
    def test_queue_then_single_digest(self, services, mailbox):
        t1 = mailbox.add("t1", subject="Pay invoice <42>")
        t2 = mailbox.add("t2", subject="Book flights")
        dispatcher = Dispatcher(_registry(todo_digest.register, services), budget_per_run=10)

        dispatcher.run_on_label("todo", _context(t1, "todo"))
        dispatcher.run_on_label("todo", _context(t2, "todo"))
        outcomes = dispatcher.run_post_label("todo")

        assert outcomes[0].status is DispatchStatus.OK
        assert len(mailbox.sent) == 1
        sent = mailbox.sent[0]
        assert sent["to"] == "owner@example.com"
        assert "2 to-do" in sent["subject"]
        assert "Pay invoice &lt;42&gt;" in sent["html_body"]
        assert "Book flights" in sent["html_body"]

    def test_rerun_is_idempotent(self, services, mailbox):
        thread = mailbox.add("t1")
        dispatcher = Dispatcher(_registry(todo_digest.register, services), budget_per_run=10)

        first = dispatcher.run_on_label("todo", _context(thread, "todo"))[0]
        again = dispatcher.run_on_label("todo", _context(thread, "todo"))[0]
        dispatcher.run_post_label("todo")
        second_post = dispatcher.run_post_label("todo")[0]

        assert first.info == "queued"
        assert (again.status, again.info) == (DispatchStatus.SKIP, "already-queued")
        assert len(mailbox.sent) == 1
        assert (second_post.status, second_post.info) == (DispatchStatus.SKIP, "nothing-pending")

    def test_without_recipient_keeps_queue(self, services, mailbox, properties):
        services.settings = TriageSettings(digest_recipient="")
        thread = mailbox.add("t1")
        dispatcher = Dispatcher(_registry(todo_digest.register, services), budget_per_run=10)

        dispatcher.run_on_label("todo", _context(thread, "todo"))
        outcome = dispatcher.run_post_label("todo")[0]

        assert outcome.info == "no-recipient"
        assert mailbox.sent == []
        assert properties.get("PENDING-todo_digest") == '["t1"]'

    def test_queue_stays_bounded_without_recipient(self, services, mailbox, properties):
        services.settings = TriageSettings(digest_recipient="")
        dispatcher = Dispatcher(_registry(todo_digest.register, services), budget_per_run=1000)
        for index in range(todo_digest.MAX_PENDING + 5):
            thread = mailbox.add(f"t{index}")
            dispatcher.run_on_label("todo", _context(thread, "todo"))

        assert dispatcher.run_post_label("todo")[0].info == "no-recipient"

        pending = json.loads(properties.get("PENDING-todo_digest"))
        assert len(pending) == todo_digest.MAX_PENDING
        assert pending[0] == "t5"
        assert pending[-1] == f"t{todo_digest.MAX_PENDING + 4}"

    def test_unloadable_thread_still_listed(self, services, mailbox, properties):
        properties.set("PENDING-todo_digest", '["gone"]')
        dispatcher = Dispatcher(_registry(todo_digest.register, services), budget_per_run=10)

        dispatcher.run_post_label("todo")

        assert "Thread gone" in mailbox.sent[0]["html_body"]


class TestAutoArchive:
    def test_archives_labeled_inbox_threads_only(self, services, mailbox):
        labeled = mailbox.add("t1", labels=("archive",))
        other = mailbox.add("t2", labels=("todo",))
        dispatcher = Dispatcher(_registry(auto_archive.register, services), budget_per_run=10)

        outcome = dispatcher.run_post_label("archive")[0]

        assert outcome.status is DispatchStatus.OK
        assert outcome.info == "archived 1"
        assert not labeled.in_inbox
        assert other.in_inbox

    def test_rerun_is_idempotent(self, services, mailbox):
        thread = mailbox.add("t1", labels=("archive",))
        dispatcher = Dispatcher(_registry(auto_archive.register, services), budget_per_run=10)

        dispatcher.run_post_label("archive")
        second = dispatcher.run_post_label("archive")[0]

        assert thread.archive_calls == 1
        assert (second.status, second.info) == (DispatchStatus.SKIP, "nothing-to-archive")

    def test_skipped_in_dry_run(self, services, mailbox):
        thread = mailbox.add("t1", labels=("archive",))
        dispatcher = Dispatcher(
            _registry(auto_archive.register, services), budget_per_run=10, dry_run=True
        )

        outcome = dispatcher.run_post_label("archive")[0]

        assert outcome.info == "dry-run"
        assert thread.in_inbox
