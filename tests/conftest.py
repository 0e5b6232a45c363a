"""
Pytest configuration for InboxQ tests

Provides in-memory stand-ins for the Google collaborators (mailbox,
document store, Gemini) and shared fixtures.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from datetime import UTC, datetime

import pytest

from inboxq.gdrive.documents import Document, DocumentAccessError
from inboxq.gmail.extract import MessageView
from inboxq.gmail.mailbox import INBOX_LABEL_ID, Label
from inboxq.infrastructure.properties import SqlitePropertyStore
from inboxq.observability.telemetry import reset_counters
from inboxq.storage.models import MailItem
from inboxq.triage.pipeline import shared_knowledge_cache

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=UTC)


class FakeThread:
    """MailThread backed by plain attributes."""

    def __init__(
        self,
        thread_id: str,
        *,
        subject: str = "Hello",
        sender: str = "alice@example.com",
        body: str = "Can you take a look?",
        date: datetime | None = None,
        labels: tuple[str, ...] = (),
        has_draft: bool = False,
    ) -> None:
        self.id = thread_id
        self.label_names: list[str] = [INBOX_LABEL_ID, *labels]
        self.drafts: list[str] = ["existing"] if has_draft else []
        self.archive_calls = 0
        self.fail_on_labels = False
        self.message = MessageView(
            id=f"msg-{thread_id}",
            subject=subject,
            sender=sender,
            date=date or datetime(2024, 5, 18, 9, 30, tzinfo=UTC),
            body=body,
        )

    @property
    def in_inbox(self) -> bool:
        return INBOX_LABEL_ID in self.label_names

    def labels(self) -> list[Label]:
        if self.fail_on_labels:
            raise RuntimeError("thread unavailable")
        return [Label(id=name, name=name) for name in self.label_names]

    def add_label(self, label: Label) -> None:
        if label.name not in self.label_names:
            self.label_names.append(label.name)

    def remove_label(self, label: Label) -> None:
        if label.name in self.label_names:
            self.label_names.remove(label.name)

    def archive(self) -> None:
        self.archive_calls += 1
        self.remove_label(Label(id=INBOX_LABEL_ID, name=INBOX_LABEL_ID))

    def create_draft_reply(self, text: str) -> str:
        self.drafts.append(text)
        return f"draft-{self.id}-{len(self.drafts)}"

    def has_draft(self) -> bool:
        return bool(self.drafts)

    def latest_message(self) -> MessageView:
        return self.message


class FakeMailbox:
    """MailboxService over a dict of FakeThreads, understanding the queries InboxQ issues."""

    def __init__(self) -> None:
        self.threads: dict[str, FakeThread] = {}
        self.created_labels: list[str] = []
        self.sent: list[dict[str, str]] = []
        self.queries: list[str] = []

    def add(self, thread_id: str, **kwargs) -> FakeThread:
        thread = FakeThread(thread_id, **kwargs)
        self.threads[thread_id] = thread
        return thread

    def _matches(self, thread: FakeThread, query: str) -> bool:
        for token in query.split():
            if token == "in:inbox" and not thread.in_inbox:
                return False
            if token.startswith("-label:") and token[len("-label:") :] in thread.label_names:
                return False
            if token.startswith("label:") and token[len("label:") :] not in thread.label_names:
                return False
        return True

    def search(self, query: str, max_results: int = 100) -> list[FakeThread]:
        self.queries.append(query)
        found = [t for t in self.threads.values() if self._matches(t, query)]
        return found[:max_results]

    def get_thread(self, thread_id: str) -> FakeThread:
        return self.threads[thread_id]

    def create_label_if_missing(self, name: str) -> Label:
        if name not in self.created_labels:
            self.created_labels.append(name)
        return Label(id=name, name=name)

    def send_message(self, to: str, subject: str, html_body: str) -> str:
        self.sent.append({"to": to, "subject": subject, "html_body": html_body})
        return f"sent-{len(self.sent)}"


class FakeDocumentStore:
    """DocumentStore with call counting and injectable failures."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.folders: dict[str, list[str]] = {}
        self.failing: set[str] = set()
        self.open_calls: dict[str, int] = {}
        self.folder_calls = 0

    def add_document(self, document_id: str, name: str, text: str) -> Document:
        document = Document(id=document_id, name=name, full_text=text)
        self.documents[document_id] = document
        return document

    def open_document(self, document_id: str) -> Document:
        self.open_calls[document_id] = self.open_calls.get(document_id, 0) + 1
        if document_id in self.failing or document_id not in self.documents:
            raise DocumentAccessError(f"cannot open {document_id}")
        return self.documents[document_id]

    def open_folder(self, folder_id: str) -> Iterator[str]:
        self.folder_calls += 1
        if folder_id not in self.folders:
            raise DocumentAccessError(f"cannot open folder {folder_id}")
        return iter(list(self.folders[folder_id]))


def batch_ids(prompt: str) -> list[str]:
    """Item ids serialized into a classification prompt."""
    payload = prompt.split("EMAILS (JSON)\n", 1)[1]
    return [item["id"] for item in json.loads(payload)]


def label_everything(label: str) -> Callable[[str], str]:
    """Responder that assigns ``label`` to every id in the batch."""

    def respond(prompt: str) -> str:
        items = [{"id": item_id, "label": label, "reason": "test"} for item_id in batch_ids(prompt)]
        return json.dumps({"items": items})

    return respond


Response = str | Exception | Callable[[str], str]


class ScriptedLLM:
    """
    TextGenerator returning scripted responses in order.

    A response may be a string, an exception to raise, or a callable of the
    prompt. Once the script runs out, ``default`` answers every call.
    """

    def __init__(self, *responses: Response, default: Response = '{"items": []}') -> None:
        self.responses = list(responses)
        self.default = default
        self.prompts: list[str] = []
        self.models: list[str | None] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def generate(self, prompt: str, model: str | None = None) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


def make_item(index: int, **overrides) -> MailItem:
    fields = {
        "id": f"m{index}",
        "thread_id": f"t{index}",
        "subject": f"Subject {index}",
        "sender": f"sender{index}@example.com",
        "date": "2024-05-18T09:30:00+00:00",
        "age_days": 2,
        "body_excerpt": f"Body of message {index}",
    }
    fields.update(overrides)
    return MailItem(**fields)


@pytest.fixture(autouse=True)
def _reset_state():
    reset_counters()
    shared_knowledge_cache.cache_clear()
    yield
    shared_knowledge_cache.cache_clear()


@pytest.fixture
def properties():
    store = SqlitePropertyStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def documents() -> FakeDocumentStore:
    return FakeDocumentStore()
