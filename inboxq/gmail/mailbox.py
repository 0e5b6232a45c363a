"""Mailbox service over the Gmail REST API.

``MailboxService`` / ``MailThread`` are the contracts the triage core uses;
``GmailMailbox`` / ``GmailThread`` implement them with
google-api-python-client. Threads are loaded lazily and re-read after each
modification so label checks always see current state.
"""

from __future__ import annotations

import base64
import html
import re
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Protocol

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from inboxq.gmail.extract import MessageView, message_from_payload
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter

logger = get_logger(__name__)

INBOX_LABEL_ID = "INBOX"
_PAGE_SIZE = 100


@dataclass(frozen=True)
class Label:
    id: str
    name: str


class MailThread(Protocol):
    id: str

    def labels(self) -> list[Label]: ...

    def add_label(self, label: Label) -> None: ...

    def remove_label(self, label: Label) -> None: ...

    def archive(self) -> None: ...

    def create_draft_reply(self, text: str) -> str: ...

    def has_draft(self) -> bool: ...

    def latest_message(self) -> MessageView: ...


class MailboxService(Protocol):
    def search(self, query: str, max_results: int = 100) -> list[MailThread]: ...

    def get_thread(self, thread_id: str) -> MailThread: ...

    def create_label_if_missing(self, name: str) -> Label: ...

    def send_message(self, to: str, subject: str, html_body: str) -> str: ...


def _encode(message: EmailMessage) -> str:
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def _html_to_text(html_body: str) -> str:
    text = re.sub(r"<br\s*/?>|</p>|</li>|</h\d>", "\n", html_body, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text).strip()


def build_gmail_service(credentials: Any) -> Any:
    """Build an authenticated Gmail v1 service."""
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


class GmailMailbox:
    """MailboxService implementation for one Gmail account."""

    def __init__(self, service: Any, user_id: str = "me") -> None:
        self.service = service
        self.user_id = user_id
        self._labels: dict[str, Label] | None = None

    def label_index(self) -> dict[str, Label]:
        """Label id -> Label, loaded once per mailbox instance."""
        if self._labels is None:
            response = self.service.users().labels().list(userId=self.user_id).execute()
            self._labels = {
                item["id"]: Label(id=item["id"], name=item["name"])
                for item in response.get("labels", [])
            }
        return self._labels

    def search(self, query: str, max_results: int = 100) -> list[MailThread]:
        """
        Return up to ``max_results`` threads matching a Gmail search query.

        Side Effects:
            - One threads.list call per page (threads load lazily afterwards)
        """
        threads: list[MailThread] = []
        page_token: str | None = None
        while len(threads) < max_results:
            response = (
                self.service.users()
                .threads()
                .list(
                    userId=self.user_id,
                    q=query,
                    maxResults=min(_PAGE_SIZE, max_results - len(threads)),
                    pageToken=page_token,
                )
                .execute()
            )
            threads.extend(self.get_thread(item["id"]) for item in response.get("threads", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        counter("gmail.search.threads", len(threads))
        return threads[:max_results]

    def get_thread(self, thread_id: str) -> GmailThread:
        return GmailThread(self, thread_id)

    def create_label_if_missing(self, name: str) -> Label:
        """
        Find a user label by name, creating it if needed.

        Side Effects:
            - May create a Gmail label
        """
        wanted = name.strip().lower()
        # Gmail label names are unique regardless of case
        for label in self.label_index().values():
            if label.name.strip().lower() == wanted:
                return label

        created = (
            self.service.users()
            .labels()
            .create(
                userId=self.user_id,
                body={
                    "name": name,
                    "labelListVisibility": "labelShow",
                    "messageListVisibility": "show",
                },
            )
            .execute()
        )
        label = Label(id=created["id"], name=created["name"])
        self.label_index()[label.id] = label
        counter("gmail.label.created")
        logger.info("Created Gmail label %s", name)
        return label

    def send_message(self, to: str, subject: str, html_body: str) -> str:
        """
        Send an HTML email (with a plain-text alternative).

        Side Effects:
            - Sends an email through Gmail
        """
        message = EmailMessage()
        message["To"] = to
        message["Subject"] = subject
        message.set_content(_html_to_text(html_body))
        message.add_alternative(html_body, subtype="html")

        sent = (
            self.service.users()
            .messages()
            .send(userId=self.user_id, body={"raw": _encode(message)})
            .execute()
        )
        counter("gmail.message.sent")
        return sent["id"]


class GmailThread:
    """Lazy view over one Gmail thread."""

    def __init__(self, mailbox: GmailMailbox, thread_id: str) -> None:
        self.mailbox = mailbox
        self.id = thread_id
        self._data: dict[str, Any] | None = None

    @property
    def _users(self) -> Any:
        return self.mailbox.service.users()

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            self._data = (
                self._users.threads()
                .get(userId=self.mailbox.user_id, id=self.id, format="full")
                .execute()
            )
        return self._data

    def _modify(self, body: dict[str, list[str]]) -> None:
        self._users.threads().modify(userId=self.mailbox.user_id, id=self.id, body=body).execute()
        self._data = None

    def labels(self) -> list[Label]:
        index = self.mailbox.label_index()
        label_ids: dict[str, None] = {}
        for message in self._load().get("messages", []):
            for label_id in message.get("labelIds", []):
                label_ids.setdefault(label_id, None)
        return [index.get(label_id, Label(id=label_id, name=label_id)) for label_id in label_ids]

    def add_label(self, label: Label) -> None:
        self._modify({"addLabelIds": [label.id]})

    def remove_label(self, label: Label) -> None:
        self._modify({"removeLabelIds": [label.id]})

    def archive(self) -> None:
        self._modify({"removeLabelIds": [INBOX_LABEL_ID]})
        counter("gmail.thread.archived")

    def latest_message(self) -> MessageView:
        messages = self._load().get("messages", [])
        if not messages:
            raise ValueError(f"Thread {self.id} has no messages")
        return message_from_payload(messages[-1])

    def has_draft(self) -> bool:
        """True if any existing draft belongs to this thread."""
        page_token: str | None = None
        while True:
            response = (
                self._users.drafts()
                .list(userId=self.mailbox.user_id, pageToken=page_token, maxResults=_PAGE_SIZE)
                .execute()
            )
            for draft in response.get("drafts", []):
                if draft.get("message", {}).get("threadId") == self.id:
                    return True
            page_token = response.get("nextPageToken")
            if not page_token:
                return False

    def create_draft_reply(self, text: str) -> str:
        """
        Create a reply draft on this thread addressed to the latest sender.

        Side Effects:
            - Creates a Gmail draft
        """
        latest = self.latest_message()
        subject = latest.subject or ""
        if not subject.lower().startswith("re:"):
            subject = f"Re: {subject}".strip()

        message = EmailMessage()
        message["To"] = latest.reply_to or latest.sender
        message["Subject"] = subject
        if latest.message_id_header:
            message["In-Reply-To"] = latest.message_id_header
            message["References"] = latest.message_id_header
        message.set_content(text)

        try:
            draft = (
                self._users.drafts()
                .create(
                    userId=self.mailbox.user_id,
                    body={"message": {"raw": _encode(message), "threadId": self.id}},
                )
                .execute()
            )
        except HttpError as e:
            counter("gmail.draft.error")
            raise RuntimeError(f"Could not create draft on thread {self.id}: {e}") from e
        counter("gmail.draft.created")
        return draft["id"]
