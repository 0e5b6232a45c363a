"""Content extraction from Gmail message payloads (subject, sender, date, body)."""

from __future__ import annotations

import base64
import html
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

from inboxq.storage.models import MailItem

if TYPE_CHECKING:
    from inboxq.gmail.mailbox import MailThread

EXCERPT_CHARS = 1500


@dataclass(frozen=True)
class MessageView:
    id: str
    subject: str
    sender: str
    date: datetime | None
    body: str
    reply_to: str = ""
    message_id_header: str = ""


def _headers(payload: dict[str, Any]) -> dict[str, str]:
    return {h["name"].lower(): h.get("value", "") for h in payload.get("headers", [])}


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _strip_html(value: str) -> str:
    value = re.sub(r"(?is)<(script|style).*?</\1>", " ", value)
    value = re.sub(r"<[^>]+>", " ", value)
    return html.unescape(value)


def _walk_parts(payload: dict[str, Any]) -> Iterable[dict[str, Any]]:
    yield payload
    for part in payload.get("parts", []) or []:
        yield from _walk_parts(part)


def extract_body(payload: dict[str, Any]) -> str:
    """Prefer the first text/plain part; fall back to stripped text/html."""
    html_body = ""
    for part in _walk_parts(payload):
        data = part.get("body", {}).get("data")
        if not data:
            continue
        mime = part.get("mimeType", "")
        if mime == "text/plain":
            return _decode(data)
        if mime == "text/html" and not html_body:
            html_body = _strip_html(_decode(data))
    return html_body


def _parse_date(headers: dict[str, str], message: dict[str, Any]) -> datetime | None:
    raw = headers.get("date")
    if raw:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    internal = message.get("internalDate")
    if internal:
        return datetime.fromtimestamp(int(internal) / 1000, tz=UTC)
    return None


def message_from_payload(message: dict[str, Any]) -> MessageView:
    """Build a MessageView from a Gmail API message resource (format=full)."""
    payload = message.get("payload", {})
    headers = _headers(payload)
    body = extract_body(payload) or html.unescape(message.get("snippet", ""))
    return MessageView(
        id=message.get("id", ""),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        date=_parse_date(headers, message),
        body=body,
        reply_to=headers.get("reply-to", ""),
        message_id_header=headers.get("message-id", ""),
    )


def _excerpt(body: str, limit: int) -> str:
    collapsed = re.sub(r"\s+", " ", body).strip()
    return collapsed[:limit]


def to_mail_item(thread: MailThread, now: datetime, excerpt_chars: int = EXCERPT_CHARS) -> MailItem:
    """Project a thread's latest message into the MailItem the classifier sees."""
    latest = thread.latest_message()
    age_days = max((now - latest.date).days, 0) if latest.date else 0
    return MailItem(
        id=latest.id,
        thread_id=thread.id,
        subject=latest.subject,
        sender=latest.sender,
        date=latest.date.isoformat() if latest.date else "",
        age_days=age_days,
        body_excerpt=_excerpt(latest.body, excerpt_chars),
    )


def build_discovery_query(action_labels: Iterable[str]) -> str:
    """Inbox threads that carry none of the action labels yet."""
    excluded = " ".join(f"-label:{label}" for label in action_labels)
    return f"in:inbox {excluded}".strip()
