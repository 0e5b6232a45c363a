"""
Prompt builders.

Both builders are pure and deterministic: identical inputs give
byte-identical prompts (no timestamps, no randomness, sorted JSON keys).
Knowledge text, when configured, is inserted verbatim once inside a
delimited POLICY section placed before the schema/task sections; when not
configured the section is omitted entirely.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence

from inboxq.observability.logging import get_logger
from inboxq.storage.models import KnowledgeBundle, MailItem

logger = get_logger(__name__)

CLASSIFIER_PREAMBLE = """You are an email triage assistant for a busy professional.
For every email in the batch below, choose exactly ONE action label describing
what the mailbox owner should do next. Labels are mutually exclusive."""

LABEL_DESCRIPTIONS = {
    "reply_needed": "a person is waiting for a written answer from the owner",
    "review": "the owner should read it, but no reply or task is required",
    "todo": "the owner must do something other than reply (pay, sign, book, fix)",
    "archive": "no action or reading needed (notifications, promotions, receipts)",
}

TIE_BREAK = """If an email fits more than one label, or you are unsure, use "{fallback}"."""

OUTPUT_SCHEMA = """OUTPUT FORMAT
Respond with ONLY one JSON object, no markdown and no commentary:
{"items": [{"id": "<email id>", "label": "<one allowed label>", "reason": "<10 words max>"}]}
Include every email id from the batch exactly once."""

POLICY_OPEN = "=== POLICY (reference material from the mailbox owner; follow it when it applies) ==="
POLICY_CLOSE = "=== END POLICY ==="

DISPATCH_PREAMBLE = """You are an assistant acting on behalf of the mailbox owner.
Complete the task below. Write in the owner's voice, be concise, and never invent
facts that are not in the email or the policy."""

_SUBJECT_MAX = 300
_SENDER_MAX = 200
_BODY_MAX = 1500

_INJECTION_PATTERNS = [
    (
        r"(?i)(ignore|disregard|forget).*(previous|prior|above).*(instruction|directive|command|prompt)",
        "[REDACTED]",
    ),
    (r"(?i)system\s*:", ""),
    (r"(?i)assistant\s*:", ""),
    (r"(?i)you\s+are\s+now", "[REDACTED]"),
    (r"(?i)new\s+instructions?:", "[REDACTED]"),
]


def sanitize_user_input(text: str, max_length: int = 500) -> str:
    """
    Neutralize common prompt-injection markers in email content and truncate.

    Side Effects:
        Logs a warning when a suspicious pattern is rewritten
    """
    if not text:
        return ""

    for pattern, replacement in _INJECTION_PATTERNS:
        if re.search(pattern, text):
            logger.warning(
                "Potential prompt injection sanitized: pattern=%s, length=%d",
                pattern[:50],
                len(text),
            )
            text = re.sub(pattern, replacement, text)

    if len(text) > max_length:
        text = text[:max_length]
    return text


def _policy_section(knowledge: KnowledgeBundle) -> list[str]:
    if not knowledge.configured or not knowledge.text:
        return []
    return [f"{POLICY_OPEN}\n{knowledge.text}\n{POLICY_CLOSE}"]


def _format_labels(labels: Sequence[str]) -> str:
    lines = ["ALLOWED LABELS"]
    for label in labels:
        description = LABEL_DESCRIPTIONS.get(label)
        lines.append(f"- {label}: {description}" if description else f"- {label}")
    return "\n".join(lines)


def _serialize_item(item: MailItem) -> dict[str, object]:
    return {
        "id": item.id,
        "from": sanitize_user_input(item.sender, _SENDER_MAX),
        "subject": sanitize_user_input(item.subject, _SUBJECT_MAX),
        "date": item.date,
        "age_days": item.age_days,
        "body": sanitize_user_input(item.body_excerpt, _BODY_MAX),
    }


def build_classification_prompt(
    items: Iterable[MailItem],
    knowledge: KnowledgeBundle,
    allowed_labels: Sequence[str],
    fallback_label: str,
) -> str:
    """
    Assemble the batch classification prompt.

    Section order: preamble, allowed labels, tie-break, [policy], output schema, emails.
    """
    labels = [label.strip().lower() for label in allowed_labels]
    batch = [_serialize_item(item) for item in items]

    sections = [
        CLASSIFIER_PREAMBLE,
        _format_labels(labels),
        TIE_BREAK.format(fallback=fallback_label.strip().lower()),
        *_policy_section(knowledge),
        OUTPUT_SCHEMA,
        "EMAILS (JSON)\n" + json.dumps(batch, ensure_ascii=False, indent=2, sort_keys=True),
    ]
    return "\n\n".join(sections) + "\n"


def build_dispatch_prompt(task: str, knowledge: KnowledgeBundle) -> str:
    """Assemble a prompt for an agent generation task (reply drafting, summaries)."""
    sections = [
        DISPATCH_PREAMBLE,
        *_policy_section(knowledge),
        "TASK\n" + task.strip(),
    ]
    return "\n\n".join(sections) + "\n"
