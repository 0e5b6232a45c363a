"""Drafts replies for threads labeled ``reply_needed``.

The draft is written with Gemini using the owner's knowledge bundle as
policy. A thread that already has a draft is left alone, so re-running on
the same thread never stacks drafts.
"""

from __future__ import annotations

from inboxq.agents.registry import AgentContext, AgentHooks, AgentOptions, AgentServices, Registry
from inboxq.llm.prompts import build_dispatch_prompt, sanitize_user_input
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import DispatchOutcome, DispatchStatus

logger = get_logger(__name__)

AGENT_NAME = "reply_drafter"
LABEL = "reply_needed"

REPLY_TASK = """Write a short reply to the email below. Plain text only, no subject line,
no placeholders. If the policy says how to answer this kind of request, follow it.

From: {sender}
Subject: {subject}

{body}"""


def _draft_task(context: AgentContext) -> str:
    if context.item is not None:
        sender, subject, body = context.item.sender, context.item.subject, context.item.body_excerpt
    else:
        latest = context.thread.latest_message()
        sender, subject, body = latest.sender, latest.subject, latest.body
    return REPLY_TASK.format(
        sender=sanitize_user_input(sender, 200),
        subject=sanitize_user_input(subject, 300),
        body=sanitize_user_input(body, 1500),
    )


def register(registry: Registry, services: AgentServices) -> None:
    def on_label(context: AgentContext) -> DispatchOutcome:
        if context.thread.has_draft():
            return DispatchOutcome(
                agent_name=AGENT_NAME, status=DispatchStatus.SKIP, info="draft-exists"
            )

        prompt = build_dispatch_prompt(_draft_task(context), services.knowledge)
        text = services.llm.generate(prompt, services.settings.gemini_model).strip()
        if not text:
            return DispatchOutcome(
                agent_name=AGENT_NAME,
                status=DispatchStatus.RETRY,
                info="empty draft from model",
                retry_after_ms_hint=60_000,
            )

        draft_id = context.thread.create_draft_reply(text)
        counter("agents.reply_drafter.drafted")
        logger.info("Drafted reply on thread %s", context.thread.id)
        return DispatchOutcome(agent_name=AGENT_NAME, status=DispatchStatus.OK, info=draft_id)

    registry.register(
        LABEL,
        AGENT_NAME,
        AgentHooks(on_label=on_label),
        AgentOptions(timeout_ms_hint=30_000),
    )
