"""
Todo digest: collects ``todo`` threads during a run and mails one summary.

- on_label: remembers the thread id in a pending queue (deduplicated)
- post_label: sends a single HTML digest to DIGEST_RECIPIENT, then clears
  the queue; with nothing pending it does nothing
- the queue keeps only the newest MAX_PENDING ids, so it stays bounded while
  DIGEST_RECIPIENT is unset

The queue lives in the property store, so ids queued by a run whose digest
could not be sent are included in the next run's digest.
"""

from __future__ import annotations

import html

from inboxq.agents.registry import AgentContext, AgentHooks, AgentServices, Registry
from inboxq.gmail.mailbox import MailboxService
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import DispatchOutcome, DispatchStatus
from inboxq.storage.pending import PendingActionQueue

logger = get_logger(__name__)

AGENT_NAME = "todo_digest"
LABEL = "todo"
# Newest ids kept while the digest cannot be sent (e.g. no recipient yet)
MAX_PENDING = 100
DIGEST_SUBJECT = "InboxQ: {count} to-do item(s) from today's triage"

DIGEST_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 600px;">
<h2>To-do from your inbox</h2>
<ul>
{rows}
</ul>
<p style="color: #888; font-size: 12px;">Threads carry the "todo" label in Gmail.</p>
</body>
</html>
"""


class TodoDigestAgent:
    def __init__(self, mailbox: MailboxService, queue: PendingActionQueue, recipient: str) -> None:
        self.mailbox = mailbox
        self.queue = queue
        self.recipient = recipient

    def on_label(self, context: AgentContext) -> DispatchOutcome:
        if not self.queue.add(context.thread.id):
            return DispatchOutcome(
                agent_name=AGENT_NAME, status=DispatchStatus.SKIP, info="already-queued"
            )
        return DispatchOutcome(agent_name=AGENT_NAME, status=DispatchStatus.OK, info="queued")

    def post_label(self) -> DispatchOutcome:
        """
        Send the digest for everything queued.

        Side Effects:
            - Sends one email through the mailbox
            - Clears the pending queue after a successful send
        """
        pending = self.queue.load()
        if not pending:
            return DispatchOutcome(
                agent_name=AGENT_NAME, status=DispatchStatus.SKIP, info="nothing-pending"
            )
        if not self.recipient:
            logger.warning("todo digest has %d pending item(s) but DIGEST_RECIPIENT is unset", len(pending))
            return DispatchOutcome(
                agent_name=AGENT_NAME, status=DispatchStatus.SKIP, info="no-recipient"
            )

        rows = [self._render_row(thread_id) for thread_id in pending]
        self.mailbox.send_message(
            self.recipient,
            DIGEST_SUBJECT.format(count=len(pending)),
            DIGEST_TEMPLATE.format(rows="\n".join(rows)),
        )
        self.queue.clear()
        counter("agents.todo_digest.sent")
        return DispatchOutcome(
            agent_name=AGENT_NAME, status=DispatchStatus.OK, info=f"{len(pending)} item(s)"
        )

    def _render_row(self, thread_id: str) -> str:
        try:
            latest = self.mailbox.get_thread(thread_id).latest_message()
        except Exception as e:
            logger.warning("Could not load thread %s for the todo digest: %s", thread_id, e)
            return f"<li>Thread {html.escape(thread_id)}</li>"
        subject = html.escape(latest.subject or "(no subject)")
        sender = html.escape(latest.sender or "unknown sender")
        return f"<li><strong>{subject}</strong><br>{sender}</li>"


def register(registry: Registry, services: AgentServices) -> None:
    agent = TodoDigestAgent(
        services.mailbox,
        PendingActionQueue(services.properties, AGENT_NAME, max_items=MAX_PENDING),
        services.settings.digest_recipient,
    )
    registry.register(LABEL, AGENT_NAME, AgentHooks(on_label=agent.on_label, post_label=agent.post_label))
