"""
Label Applicator - attaches at most one action label per thread.

Action labels are mutually exclusive: a thread that already carries any of
them is never relabeled. Right after a thread's label is resolved (attached
live, or only logged in dry-run) the dispatcher runs that label's
``on_label`` agents for the thread.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from inboxq.agents.dispatcher import Dispatcher
from inboxq.agents.registry import AgentContext
from inboxq.gmail.mailbox import Label, MailboxService, MailThread
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event
from inboxq.storage.models import ApplySummary, ClassificationResult, MailItem

logger = get_logger(__name__)


class LabelApplicator:
    def __init__(
        self,
        mailbox: MailboxService,
        action_labels: Sequence[str],
        *,
        dispatcher: Dispatcher | None = None,
        dry_run: bool = False,
        items_by_thread: Mapping[str, MailItem] | None = None,
        threads: Mapping[str, MailThread] | None = None,
    ) -> None:
        self.mailbox = mailbox
        self.action_labels = {label.strip().lower() for label in action_labels}
        self.dispatcher = dispatcher
        self.dry_run = dry_run
        self.items_by_thread = dict(items_by_thread or {})
        self.threads = dict(threads or {})
        self._labels: dict[str, Label] = {}

    def apply(self, results: Iterable[ClassificationResult]) -> ApplySummary:
        """
        Apply classification results to their threads.

        Returns:
            ApplySummary with labeled/skipped/errors and folded dispatch counts

        Side Effects:
            - Creates missing Gmail labels and attaches them (live mode only)
            - Runs on_label agents for every resolved thread
        """
        # Last decision per thread wins
        by_thread: dict[str, ClassificationResult] = {}
        for result in results:
            by_thread[result.thread_id] = result

        summary = ApplySummary()
        for thread_id, result in by_thread.items():
            try:
                self._apply_one(thread_id, result, summary)
            except Exception as e:
                summary.errors += 1
                counter("applicator.error")
                logger.error("Failed to apply label to thread %s: %s", thread_id, e)

        log_event(
            "applicator.summary",
            labeled=summary.labeled,
            skipped=summary.skipped,
            errors=summary.errors,
            dry_run=self.dry_run,
        )
        return summary

    def _apply_one(self, thread_id: str, result: ClassificationResult, summary: ApplySummary) -> None:
        if result.label is None:
            summary.skipped += 1
            return

        thread = self._thread(thread_id)
        existing = {label.name.strip().lower() for label in thread.labels()}
        if existing & self.action_labels:
            summary.skipped += 1
            counter("applicator.already_labeled")
            return

        if self.dry_run:
            summary.skipped += 1
            logger.info("[dry-run] would label thread %s as %s (%s)", thread_id, result.label, result.reason)
        else:
            thread.add_label(self._label(result.label))
            summary.labeled += 1
            counter(f"applicator.labeled.{result.label}")

        if self.dispatcher is not None:
            context = AgentContext(
                label=result.label,
                decision=result,
                thread=thread,
                item=self.items_by_thread.get(thread_id),
                dry_run=self.dry_run,
            )
            summary.dispatch.add(self.dispatcher.run_on_label(result.label, context))

    def _thread(self, thread_id: str) -> MailThread:
        thread = self.threads.get(thread_id)
        if thread is None:
            thread = self.mailbox.get_thread(thread_id)
            self.threads[thread_id] = thread
        return thread

    def _label(self, name: str) -> Label:
        label = self._labels.get(name)
        if label is None:
            label = self.mailbox.create_label_if_missing(name)
            self._labels[name] = label
        return label
