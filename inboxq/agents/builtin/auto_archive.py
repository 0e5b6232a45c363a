"""Archives inbox threads labeled ``archive`` once labeling is done."""

from __future__ import annotations

from inboxq.agents.registry import AgentHooks, AgentServices, Registry
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import DispatchOutcome, DispatchStatus

logger = get_logger(__name__)

AGENT_NAME = "auto_archive"
LABEL = "archive"
ARCHIVE_QUERY = f"in:inbox label:{LABEL}"


def register(registry: Registry, services: AgentServices) -> None:
    def post_label() -> DispatchOutcome:
        # Archived threads drop out of the query, so a second pass finds nothing
        threads = services.mailbox.search(ARCHIVE_QUERY, services.settings.max_items_per_run)
        if not threads:
            return DispatchOutcome(agent_name=AGENT_NAME, status=DispatchStatus.SKIP, info="nothing-to-archive")

        archived = failed = 0
        for thread in threads:
            try:
                thread.archive()
                archived += 1
            except Exception as e:
                failed += 1
                logger.warning("Failed to archive thread %s: %s", thread.id, e)

        counter("agents.auto_archive.archived", archived)
        if failed and not archived:
            return DispatchOutcome(
                agent_name=AGENT_NAME, status=DispatchStatus.ERROR, info=f"{failed} thread(s) failed"
            )
        info = f"archived {archived}" + (f", {failed} failed" if failed else "")
        return DispatchOutcome(agent_name=AGENT_NAME, status=DispatchStatus.OK, info=info)

    registry.register(LABEL, AGENT_NAME, AgentHooks(post_label=post_label))
