"""
Agent Dispatcher - runs registered hooks with gating and isolation.

Gates, checked in this order for every ``on_label`` registration:

1. disabled registration, or agent not allowed for the label by the
   label-allow map -> skip
2. per-run execution budget exhausted -> skip "budget-exceeded"
   (otherwise the counter is incremented before the call)
3. dry-run and ``run_when != "always"`` -> skip "dry-run"

A hook exception becomes an ``error`` outcome for that registration only;
the remaining registrations still run.

``post_label`` hooks share gates 1 and 3 but not the per-run budget.

Note: the per-run counter is a plain read-then-increment. Runs are
single-threaded; sharing one Dispatcher across threads is not supported.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

from inboxq.agents.registry import AgentContext, AgentRegistration, HookResult, Registry
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event
from inboxq.storage.models import DispatchOutcome, DispatchStatus

logger = get_logger(__name__)

SKIP_DISABLED = "disabled"
SKIP_NOT_ALLOWED = "not-allowed"
SKIP_BUDGET_EXCEEDED = "budget-exceeded"
SKIP_DRY_RUN = "dry-run"


def _normalize(name: str, result: HookResult) -> DispatchOutcome:
    """Hooks may return an outcome, a status string, or nothing (treated as ok)."""
    if isinstance(result, DispatchOutcome):
        return result
    if isinstance(result, str):
        try:
            return DispatchOutcome(agent_name=name, status=DispatchStatus(result.strip().lower()))
        except ValueError:
            return DispatchOutcome(agent_name=name, status=DispatchStatus.OK, info=result)
    return DispatchOutcome(agent_name=name, status=DispatchStatus.OK)


class Dispatcher:
    """Per-run dispatcher; build a new one for every triage run."""

    def __init__(
        self,
        registry: Registry,
        *,
        budget_per_run: int,
        dry_run: bool = False,
        label_map: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.registry = registry
        self.budget_per_run = budget_per_run
        self.dry_run = dry_run
        self.label_map = label_map
        self.executions = 0

    def is_allowed(self, registration: AgentRegistration) -> bool:
        """
        Check the label-allow map.

        No map allows everything. A label absent from the map allows every
        agent registered for it; a listed label allows only the named agents.
        """
        if self.label_map is None or registration.label not in self.label_map:
            return True
        return registration.name in self.label_map[registration.label]

    def run_on_label(self, label: str, context: AgentContext) -> list[DispatchOutcome]:
        """
        Run every ``on_label`` hook registered for ``label``, in registration order.

        Registrations without an ``on_label`` hook produce no outcome.

        Side Effects:
            - Increments the per-run execution counter for each hook invoked
            - Whatever the hooks themselves do (drafts, queue writes)
        """
        outcomes: list[DispatchOutcome] = []
        for registration in self.registry.registrations_for(label):
            hook = registration.hooks.on_label
            if hook is None:
                continue

            skip = self._gate(registration)
            if skip is None and self.executions >= self.budget_per_run:
                skip = SKIP_BUDGET_EXCEEDED
            if skip is None:
                self.executions += 1
                if self._dry_run_blocks(registration):
                    skip = SKIP_DRY_RUN

            if skip is not None:
                outcomes.append(self._skipped(registration, skip))
                continue

            outcomes.append(self._invoke(registration, lambda: hook(context)))
        return outcomes

    def run_post_label(self, label: str) -> list[DispatchOutcome]:
        """Run every ``post_label`` hook registered for ``label`` (no per-item context)."""
        outcomes: list[DispatchOutcome] = []
        for registration in self.registry.registrations_for(label):
            hook = registration.hooks.post_label
            if hook is None:
                continue

            skip = self._gate(registration)
            if skip is None and self._dry_run_blocks(registration):
                skip = SKIP_DRY_RUN
            if skip is not None:
                outcomes.append(self._skipped(registration, skip))
                continue

            outcomes.append(self._invoke(registration, hook))
        return outcomes

    def run_all_post_label(self) -> list[DispatchOutcome]:
        """Post-label pass for every registered label, in first-registration order."""
        outcomes: list[DispatchOutcome] = []
        for label in self.registry.labels():
            outcomes.extend(self.run_post_label(label))
        return outcomes

    def _gate(self, registration: AgentRegistration) -> str | None:
        if not registration.options.enabled:
            return SKIP_DISABLED
        if not self.is_allowed(registration):
            return SKIP_NOT_ALLOWED
        return None

    def _dry_run_blocks(self, registration: AgentRegistration) -> bool:
        return self.dry_run and registration.options.run_when != "always"

    def _skipped(self, registration: AgentRegistration, reason: str) -> DispatchOutcome:
        counter(f"agents.skip.{reason}")
        return DispatchOutcome(
            agent_name=registration.name, status=DispatchStatus.SKIP, info=reason
        )

    def _invoke(
        self, registration: AgentRegistration, call: Callable[[], HookResult]
    ) -> DispatchOutcome:
        try:
            outcome = _normalize(registration.name, call())
        except Exception as e:
            counter("agents.error")
            logger.exception(
                "Agent %s (label %s) raised; continuing with remaining agents",
                registration.name,
                registration.label,
            )
            return DispatchOutcome(
                agent_name=registration.name, status=DispatchStatus.ERROR, info=str(e)
            )

        counter(f"agents.{outcome.status.value}")
        if outcome.status is DispatchStatus.RETRY:
            log_event(
                "agents.retry_requested",
                agent=registration.name,
                label=registration.label,
                retry_after_ms_hint=outcome.retry_after_ms_hint,
                timeout_ms_hint=registration.options.timeout_ms_hint,
            )
        return outcome
