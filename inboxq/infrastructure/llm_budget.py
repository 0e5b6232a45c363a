"""
Daily Gemini call budget.

Counters live in the property store under ``"<PREFIX>-YYYY-MM-DD"`` so a new
calendar day starts from zero without any cleanup job. ``try_consume`` is the
sole gate for generative-text calls: a False return means "quota exhausted"
and callers mark the affected items instead of aborting the run.

Known limitation: the read-then-write below is not atomic. Two triage runs
executing concurrently against the same store can both pass the check and
overshoot the limit. Runs are expected to be serialized by the scheduler; if
that ever changes, route increments through a single writer or an atomic
compare-and-increment.
"""

from __future__ import annotations

from datetime import date

from inboxq.config import BUDGET_KEY_PREFIX
from inboxq.infrastructure.properties import PropertyStore
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import BudgetCounter

logger = get_logger(__name__)


def date_key(day: date | None = None) -> str:
    """Return the ISO date key (YYYY-MM-DD) for ``day`` (default: today)."""
    return (day or date.today()).isoformat()


class BudgetTracker:
    """Date-keyed call counter with a hard daily ceiling."""

    def __init__(self, properties: PropertyStore, prefix: str = BUDGET_KEY_PREFIX) -> None:
        self.properties = properties
        self.prefix = prefix

    def _key(self, day_key: str) -> str:
        return f"{self.prefix}-{day_key}"

    def _read(self, day_key: str) -> int:
        raw = self.properties.get(self._key(day_key))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("Corrupt budget counter %s=%r, treating as 0", self._key(day_key), raw)
            return 0

    def try_consume(self, day_key: str, n: int, limit: int) -> bool:
        """
        Consume ``n`` calls from the budget for ``day_key`` if it fits.

        Returns:
            True if ``count + n <= limit`` (and the new count was written),
            False otherwise (state untouched)

        Side Effects:
            - Writes the incremented counter to the property store
            - Increments telemetry counters (budget.consumed / budget.rejected)
        """
        current = self._read(day_key)
        if current + n > limit:
            counter("budget.rejected")
            logger.info(
                "Daily budget exhausted for %s (%d/%d, requested %d)", day_key, current, limit, n
            )
            return False

        self.properties.set(self._key(day_key), str(current + n))
        counter("budget.consumed", n)
        logger.debug("Budget %s: %d -> %d (limit %d)", day_key, current, current + n, limit)
        return True

    def usage(self, day_key: str, limit: int) -> BudgetCounter:
        """Current counter for ``day_key`` (for run summaries)."""
        return BudgetCounter(date_key=day_key, count=self._read(day_key), limit=limit)
