"""Pending-action id lists for deferred batch operations.

An agent's per-item hook records thread ids here; its post-label hook drains
them once per run. The list is stored as a JSON array under one dedicated
property key per queue, deduplicated and in first-seen order.
"""

from __future__ import annotations

import json

from inboxq.infrastructure.properties import PropertyStore
from inboxq.observability.logging import get_logger

logger = get_logger(__name__)

PENDING_KEY_PREFIX = "PENDING"


class PendingActionQueue:
    """Deduplicated id list; with ``max_items`` set, the oldest ids are dropped first."""

    def __init__(self, properties: PropertyStore, name: str, max_items: int | None = None) -> None:
        self.properties = properties
        self.key = f"{PENDING_KEY_PREFIX}-{name}"
        self.max_items = max_items

    def load(self) -> list[str]:
        raw = self.properties.get(self.key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable pending list under %s", self.key)
            return []
        if not isinstance(data, list):
            logger.warning("Discarding non-list pending value under %s", self.key)
            return []
        return [str(item) for item in data]

    def add(self, item_id: str) -> bool:
        """
        Append ``item_id`` unless already queued.

        Returns:
            True if the id was added, False if it was already pending

        Side Effects:
            - Rewrites the JSON list in the property store
            - Drops the oldest ids beyond ``max_items``
        """
        pending = self.load()
        if item_id in pending:
            return False
        pending.append(item_id)
        if self.max_items is not None and len(pending) > self.max_items:
            dropped = len(pending) - self.max_items
            pending = pending[dropped:]
            logger.warning("Pending list %s is full; dropped %d oldest id(s)", self.key, dropped)
        self.properties.set(self.key, json.dumps(pending))
        return True

    def clear(self) -> None:
        self.properties.delete(self.key)

    def __len__(self) -> int:
        return len(self.load())
