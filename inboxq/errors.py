"""
Error taxonomy for InboxQ.

Only configuration-level and knowledge-level errors are allowed to abort a
triage run; both are detected before any per-item work begins. Everything
that can go wrong for a single item, batch, or agent is converted into a
reason code or a DispatchOutcome instead of an exception.
"""

from __future__ import annotations


class InboxQError(Exception):
    """Base class for all InboxQ errors."""


class ConfigurationError(InboxQError):
    """A required setting is missing or malformed. Fatal to the run."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"{key}: {message}")


class KnowledgeFetchError(InboxQError):
    """A configured knowledge reference could not be resolved or read.

    The message always names the configuration key the reference came from
    so the operator knows which property to fix or remove.
    """

    def __init__(self, message: str, *, config_key: str, reference: str | None = None) -> None:
        self.config_key = config_key
        self.reference = reference
        super().__init__(message)


class AgentRegistrationError(InboxQError):
    """An agent registration is invalid (e.g. it exposes no hooks)."""
