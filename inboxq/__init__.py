"""InboxQ - knowledge-grounded Gmail triage"""

from __future__ import annotations

__version__ = "0.1.0"


def __getattr__(name: str):
    """
    Lazy imports so lightweight modules load without the Google client stack.
    """
    if name == "TriagePipeline":
        from inboxq.triage.pipeline import TriagePipeline

        return TriagePipeline
    if name == "TriageSettings":
        from inboxq.config import TriageSettings

        return TriageSettings
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = ["TriagePipeline", "TriageSettings"]
