"""
Agent Registry - explicit registration of label-triggered agents.

An agent is a named pair of optional hooks bound to one action label:

- ``on_label(context)`` runs once per thread right after that thread is
  labeled (or would have been, in dry-run)
- ``post_label()`` runs once per run after all threads are labeled

Registrations are kept in the order they were made; the dispatcher invokes
them in that order. The registry is a plain value owned by the pipeline,
so every run (and every test) builds its own.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol

from inboxq.errors import AgentRegistrationError
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter
from inboxq.storage.models import (
    ClassificationResult,
    DispatchOutcome,
    KnowledgeBundle,
    MailItem,
)

if TYPE_CHECKING:
    from inboxq.config import TriageSettings
    from inboxq.gmail.mailbox import MailboxService, MailThread
    from inboxq.infrastructure.properties import PropertyStore
    from inboxq.llm.gemini import TextGenerator

logger = get_logger(__name__)

RunWhen = Literal["default", "always"]

# A hook may return a full outcome, a bare status string, or nothing (= ok)
HookResult = DispatchOutcome | str | None


@dataclass(frozen=True)
class AgentContext:
    """Per-thread input handed to ``on_label`` hooks."""

    label: str
    decision: ClassificationResult
    thread: MailThread
    item: MailItem | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class AgentHooks:
    on_label: Callable[[AgentContext], HookResult] | None = None
    post_label: Callable[[], HookResult] | None = None


@dataclass(frozen=True)
class AgentOptions:
    """
    Per-registration options.

    ``run_when="always"`` lets a hook run during dry-run; such hooks must not
    mutate the mailbox. ``timeout_ms_hint`` is advisory only.
    """

    enabled: bool = True
    run_when: RunWhen = "default"
    timeout_ms_hint: int | None = None


@dataclass(frozen=True)
class AgentRegistration:
    label: str
    name: str
    hooks: AgentHooks
    options: AgentOptions = field(default_factory=AgentOptions)


@dataclass
class AgentServices:
    """Collaborators handed to registrars so agents never import globals."""

    mailbox: MailboxService
    llm: TextGenerator
    knowledge: KnowledgeBundle
    properties: PropertyStore
    settings: TriageSettings


class Registrar(Protocol):
    """A module-level ``register(registry, services)`` function."""

    def __call__(self, registry: Registry, services: AgentServices) -> Any: ...


@dataclass(frozen=True)
class RegistrationOutcome:
    module: str
    ok: bool
    error: str | None = None


class Registry:
    """Ordered collection of agent registrations."""

    def __init__(self) -> None:
        self._registrations: list[AgentRegistration] = []

    def register(
        self,
        label: str,
        name: str,
        hooks: AgentHooks,
        options: AgentOptions | None = None,
    ) -> AgentRegistration:
        """
        Add an agent for ``label``.

        Raises:
            AgentRegistrationError: No hook supplied, or an empty label/name
        """
        normalized = (label or "").strip().lower()
        if not normalized:
            raise AgentRegistrationError(f"Agent {name!r} registered without a label")
        if not name or not name.strip():
            raise AgentRegistrationError(f"Agent for label {normalized!r} has no name")
        if hooks.on_label is None and hooks.post_label is None:
            raise AgentRegistrationError(
                f"Agent {name!r} for label {normalized!r} must define on_label or post_label"
            )

        registration = AgentRegistration(
            label=normalized,
            name=name.strip(),
            hooks=hooks,
            options=options or AgentOptions(),
        )
        self._registrations.append(registration)
        counter("agents.registered")
        logger.debug("Registered agent %s for label %s", registration.name, normalized)
        return registration

    def registrations_for(self, label: str) -> list[AgentRegistration]:
        normalized = (label or "").strip().lower()
        return [r for r in self._registrations if r.label == normalized]

    def labels(self) -> list[str]:
        """Labels with at least one registration, in first-registration order."""
        return list(dict.fromkeys(r.label for r in self._registrations))

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self) -> Iterator[AgentRegistration]:
        return iter(list(self._registrations))


def register_modules(
    registry: Registry,
    registrars: Iterable[tuple[str, Registrar]],
    services: AgentServices,
) -> list[RegistrationOutcome]:
    """
    Run each ``(module_name, register)`` pair against ``registry``.

    A failing registrar is recorded and skipped; the others still register.

    Returns:
        One RegistrationOutcome per registrar, in input order
    """
    outcomes: list[RegistrationOutcome] = []
    for module, register in registrars:
        try:
            register(registry, services)
        except Exception as e:
            counter("agents.registration_error")
            logger.error("Agent module %s failed to register: %s", module, e)
            outcomes.append(RegistrationOutcome(module=module, ok=False, error=str(e)))
            continue
        outcomes.append(RegistrationOutcome(module=module, ok=True))
    return outcomes
