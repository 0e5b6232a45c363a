"""
Triage Pipeline - one end-to-end run over the inbox.

Stages, in order:
1. Knowledge: fetch the configured reference docs (fails fast)
2. Discovery: inbox threads that carry none of the action labels
3. Extraction: latest message of each thread -> MailItem
4. Classification: batched Gemini calls under the daily budget
5. Labeling: LabelApplicator (+ on_label agents per thread)
6. Post-label: every registered post_label agent, once

Only ConfigurationError and KnowledgeFetchError escape ``run()``; everything
per-item, per-batch, or per-agent ends up as counts in the RunSummary.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, date, datetime
from functools import lru_cache

from inboxq.agents.builtin import BUILTIN_AGENTS
from inboxq.agents.dispatcher import Dispatcher
from inboxq.agents.registry import AgentServices, Registrar, Registry, register_modules
from inboxq.classification.engine import ClassificationEngine, ClassificationSettings
from inboxq.config import DB_PATH, TriageSettings
from inboxq.gdrive.documents import DocumentStore
from inboxq.gmail.extract import build_discovery_query, to_mail_item
from inboxq.gmail.mailbox import MailboxService, MailThread
from inboxq.infrastructure.llm_budget import BudgetTracker, date_key
from inboxq.infrastructure.properties import PropertyStore, SqlitePropertyStore
from inboxq.knowledge.store import KnowledgeStore
from inboxq.llm.gemini import TextGenerator
from inboxq.observability.logging import enable_debug_logging, get_logger
from inboxq.observability.telemetry import counter, get_latency_stats, log_event, time_block
from inboxq.storage.cache import TTLCache
from inboxq.storage.models import KnowledgeBundle, MailItem, RunSummary
from inboxq.triage.applicator import LabelApplicator

logger = get_logger(__name__)

DECISIONS_SAMPLE_SIZE = 20


@lru_cache(maxsize=4)
def shared_knowledge_cache(ttl_seconds: float) -> TTLCache[KnowledgeBundle]:
    """Process-wide knowledge cache, so the TTL spans runs served by one process."""
    return TTLCache[KnowledgeBundle](name="knowledge", ttl_seconds=ttl_seconds)


@lru_cache(maxsize=1)
def shared_property_store(db_path: str) -> SqlitePropertyStore:
    """One persistent SQLite connection per database file for the process."""
    return SqlitePropertyStore(db_path)


class TriagePipeline:
    def __init__(
        self,
        settings: TriageSettings,
        *,
        mailbox: MailboxService,
        llm: TextGenerator,
        documents: DocumentStore,
        properties: PropertyStore,
        knowledge_store: KnowledgeStore | None = None,
        registrars: Iterable[tuple[str, Registrar]] = BUILTIN_AGENTS,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings
        self.mailbox = mailbox
        self.llm = llm
        self.properties = properties
        self.knowledge_store = knowledge_store or KnowledgeStore(
            documents,
            shared_knowledge_cache(settings.knowledge_cache_ttl_seconds),
            ttl_seconds=settings.knowledge_cache_ttl_seconds,
            log_warnings=settings.knowledge_log_warnings,
        )
        self.registrars = list(registrars)
        self.budget = BudgetTracker(properties)
        self.engine = ClassificationEngine(llm, self.budget, model=settings.gemini_model, today=today)
        self._now = now
        self._today = today

    def run(self) -> RunSummary:
        """
        Execute one triage run.

        Raises:
            KnowledgeFetchError: A configured knowledge reference is unusable
            ConfigurationError: Invalid settings detected while wiring the run

        Side Effects:
            - Labels Gmail threads, drafts replies, sends digests, archives (live mode)
            - Consumes daily Gemini budget
        """
        settings = self.settings
        if settings.debug:
            enable_debug_logging()
        if settings.dry_run:
            logger.info("DRY_RUN enabled: no labels will be applied and mutating agents are skipped")

        with time_block("triage.run.latency"):
            knowledge = self.knowledge_store.fetch_combined(
                settings.knowledge_doc_ref, settings.knowledge_folder_ref, settings.max_docs
            )

            threads = self.mailbox.search(
                build_discovery_query(settings.allowed_labels), settings.max_items_per_run
            )
            items, extraction_errors = self._extract(threads)
            log_event("triage.discovered", threads=len(threads), items=len(items))

            results = self.engine.classify(
                items, knowledge, ClassificationSettings.from_triage(settings)
            )

            registry = Registry()
            dispatcher: Dispatcher | None = None
            registration_errors: list[str] = []
            if settings.agents_enabled:
                services = AgentServices(
                    mailbox=self.mailbox,
                    llm=self.llm,
                    knowledge=knowledge,
                    properties=self.properties,
                    settings=settings,
                )
                outcomes = register_modules(registry, self.registrars, services)
                registration_errors = [f"{o.module}: {o.error}" for o in outcomes if not o.ok]
                dispatcher = Dispatcher(
                    registry,
                    budget_per_run=settings.agents_budget_per_run,
                    dry_run=settings.dry_run,
                    label_map=settings.agents_label_map,
                )

            applicator = LabelApplicator(
                self.mailbox,
                settings.allowed_labels,
                dispatcher=dispatcher,
                dry_run=settings.dry_run,
                items_by_thread={item.thread_id: item for item in items},
                threads={thread.id: thread for thread in threads},
            )
            applied = applicator.apply(results)

            summary = RunSummary(
                discovered=len(threads),
                labeled=applied.labeled,
                skipped=applied.skipped,
                errors=applied.errors + extraction_errors,
                dry_run=settings.dry_run,
                dispatch=applied.dispatch,
                reasons=dict(Counter(result.reason for result in results if result.label is None)),
                budget=self.budget.usage(date_key(self._today()), settings.daily_budget),
                knowledge=knowledge.metadata if knowledge.configured else None,
                registration_errors=registration_errors,
            )
            if dispatcher is not None:
                summary.post_label.add(dispatcher.run_all_post_label())
            if settings.debug:
                summary.decisions_sample = results[:DECISIONS_SAMPLE_SIZE]

        counter("triage.run")
        log_event(
            "triage.run.complete",
            discovered=summary.discovered,
            labeled=summary.labeled,
            skipped=summary.skipped,
            errors=summary.errors,
            dry_run=summary.dry_run,
            latency=get_latency_stats("triage.run.latency"),
        )
        return summary

    def _extract(self, threads: Sequence[MailThread]) -> tuple[list[MailItem], int]:
        now = self._now()
        items: list[MailItem] = []
        errors = 0
        for thread in threads:
            try:
                items.append(to_mail_item(thread, now))
            except Exception as e:
                errors += 1
                counter("triage.extract_error")
                logger.warning("Could not read thread %s: %s", thread.id, e)
        return items, errors


def build_pipeline(settings: TriageSettings) -> TriagePipeline:
    """
    Wire a pipeline against the real Google services and the SQLite store.

    Raises:
        ConfigurationError: OAuth token missing or unusable
    """
    from inboxq.gdrive.documents import DriveDocumentStore, build_drive_service
    from inboxq.gmail.mailbox import GmailMailbox, build_gmail_service
    from inboxq.gmail.oauth import load_credentials
    from inboxq.llm.gemini import GeminiClient

    credentials = load_credentials()
    return TriagePipeline(
        settings,
        mailbox=GmailMailbox(build_gmail_service(credentials)),
        llm=GeminiClient(settings.gemini_model, settings.gemini_auth_mode),
        documents=DriveDocumentStore(build_drive_service(credentials)),
        properties=shared_property_store(str(DB_PATH)),
    )
