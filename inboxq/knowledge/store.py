"""
Knowledge Store - user-supplied reference text for prompts.

Operators can point InboxQ at one Google Doc (KNOWLEDGE_DOC_URL) and/or a
folder of Docs (KNOWLEDGE_FOLDER_URL). The text is injected verbatim into
classification and agent prompts as a policy section.

Rules:
- An empty reference means "not configured" and is never an error.
- A configured reference that cannot be resolved or read is ALWAYS an error
  (KnowledgeFetchError naming the config key); we never silently classify
  without knowledge the operator asked for.
- Documents are cached by id for a fixed TTL (default 30 minutes); folder
  fetches go through the same per-document cache.
- Utilization above 50%/90% of the model context is logged, never blocking.
"""

from __future__ import annotations

import itertools

from inboxq.config import KNOWLEDGE_DOC_KEY, KNOWLEDGE_FOLDER_KEY, MODEL_TOKEN_LIMIT
from inboxq.errors import KnowledgeFetchError
from inboxq.gdrive.documents import DocumentStore
from inboxq.knowledge.references import resolve_reference
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event
from inboxq.storage.cache import TTLCache
from inboxq.storage.models import KnowledgeBundle, KnowledgeMetadata, KnowledgeSource

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
SOFT_WARNING_PERCENT = 50.0
CRITICAL_WARNING_PERCENT = 90.0
REMEDIATION_HINT = "remove this property to proceed without knowledge"


def _document_header(name: str) -> str:
    return f"## {name}"


class KnowledgeStore:
    """Fetches, caches, and aggregates knowledge documents."""

    def __init__(
        self,
        documents: DocumentStore,
        cache: TTLCache[KnowledgeBundle] | None = None,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        model_limit: int = MODEL_TOKEN_LIMIT,
        log_warnings: bool = True,
    ) -> None:
        self.documents = documents
        self.ttl_seconds = ttl_seconds
        self.cache = cache or TTLCache[KnowledgeBundle](name="knowledge", ttl_seconds=ttl_seconds)
        self.model_limit = model_limit
        self.log_warnings = log_warnings

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def fetch_document(
        self,
        reference: str | None,
        *,
        config_key: str = KNOWLEDGE_DOC_KEY,
        force_refresh: bool = False,
    ) -> KnowledgeBundle:
        """
        Fetch one knowledge document.

        Args:
            reference: Raw document id or a URL embedding one ("" = not configured)
            config_key: Configuration key the reference came from (for errors)
            force_refresh: Bypass the cache and re-read the document

        Raises:
            KnowledgeFetchError: Unresolvable reference, unreadable or empty document

        Side Effects:
            - Reads from the document store on cache miss
            - Writes the bundle to the TTL cache
        """
        bundle = self._fetch_document(reference, config_key=config_key, force_refresh=force_refresh)
        self._warn_on_utilization(bundle)
        return bundle

    def fetch_folder(
        self,
        reference: str | None,
        *,
        max_docs: int,
        config_key: str = KNOWLEDGE_FOLDER_KEY,
    ) -> KnowledgeBundle:
        """
        Fetch up to ``max_docs`` documents from a folder and concatenate them.

        Each document's text is preceded by one header line with its name;
        documents are separated by a blank line, in folder order. Documents
        that fail individually are logged and skipped.

        Raises:
            KnowledgeFetchError: Unresolvable/inaccessible folder, or no document succeeded
        """
        bundle = self._fetch_folder(reference, max_docs=max_docs, config_key=config_key)
        self._warn_on_utilization(bundle)
        return bundle

    def fetch_combined(
        self,
        doc_reference: str | None,
        folder_reference: str | None,
        max_docs: int,
    ) -> KnowledgeBundle:
        """
        Single document (first) plus folder documents, with re-aggregated metadata.

        Returns an unconfigured bundle when neither reference is set.
        """
        parts = [
            self._fetch_document(doc_reference, config_key=KNOWLEDGE_DOC_KEY),
            self._fetch_folder(folder_reference, max_docs=max_docs, config_key=KNOWLEDGE_FOLDER_KEY),
        ]
        configured = [part for part in parts if part.configured]
        if not configured:
            return KnowledgeBundle.not_configured()

        bundle = configured[0] if len(configured) == 1 else self._merge(configured)
        self._warn_on_utilization(bundle)
        log_event(
            "knowledge.loaded",
            sources=len(bundle.metadata.sources),
            estimated_tokens=bundle.metadata.estimated_tokens,
            utilization_percent=bundle.metadata.utilization_percent,
        )
        return bundle

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_document(
        self,
        reference: str | None,
        *,
        config_key: str,
        force_refresh: bool = False,
    ) -> KnowledgeBundle:
        if not reference or not reference.strip():
            return KnowledgeBundle.not_configured()

        document_id = resolve_reference(reference)
        if document_id is None:
            raise KnowledgeFetchError(
                f"Invalid knowledge document reference {reference!r} in {config_key}: "
                "expected a Google Docs URL or document id",
                config_key=config_key,
                reference=reference,
            )

        cache_key = f"knowledge:doc:{document_id}"
        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                counter("knowledge.cache_hit")
                return cached.model_copy(deep=True)

        try:
            document = self.documents.open_document(document_id)
        except Exception as e:
            counter("knowledge.fetch_error")
            raise KnowledgeFetchError(
                f"Failed to read knowledge document {document_id} (from {config_key}): {e}. "
                f"Share the document with the service account or {REMEDIATION_HINT}.",
                config_key=config_key,
                reference=document_id,
            ) from e

        text = document.full_text
        if not text.strip():
            raise KnowledgeFetchError(
                f"Knowledge document {document_id} (from {config_key}) is empty; "
                f"add content or {REMEDIATION_HINT}.",
                config_key=config_key,
                reference=document_id,
            )

        source = KnowledgeSource(name=document.name, char_count=len(text), reference=document_id)
        bundle = KnowledgeBundle(
            configured=True,
            text=text,
            metadata=KnowledgeMetadata.for_text(text, self.model_limit, [source]),
        )
        self.cache.put(cache_key, bundle, self.ttl_seconds)
        counter("knowledge.document_fetched")
        logger.info("Loaded knowledge document %s (%d chars)", document.name, len(text))
        return bundle.model_copy(deep=True)

    def _fetch_folder(self, reference: str | None, *, max_docs: int, config_key: str) -> KnowledgeBundle:
        if not reference or not reference.strip():
            return KnowledgeBundle.not_configured()

        folder_id = resolve_reference(reference)
        if folder_id is None:
            raise KnowledgeFetchError(
                f"Invalid knowledge folder reference {reference!r} in {config_key}: "
                "expected a Google Drive folder URL or folder id",
                config_key=config_key,
                reference=reference,
            )

        try:
            document_ids = self.documents.open_folder(folder_id)
        except Exception as e:
            counter("knowledge.fetch_error")
            raise KnowledgeFetchError(
                f"Failed to open knowledge folder {folder_id} (from {config_key}): {e}. "
                f"Share the folder with the service account or {REMEDIATION_HINT}.",
                config_key=config_key,
                reference=folder_id,
            ) from e

        sections: list[str] = []
        sources: list[KnowledgeSource] = []
        iterator = itertools.islice(document_ids, max_docs)
        while True:
            try:
                document_id = next(iterator)
            except StopIteration:
                break
            except Exception as e:
                logger.warning("Stopped listing knowledge folder %s: %s", folder_id, e)
                break

            try:
                bundle = self._fetch_document(document_id, config_key=config_key)
            except KnowledgeFetchError as e:
                counter("knowledge.folder_document_skipped")
                logger.warning("Skipping knowledge document %s in folder %s: %s", document_id, folder_id, e)
                continue

            source = bundle.metadata.sources[0]
            sections.append(f"{_document_header(source.name)}\n{bundle.text}")
            sources.append(source)

        if not sources:
            raise KnowledgeFetchError(
                f"Knowledge folder {folder_id} (from {config_key}) has no readable Google Docs; "
                f"add documents or {REMEDIATION_HINT}.",
                config_key=config_key,
                reference=folder_id,
            )

        text = "\n\n".join(sections)
        return KnowledgeBundle(
            configured=True,
            text=text,
            metadata=KnowledgeMetadata.for_text(
                text,
                self.model_limit,
                sources,
                char_count=sum(source.char_count for source in sources),
            ),
        )

    def _merge(self, bundles: list[KnowledgeBundle]) -> KnowledgeBundle:
        text = "\n\n".join(bundle.text or "" for bundle in bundles)
        sources = [source for bundle in bundles for source in bundle.metadata.sources]
        return KnowledgeBundle(
            configured=True,
            text=text,
            metadata=KnowledgeMetadata.for_text(
                text,
                self.model_limit,
                sources,
                char_count=sum(bundle.metadata.char_count for bundle in bundles),
            ),
        )

    def _warn_on_utilization(self, bundle: KnowledgeBundle) -> None:
        if not self.log_warnings or not bundle.configured:
            return
        metadata = bundle.metadata
        if metadata.utilization_percent > CRITICAL_WARNING_PERCENT:
            counter("knowledge.utilization.critical")
            logger.critical(
                "Knowledge uses %.1f%% of the model context (%d/%d tokens); "
                "prompts may be truncated or rejected. Trim the documents or lower MAX_DOCS.",
                metadata.utilization_percent,
                metadata.estimated_tokens,
                metadata.model_limit,
            )
        elif metadata.utilization_percent > SOFT_WARNING_PERCENT:
            counter("knowledge.utilization.warning")
            logger.warning(
                "Knowledge uses %.1f%% of the model context (%d/%d tokens)",
                metadata.utilization_percent,
                metadata.estimated_tokens,
                metadata.model_limit,
            )
