"""Centralized configuration for InboxQ.

Module-level constants hold process-wide defaults (paths, model, API
version). ``TriageSettings`` collects the per-run options recognized by the
triage pipeline and is built from the environment once per run so that a
changed .env or Cloud Run revision takes effect without code changes.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path

from inboxq.errors import ConfigurationError
from inboxq.infrastructure.env import ensure_env_loaded, get_env_bool, get_env_int

# --- App ---
APP_VERSION: str = "0.1.0"
PACKAGE_ROOT = Path(__file__).parent

# --- Storage ---
DB_PATH: Path = Path(os.getenv("INBOXQ_DB_PATH", str(PACKAGE_ROOT / "data" / "inboxq.db")))
DB_CONNECT_TIMEOUT: float = float(os.getenv("INBOXQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("INBOXQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("INBOXQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("INBOXQ_DB_RETRY_MAX_DELAY", "2.0"))

# --- Gemini ---
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION: str = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS: int = int(os.getenv("GEMINI_MAX_TOKENS", "2048"))
GEMINI_TEMPERATURE: float = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))

# Context window used for knowledge utilization estimates (Gemini 2.0 Flash)
MODEL_TOKEN_LIMIT: int = 1_048_576

# --- Action labels ---
ACTION_LABELS: tuple[str, ...] = ("reply_needed", "review", "todo", "archive")
FALLBACK_LABEL: str = "review"

# --- Persisted state keys ---
BUDGET_KEY_PREFIX: str = "BUDGET"

# --- Config keys (used in error messages) ---
KNOWLEDGE_DOC_KEY = "KNOWLEDGE_DOC_URL"
KNOWLEDGE_FOLDER_KEY = "KNOWLEDGE_FOLDER_URL"

AUTH_MODES = ("api_key", "vertex")


def _parse_label_map(raw: str | None) -> dict[str, tuple[str, ...]] | None:
    if raw is None or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError("AGENTS_LABEL_MAP", f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("AGENTS_LABEL_MAP", "expected a JSON object of label -> [agents]")

    label_map: dict[str, tuple[str, ...]] = {}
    for label, names in data.items():
        if isinstance(names, str):
            names = [names]
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ConfigurationError(
                "AGENTS_LABEL_MAP", f"label {label!r} must map to a list of agent names"
            )
        label_map[label.strip().lower()] = tuple(names)
    return label_map


@dataclass(frozen=True)
class TriageSettings:
    """Options recognized by a triage run."""

    batch_size: int = 10
    daily_budget: int = 50
    max_items_per_run: int = 50
    knowledge_doc_ref: str = ""
    knowledge_folder_ref: str = ""
    max_docs: int = 5
    knowledge_cache_ttl_minutes: int = 30
    knowledge_log_warnings: bool = True
    dry_run: bool = False
    debug: bool = False
    agents_enabled: bool = True
    agents_budget_per_run: int = 50
    agents_label_map: dict[str, tuple[str, ...]] | None = None
    allowed_labels: tuple[str, ...] = ACTION_LABELS
    fallback_label: str = FALLBACK_LABEL
    gemini_model: str = GEMINI_MODEL
    gemini_auth_mode: str = "api_key"
    digest_recipient: str = ""

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("BATCH_SIZE", "must be >= 1")
        if self.fallback_label not in self.allowed_labels:
            raise ConfigurationError(
                "FALLBACK_LABEL", f"{self.fallback_label!r} is not an allowed label"
            )
        if self.gemini_auth_mode not in AUTH_MODES:
            raise ConfigurationError(
                "GEMINI_AUTH_MODE", f"expected one of {AUTH_MODES}, got {self.gemini_auth_mode!r}"
            )

    @property
    def knowledge_cache_ttl_seconds(self) -> float:
        return self.knowledge_cache_ttl_minutes * 60.0

    def with_overrides(self, **changes: object) -> TriageSettings:
        """Return a copy with selected fields replaced (e.g. dry_run from an API call)."""
        return replace(self, **changes)  # type: ignore[arg-type]

    @classmethod
    def from_env(cls) -> TriageSettings:
        """
        Build settings from environment variables (.env loaded first).

        Raises:
            ConfigurationError: If a value is malformed or Gemini credentials are missing

        Side Effects:
            - Loads .env on first call
        """
        ensure_env_loaded()

        auth_mode = os.getenv("GEMINI_AUTH_MODE", "").strip().lower()
        if not auth_mode:
            auth_mode = "api_key" if os.getenv("GOOGLE_API_KEY") else "vertex"
        if auth_mode == "api_key" and not os.getenv("GOOGLE_API_KEY"):
            raise ConfigurationError("GOOGLE_API_KEY", "required when GEMINI_AUTH_MODE=api_key")
        if auth_mode == "vertex" and not os.getenv("GOOGLE_CLOUD_PROJECT"):
            raise ConfigurationError(
                "GOOGLE_CLOUD_PROJECT",
                "set GOOGLE_API_KEY or GOOGLE_CLOUD_PROJECT to reach Gemini",
            )

        return cls(
            batch_size=get_env_int("BATCH_SIZE", 10, minimum=1),
            daily_budget=get_env_int("DAILY_GEMINI_BUDGET", 50),
            max_items_per_run=get_env_int("MAX_ITEMS_PER_RUN", 50, minimum=1),
            knowledge_doc_ref=os.getenv(KNOWLEDGE_DOC_KEY, "").strip(),
            knowledge_folder_ref=os.getenv(KNOWLEDGE_FOLDER_KEY, "").strip(),
            max_docs=get_env_int("MAX_DOCS", 5, minimum=1),
            knowledge_cache_ttl_minutes=get_env_int("KNOWLEDGE_CACHE_TTL_MINUTES", 30, minimum=1),
            knowledge_log_warnings=get_env_bool("KNOWLEDGE_LOG_WARNINGS", True),
            dry_run=get_env_bool("DRY_RUN", False),
            debug=get_env_bool("DEBUG", False),
            agents_enabled=get_env_bool("AGENTS_ENABLED", True),
            agents_budget_per_run=get_env_int("AGENTS_BUDGET_PER_RUN", 50),
            agents_label_map=_parse_label_map(os.getenv("AGENTS_LABEL_MAP")),
            gemini_model=os.getenv("GEMINI_MODEL", GEMINI_MODEL),
            gemini_auth_mode=auth_mode,
            digest_recipient=os.getenv("DIGEST_RECIPIENT", "").strip(),
        )
