"""
Gemini text generation.

Two interchangeable auth modes:
  1. ``api_key`` - google-generativeai with GOOGLE_API_KEY (key sent with each request)
  2. ``vertex``  - Vertex AI SDK with service-account / ADC bearer credentials
                   (GOOGLE_CLOUD_PROJECT + GEMINI_LOCATION)

Model instances are cached per (model, auth mode) so repeated runs in the
same process do not re-initialize the SDK.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Protocol

from inboxq.config import GEMINI_LOCATION, GEMINI_MAX_TOKENS, GEMINI_MODEL, GEMINI_TEMPERATURE
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, time_block

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when the Gemini model cannot be initialized."""


class LLMError(RuntimeError):
    """Raised when a generation call fails (network, quota, API)."""


class TextGenerator(Protocol):
    def generate(self, prompt: str, model: str | None = None) -> str: ...


@lru_cache(maxsize=8)
def get_gemini_model(model_name: str, auth_mode: str) -> Any:
    """
    Get or create a shared Gemini model instance.

    Raises:
        GeminiInitializationError: Missing credentials or SDK failure
    """
    if auth_mode == "vertex":
        import vertexai
        from vertexai.generative_models import GenerativeModel

        project = os.getenv("GOOGLE_CLOUD_PROJECT")
        if not project:
            raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")
        try:
            vertexai.init(project=project, location=GEMINI_LOCATION)
            model = GenerativeModel(model_name)
        except Exception as e:
            raise GeminiInitializationError(f"Failed to initialize Vertex AI: {e}") from e
        logger.info(
            "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
            project,
            GEMINI_LOCATION,
            model_name,
        )
        return model

    import google.generativeai as genai

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError("GOOGLE_API_KEY not set")
    try:
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name)
    except Exception as e:
        raise GeminiInitializationError(f"Failed to initialize google-generativeai: {e}") from e
    logger.info("Initialized Gemini model (API key): model=%s", model_name)
    return model


def clear_model_cache() -> None:
    get_gemini_model.cache_clear()


class GeminiClient:
    """Single request/response Gemini call returning the generated text."""

    def __init__(self, model_name: str = GEMINI_MODEL, auth_mode: str = "api_key") -> None:
        self.model_name = model_name
        self.auth_mode = auth_mode

    def generate(self, prompt: str, model: str | None = None) -> str:
        """
        Generate text for ``prompt``.

        Raises:
            LLMError: On any SDK or transport failure (never retried here)

        Side Effects:
            - Makes one HTTP request to the Gemini API
            - Increments telemetry counters (gemini.call / gemini.error)
        """
        try:
            gemini = get_gemini_model(model or self.model_name, self.auth_mode)
            with time_block("gemini.generate.latency"):
                response = gemini.generate_content(
                    prompt,
                    generation_config={
                        "temperature": GEMINI_TEMPERATURE,
                        "max_output_tokens": GEMINI_MAX_TOKENS,
                    },
                )
            text = response.text
        except Exception as e:
            counter("gemini.error")
            logger.error("Gemini call failed: %s", e)
            raise LLMError(f"Gemini call failed: {e}") from e

        counter("gemini.call")
        return text
