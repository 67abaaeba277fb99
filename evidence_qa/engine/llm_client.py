"""LLM client for OpenAI API communication.

Single Responsibility: Handle the embedding and chat-completion calls.
No prompt construction, no JSON parsing, no business logic.

The client is lazily initialized as a singleton (connection pooling).
Use reset_clients() in test teardown to clear it.
"""

from __future__ import annotations

import logging
import threading

from openai import OpenAI, OpenAIError

from ..common.config_loader import Settings, load_settings
from .types import UpstreamServiceError

logger = logging.getLogger(__name__)


__all__ = [
    "get_sync_client",
    "reset_clients",
    "embed_text",
    "complete_json",
    "OpenAIEmbeddingService",
    "OpenAICompletionService",
]

# ---------------------------------------------------------------------------
# Singleton state
# ---------------------------------------------------------------------------
_sync_client: OpenAI | None = None
_sync_lock = threading.Lock()


def _build_sync_client() -> OpenAI:
    """Create an OpenAI client with timeout and retry settings from config.

    SDK retries default to 0: the engine performs no upstream retries of its own.
    """
    openai_settings = load_settings().openai
    return OpenAI(
        timeout=openai_settings.timeout_secs,
        max_retries=openai_settings.max_retries,
    )


def get_sync_client() -> OpenAI:
    """Return the singleton sync OpenAI client (lazy, thread-safe)."""
    global _sync_client  # noqa: PLW0603
    if _sync_client is None:
        with _sync_lock:
            if _sync_client is None:
                _sync_client = _build_sync_client()
    return _sync_client


def reset_clients() -> None:
    """Close and clear the singleton. Call in test teardown."""
    global _sync_client  # noqa: PLW0603
    with _sync_lock:
        if _sync_client is not None:
            close_fn = getattr(_sync_client, "close", None)
            if callable(close_fn):
                close_fn()
            _sync_client = None


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


def embed_text(
    text: str,
    *,
    client: OpenAI | None = None,
    settings: Settings | None = None,
) -> list[float]:
    """Embed one text with the configured embedding model.

    Raises:
        UpstreamServiceError: On API failure or when the vector has the wrong dimensionality.
    """
    settings = settings or load_settings()
    client = client or get_sync_client()
    try:
        response = client.embeddings.create(
            model=settings.openai.embedding_model,
            input=text,
        )
    except OpenAIError as exc:
        raise UpstreamServiceError("OpenAI embedding request failed.") from exc

    data = getattr(response, "data", None) or []
    if not data:
        raise UpstreamServiceError("OpenAI embedding response contained no vectors.")
    embedding = list(data[0].embedding)

    expected = settings.openai.embedding_dimensions
    if len(embedding) != expected:
        raise UpstreamServiceError(
            f"Embedding dimension mismatch: expected {expected}, got {len(embedding)}."
        )
    return embedding


def complete_json(
    system_prompt: str,
    user_prompt: str,
    *,
    client: OpenAI | None = None,
    settings: Settings | None = None,
) -> str:
    """Run a JSON-mode chat completion and return the message content ("" if empty)."""
    settings = settings or load_settings()
    client = client or get_sync_client()
    try:
        response = client.chat.completions.create(
            model=settings.openai.chat_model,
            temperature=settings.openai.temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
    except OpenAIError as exc:
        raise UpstreamServiceError("OpenAI chat completion request failed.") from exc

    choices = getattr(response, "choices", None) or []
    if not choices:
        logger.warning("OpenAI chat completion returned no choices")
        return ""
    return (choices[0].message.content or "").strip()


# ---------------------------------------------------------------------------
# Service adapters
# ---------------------------------------------------------------------------


class OpenAIEmbeddingService:
    """EmbeddingService backed by the OpenAI embeddings endpoint."""

    def __init__(self, settings: Settings | None = None, client: OpenAI | None = None):
        self._settings = settings or load_settings()
        self._client = client

    def embed(self, text: str) -> list[float]:
        return embed_text(text, client=self._client, settings=self._settings)


class OpenAICompletionService:
    """CompletionService backed by OpenAI chat completions in JSON mode."""

    def __init__(self, settings: Settings | None = None, client: OpenAI | None = None):
        self._settings = settings or load_settings()
        self._client = client

    def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        return complete_json(
            system_prompt,
            user_prompt,
            client=self._client,
            settings=self._settings,
        )
