"""
llm.py
------
Thin wrapper over the google-genai client used by the drafting service and
the search index's embedding generator.

The client is created lazily; a missing GEMINI_API_KEY is only fatal when
stub mode is off (checked once at startup via require_credentials()).
"""

from __future__ import annotations

from google import genai

import config
from modules.errors import MissingCredentialsError

_client: genai.Client | None = None


def require_credentials() -> None:
    """Fail fast at startup when real LLM calls are enabled without a key."""
    if not config.USE_STUB_LLM and not config.GEMINI_API_KEY:
        raise MissingCredentialsError("GEMINI_API_KEY missing")


def get_client() -> genai.Client:
    global _client
    if _client is None:
        if not config.GEMINI_API_KEY:
            raise MissingCredentialsError("GEMINI_API_KEY missing")
        _client = genai.Client(api_key=config.GEMINI_API_KEY)
    return _client


def call_llm(prompt: str) -> str:
    response = get_client().models.generate_content(
        model=config.LLM_MODEL_NAME,
        contents=prompt,
    )

    if not response or not response.text:
        raise RuntimeError("Empty Gemini response")

    return response.text.strip()


def embed_text(text: str) -> list[float]:
    """Return one embedding vector for ``text``."""
    result = get_client().models.embed_content(
        model=config.EMBEDDING_MODEL_NAME,
        contents=text,
    )
    if not result or not result.embeddings or not result.embeddings[0].values:
        raise RuntimeError("Embedding response malformed")
    return list(result.embeddings[0].values)
