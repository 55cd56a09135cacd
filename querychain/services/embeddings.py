"""
Embedding client: Gemini embedContent (default) or OpenAI embeddings.

Responsibility: turn one text into a vector of EMBEDDING_DIMENSIONS floats.
A vector of any other length raises DimensionMismatchError and is never handed
to a caller, so it cannot be persisted.
"""

import logging

from querychain.core import config
from querychain.core.errors import DimensionMismatchError, UpstreamError
from querychain.core.upstream import call_openai, gemini_headers, openai_client, post_json

logger = logging.getLogger(__name__)


async def _embed_gemini(text: str) -> list[float]:
    url = f"{config.GEMINI_API_BASE}/{config.GEMINI_EMBED_MODEL}:embedContent"
    data = await post_json(
        url,
        {"content": {"parts": [{"text": text}]}},
        headers=gemini_headers(),
        timeout=config.EMBED_API_TIMEOUT,
        label="gemini-embed",
    )
    values = (data.get("embedding") or {}).get("values")
    if not isinstance(values, list):
        raise UpstreamError("Invalid response structure from embedding API.", status=200, body=str(data)[:500])
    return [float(v) for v in values]


async def _embed_openai(text: str) -> list[float]:
    client = openai_client(config.EMBED_API_TIMEOUT)
    response = await call_openai(
        lambda: client.embeddings.create(
            model=config.OPENAI_EMBED_MODEL,
            input=text,
            dimensions=config.EMBEDDING_DIMENSIONS,
        ),
        label="openai-embed",
    )
    if not response.data:
        raise UpstreamError("Invalid response structure from embedding API.", status=200)
    return [float(v) for v in response.data[0].embedding]


async def embed(text: str) -> list[float]:
    """Embed text; the result always has EMBEDDING_DIMENSIONS entries."""
    if not text or not text.strip():
        raise ValueError("Cannot embed empty text.")
    logger.info("[embeddings] IN  provider=%s text_len=%d", config.LLM_PROVIDER, len(text))
    if config.LLM_PROVIDER == "openai":
        vector = await _embed_openai(text)
    else:
        vector = await _embed_gemini(text)
    if len(vector) != config.EMBEDDING_DIMENSIONS:
        logger.error("[embeddings] dimension mismatch: %d vs %d", len(vector), config.EMBEDDING_DIMENSIONS)
        raise DimensionMismatchError(config.EMBEDDING_DIMENSIONS, len(vector))
    return vector
