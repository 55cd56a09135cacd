"""
Shared transport for the completion and embedding endpoints.

Both endpoints are read-only, so transient failures (transport errors, HTTP 429
and 5xx) are retried with exponential backoff up to UPSTREAM_MAX_RETRIES.
Anything else surfaces as UpstreamError carrying the status and body.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from openai import APIError, APIStatusError, AsyncOpenAI

from querychain.core import config
from querychain.core.errors import ServiceUnavailableError, UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


async def _backoff(label: str, attempt: int, why: str) -> None:
    delay = config.UPSTREAM_BACKOFF_SECONDS * (2 ** attempt)
    logger.warning("[upstream:%s] attempt=%d failed (%s); retrying in %.2fs", label, attempt + 1, why, delay)
    await asyncio.sleep(delay)


async def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout: float,
    label: str,
) -> dict[str, Any]:
    """POST JSON and return the decoded body. Raises UpstreamError on failure."""
    attempt = 0
    while True:
        try:
            async with _client(timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            if attempt < config.UPSTREAM_MAX_RETRIES:
                await _backoff(label, attempt, type(e).__name__)
                attempt += 1
                continue
            raise UpstreamError(f"{label} request failed: {e}") from e

        if response.status_code in RETRYABLE_STATUS and attempt < config.UPSTREAM_MAX_RETRIES:
            await _backoff(label, attempt, f"status {response.status_code}")
            attempt += 1
            continue
        if not response.is_success:
            body = response.text
            logger.warning("[upstream:%s] error %s: %s", label, response.status_code, body[:200])
            raise UpstreamError(
                f"{label} request failed: {response.status_code} {body[:500]}",
                status=response.status_code,
                body=body,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{label} returned a non-JSON body", status=response.status_code, body=response.text
            ) from e


def gemini_headers() -> dict[str, str]:
    if not config.GEMINI_API_KEY:
        raise ServiceUnavailableError("GEMINI_API_KEY must be set in .env")
    return {"Content-Type": "application/json", "x-goog-api-key": config.GEMINI_API_KEY}


def openai_client(timeout: float) -> AsyncOpenAI:
    """OpenAI client with the SDK's own retry loop bounded by UPSTREAM_MAX_RETRIES."""
    if not config.OPENAI_API_KEY:
        raise ServiceUnavailableError("OPENAI_API_KEY must be set in .env")
    return AsyncOpenAI(
        api_key=config.OPENAI_API_KEY,
        timeout=timeout,
        max_retries=config.UPSTREAM_MAX_RETRIES,
    )


async def call_openai(request: Callable[[], Awaitable[Any]], label: str) -> Any:
    """Run an OpenAI SDK request, translating SDK errors into UpstreamError."""
    try:
        return await request()
    except APIStatusError as e:
        raise UpstreamError(
            f"{label} request failed: {e.status_code} {e.message}",
            status=e.status_code,
            body=str(e.body or ""),
        ) from e
    except APIError as e:
        raise UpstreamError(f"{label} request failed: {e}") from e
