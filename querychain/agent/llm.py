"""
Completion client: Gemini REST (default) or OpenAI, selected by LLM_PROVIDER.

Every call is a three-turn exchange (instruction, acknowledgement, input) with
output-format negotiation. structured=True returns parsed JSON; malformed JSON
is fatal (MalformedModelOutputError), there is no repair pass.
"""

import json
import logging
from typing import Any

from querychain.core import config
from querychain.core.errors import ContentBlockedError, MalformedModelOutputError, UpstreamError
from querychain.core.upstream import call_openai, gemini_headers, openai_client, post_json

logger = logging.getLogger(__name__)

ACKNOWLEDGEMENT = "Okay, I understand my role and will provide the requested output."

# Gemini finish reasons that mean the candidate was withheld
_BLOCKED_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION"})


def _gemini_payload(instruction: str, text: str, structured: bool) -> dict[str, Any]:
    return {
        "contents": [
            {"role": "user", "parts": [{"text": instruction}]},
            {"role": "model", "parts": [{"text": ACKNOWLEDGEMENT}]},
            {"role": "user", "parts": [{"text": text}]},
        ],
        "generationConfig": {
            "responseMimeType": "application/json" if structured else "text/plain",
        },
    }


def _gemini_text(data: dict[str, Any]) -> str:
    """Extract the completion text, or raise ContentBlockedError / UpstreamError."""
    candidates = data.get("candidates") or []
    first = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
    parts = (first.get("content") or {}).get("parts") or []
    text = parts[0].get("text") if parts and isinstance(parts[0], dict) else None
    if text:
        return text
    logger.error("[llm:gemini] no text in response: %s", json.dumps(data)[:500])
    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise ContentBlockedError(block_reason)
    if first.get("finishReason") in _BLOCKED_FINISH_REASONS:
        raise ContentBlockedError(first["finishReason"])
    raise UpstreamError("Invalid response structure from completion API.", status=200, body=json.dumps(data))


async def _complete_gemini(instruction: str, text: str, structured: bool) -> str:
    url = f"{config.GEMINI_API_BASE}/{config.GEMINI_CHAT_MODEL}:generateContent"
    data = await post_json(
        url,
        _gemini_payload(instruction, text, structured),
        headers=gemini_headers(),
        timeout=config.LLM_API_TIMEOUT,
        label="gemini",
    )
    return _gemini_text(data)


async def _complete_openai(instruction: str, text: str, structured: bool) -> str:
    client = openai_client(config.LLM_API_TIMEOUT)
    kwargs: dict[str, Any] = {}
    if structured:
        kwargs["response_format"] = {"type": "json_object"}
    response = await call_openai(
        lambda: client.chat.completions.create(
            model=config.OPENAI_LLM_MODEL,
            messages=[
                {"role": "system", "content": instruction},
                {"role": "assistant", "content": ACKNOWLEDGEMENT},
                {"role": "user", "content": text},
            ],
            **kwargs,
        ),
        label="openai",
    )
    choice = response.choices[0] if response.choices else None
    msg = choice.message if choice else None
    content = (getattr(msg, "content", None) or "").strip()
    if content:
        return content
    refusal = getattr(msg, "refusal", None)
    if refusal:
        raise ContentBlockedError(refusal)
    if choice is not None and choice.finish_reason == "content_filter":
        raise ContentBlockedError("content_filter")
    raise UpstreamError("Invalid response structure from completion API.", status=200)


def parse_structured(text: str) -> Any:
    """Parse model text as JSON, unwrapping a ```json fence if present."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
        cleaned = cleaned.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedModelOutputError(f"Model returned invalid JSON: {e.msg} (output={cleaned[:200]!r})") from e


async def complete(instruction: str, text: str, structured: bool = True) -> Any:
    """
    Send instruction + text to the configured completion endpoint.
    Returns parsed JSON when structured, else the plain text.
    """
    if not text or not str(text).strip():
        raise ValueError("Completion was called with an empty input.")
    logger.info("[llm] IN  provider=%s structured=%s input_len=%d", config.LLM_PROVIDER, structured, len(text))
    if config.LLM_PROVIDER == "openai":
        out = await _complete_openai(instruction, text, structured)
    else:
        out = await _complete_gemini(instruction, text, structured)
    logger.info("[llm] OUT response_len=%d", len(out))
    logger.debug("[llm] OUT response_full=%r", out)
    return parse_structured(out) if structured else out.strip()
