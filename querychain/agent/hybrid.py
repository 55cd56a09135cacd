"""
Entry points for the API layer: hybrid (arbitrated) queries and updates.

run_hybrid_query runs the structured-query and retrieval pipelines concurrently
and returns the more confident result. Structured wins only on strictly greater
confidence; ties go to retrieval. Both pipelines write their own audit entry,
and a failure in either one fails the whole request.
"""

import asyncio
import logging
from dataclasses import dataclass

from querychain.agent.retrieval import RetrievalResult, run_retrieval
from querychain.agent.structured_query import StructuredQueryResult, run_structured_query
from querychain.agent.update import UpdateResult, run_update_pipeline
from querychain.core.caller import Caller

logger = logging.getLogger(__name__)

WINNER_STRUCTURED = "nl-to-query"
WINNER_RETRIEVAL = "rag"


@dataclass
class ArbitrationResult:
    winner: str
    result: StructuredQueryResult | RetrievalResult
    structured_confidence: float
    retrieval_confidence: float


def arbitrate(structured: StructuredQueryResult, retrieval: RetrievalResult) -> ArbitrationResult:
    if structured.confidence > retrieval.confidence:
        winner, result = WINNER_STRUCTURED, structured
    else:
        winner, result = WINNER_RETRIEVAL, retrieval
    logger.info("[hybrid:arbitrate] structured=%.4f retrieval=%.4f -> %s",
                structured.confidence, retrieval.confidence, winner)
    return ArbitrationResult(
        winner=winner,
        result=result,
        structured_confidence=structured.confidence,
        retrieval_confidence=retrieval.confidence,
    )


def _validate(user_input: str, collection_name: str) -> tuple[str, str]:
    if not user_input or not str(user_input).strip():
        raise ValueError("userInput is required")
    if not collection_name or not str(collection_name).strip():
        raise ValueError("collectionName is required")
    return str(user_input).strip(), str(collection_name).strip()


async def run_hybrid_query(user_input: str, collection_name: str, caller: Caller) -> ArbitrationResult:
    """Run both pipelines for the same input and collection; return the winner."""
    text, collection = _validate(user_input, collection_name)
    logger.info("[run_hybrid_query] START input=%r collection=%s caller=%s", text, collection, caller.id)
    structured, retrieval = await asyncio.gather(
        run_structured_query(text, collection, caller),
        run_retrieval(text, collection, caller),
    )
    return arbitrate(structured, retrieval)


async def run_update(user_input: str, collection_name: str, caller: Caller) -> UpdateResult:
    text, collection = _validate(user_input, collection_name)
    return await run_update_pipeline(text, collection, caller)
