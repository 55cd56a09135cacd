"""
API handlers: read request data, call the pipelines, map results/errors to HTTP.

Responsibility: Bridge HTTP types and the agent layer. Marshalling and
exception-to-HTTP mapping live here so pipelines stay free of FastAPI types.
"""

import logging

from fastapi import Header, HTTPException, Request
from fastapi.responses import JSONResponse

from querychain.agent.hybrid import ArbitrationResult, run_hybrid_query, run_update
from querychain.agent.structured_query import StructuredQueryResult
from querychain.core.caller import Caller
from querychain.core.config import DEFAULT_CALLER_ID, DEFAULT_CALLER_ROLE
from querychain.core.errors import QueryChainError
from querychain.schemas.query import (
    ErrorBody,
    ErrorResponse,
    HybridQueryResponse,
    QueryRequest,
    UpdateQueryResponse,
)

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "access_denied": 403,
    "security_rejected": 422,
    "upstream_error": 502,
    "content_blocked": 502,
    "malformed_model_output": 502,
    "dimension_mismatch": 502,
    "database_error": 503,
    "service_unavailable": 503,
}


def get_caller(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
) -> Caller:
    """Caller from identity headers, falling back to the configured default caller."""
    return Caller(
        id=(x_user_id or "").strip() or DEFAULT_CALLER_ID,
        role=(x_user_role or "").strip() or DEFAULT_CALLER_ROLE,
    )


def to_hybrid_response(outcome: ArbitrationResult) -> HybridQueryResponse:
    result = outcome.result
    common = {
        "winner": outcome.winner,
        "type": result.type,
        "confidence": result.confidence,
        "structuredConfidence": outcome.structured_confidence,
        "retrievalConfidence": outcome.retrieval_confidence,
    }
    if isinstance(result, StructuredQueryResult):
        return HybridQueryResponse(
            **common,
            data=result.records,
            mongoQuery=result.resolved_filter,
            safetyReason=result.safety_reason,
            specificityReason=result.specificity_reason,
        )
    return HybridQueryResponse(**common, answer=result.answer, context=result.context)


async def handle_hybrid_query(body: QueryRequest, caller: Caller) -> HybridQueryResponse:
    try:
        outcome = await run_hybrid_query(body.user_input, body.collection_name, caller)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return to_hybrid_response(outcome)


async def handle_update(body: QueryRequest, caller: Caller) -> UpdateQueryResponse:
    try:
        result = await run_update(body.user_input, body.collection_name, caller)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return UpdateQueryResponse(
        modifiedCount=result.modified_count,
        reEmbeddedCount=result.re_embedded_count,
        mongoQuery={"filter": result.resolved_filter, "update": result.resolved_update},
    )


async def pipeline_error_handler(request: Request, exc: QueryChainError) -> JSONResponse:
    """Map pipeline errors to {"error": {"kind", "detail"}} with a kind-specific status."""
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("[api] %s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.detail)
    else:
        logger.info("[api] %s %s rejected: %s: %s", request.method, request.url.path, exc.kind, exc.detail)
    body = ErrorResponse(error=ErrorBody(kind=exc.kind, detail=exc.detail))
    return JSONResponse(status_code=status, content=body.model_dump())
