"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends

from querychain.api.handlers import get_caller, handle_hybrid_query, handle_update
from querychain.core.caller import Caller
from querychain.schemas.query import ErrorResponse, HybridQueryResponse, QueryRequest, UpdateQueryResponse

logger = logging.getLogger(__name__)
router = APIRouter()

_ERROR_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Role may not access the collection"},
    422: {"model": ErrorResponse, "description": "Rejected by the safety check"},
    502: {"model": ErrorResponse, "description": "Language model or embedding failure"},
    503: {"model": ErrorResponse, "description": "Database unavailable or misconfigured"},
}


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "QueryChain AI backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Query ---

@router.post(
    "/api/hybrid-query",
    response_model=HybridQueryResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    tags=["query"],
    summary="Hybrid query (structured query vs RAG)",
    description="Runs the NL-to-query and RAG pipelines in parallel and returns the more confident result. Ties go to RAG.",
)
async def post_hybrid_query(body: QueryRequest, caller: Caller = Depends(get_caller)) -> HybridQueryResponse:
    logger.info("[api:post_hybrid_query] IN  input=%r collection=%s caller=%s", body.user_input, body.collection_name, caller.id)
    return await handle_hybrid_query(body, caller)


@router.post(
    "/api/update-query",
    response_model=UpdateQueryResponse,
    responses=_ERROR_RESPONSES,
    tags=["update"],
    summary="Secure update",
    description="Translates the request into a single-record $set update, applies it, and re-embeds the changed records.",
)
async def post_update_query(body: QueryRequest, caller: Caller = Depends(get_caller)) -> UpdateQueryResponse:
    logger.info("[api:post_update_query] IN  input=%r collection=%s caller=%s", body.user_input, body.collection_name, caller.id)
    return await handle_update(body, caller)
