"""Schemas for the hybrid-query and update-query endpoints."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class QueryRequest(BaseModel):
    """Request body for POST /api/hybrid-query and POST /api/update-query."""

    model_config = ConfigDict(populate_by_name=True)

    user_input: str = Field(..., alias="userInput", description="Natural language request.")
    collection_name: str = Field(..., alias="collectionName", description="Target collection, e.g. managers.")


class HybridQueryResponse(BaseModel):
    """Winning pipeline's result. Data fields are set for nl-to-query, answer fields for rag."""

    winner: Literal["nl-to-query", "rag"]
    type: Literal["data", "answer"]
    confidence: float = Field(..., description="Winner's confidence in [0, 1].")
    structuredConfidence: float
    retrievalConfidence: float
    data: list[dict[str, Any]] | None = Field(None, description="Matching records (nl-to-query).")
    mongoQuery: dict[str, Any] | None = Field(None, description="Filter that was executed (nl-to-query).")
    safetyReason: str | None = None
    specificityReason: str | None = None
    answer: str | None = Field(None, description="Generated answer (rag).")
    context: list[dict[str, Any]] | None = Field(None, description="Retrieved records with scores (rag).")


class UpdateQueryResponse(BaseModel):
    status: Literal["success"] = "success"
    modifiedCount: int
    reEmbeddedCount: int
    mongoQuery: dict[str, Any] = Field(..., description="Filter and $set update that were applied.")


class ErrorBody(BaseModel):
    kind: str = Field(..., description="Machine-readable error kind, e.g. access_denied.")
    detail: str


class ErrorResponse(BaseModel):
    error: ErrorBody
