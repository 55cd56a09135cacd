"""
Tests for arbitration between the structured-query and RAG pipelines.
"""

from unittest.mock import AsyncMock, patch

import pytest

from querychain.agent.hybrid import WINNER_RETRIEVAL, WINNER_STRUCTURED, arbitrate, run_hybrid_query, run_update
from querychain.agent.prompts import (
    OPTIMIZATION_PROMPT,
    QUERY_TRANSLATION_PROMPT,
    RAG_ANSWER_PROMPT,
    SPECIFICITY_PROMPT,
)
from querychain.agent.retrieval import RetrievalResult
from querychain.agent.structured_query import StructuredQueryResult
from querychain.core.caller import Caller
from querychain.core.errors import AccessDeniedError, SecurityRejectedError


def structured(confidence: float) -> StructuredQueryResult:
    return StructuredQueryResult(
        confidence=confidence,
        records=[{"Name": "Vidit Tayal"}] if confidence else [],
        resolved_filter={"Name": {"$eq": "Vidit Tayal"}},
        safety_reason="safe",
        specificity_reason="",
    )


def retrieval(confidence: float) -> RetrievalResult:
    return RetrievalResult(confidence=confidence, answer="An answer.", context=[])


class TestArbitrate:
    def test_structured_wins_when_strictly_greater(self) -> None:
        outcome = arbitrate(structured(0.9), retrieval(0.7))
        assert outcome.winner == WINNER_STRUCTURED
        assert outcome.result.type == "data"
        assert outcome.structured_confidence == 0.9
        assert outcome.retrieval_confidence == 0.7

    def test_retrieval_wins_when_greater(self) -> None:
        outcome = arbitrate(structured(0.4), retrieval(0.8))
        assert outcome.winner == WINNER_RETRIEVAL
        assert outcome.result.type == "answer"

    def test_tie_goes_to_retrieval(self) -> None:
        assert arbitrate(structured(0.75), retrieval(0.75)).winner == WINNER_RETRIEVAL
        assert arbitrate(structured(0.0), retrieval(0.0)).winner == WINNER_RETRIEVAL


@pytest.mark.asyncio
async def test_both_pipelines_run_and_audit(store, llm, embedder, admin: Caller) -> None:
    llm.on(QUERY_TRANSLATION_PROMPT, {"Branch": "IT"})
    llm.on(OPTIMIZATION_PROMPT, {"Branch": "IT"})
    llm.on(SPECIFICITY_PROMPT, {"confidence": 1.0, "suggestion": ""})
    llm.on(RAG_ANSWER_PROMPT, "Vidit Tayal is from IT.")

    outcome = await run_hybrid_query("  managers from IT  ", "managers", admin)

    assert outcome.winner == WINNER_STRUCTURED
    assert [r["Name"] for r in outcome.result.records] == ["Vidit Tayal"]
    assert 0.0 < outcome.retrieval_confidence < 1.0
    assert sorted(e["pipeline"] for e in store.audit) == ["nl-to-query", "rag"]
    assert {e["user_input"] for e in store.audit} == {"managers from IT"}


@pytest.mark.asyncio
async def test_empty_structured_result_loses(store, llm, embedder, admin: Caller) -> None:
    llm.on(QUERY_TRANSLATION_PROMPT, {"Branch": "ME"})
    llm.on(OPTIMIZATION_PROMPT, {"Branch": "ME"})
    llm.on(SPECIFICITY_PROMPT, {"confidence": 1.0, "suggestion": ""})
    llm.on(RAG_ANSWER_PROMPT, "No mechanical managers are listed.")

    outcome = await run_hybrid_query("managers from mechanical", "managers", admin)

    assert outcome.winner == WINNER_RETRIEVAL
    assert outcome.structured_confidence == 0.0
    assert outcome.result.answer == "No mechanical managers are listed."


@pytest.mark.asyncio
async def test_one_failure_fails_the_request(store, llm, embedder, admin: Caller) -> None:
    llm.on(QUERY_TRANSLATION_PROMPT, {"$where": "1"})
    llm.on(RAG_ANSWER_PROMPT, "answer")

    with pytest.raises(SecurityRejectedError):
        await run_hybrid_query("all managers", "managers", admin)


@pytest.mark.asyncio
async def test_denied_role_fails(store, llm, embedder, guest: Caller) -> None:
    llm.on(QUERY_TRANSLATION_PROMPT, {"Branch": "IT"})
    llm.on(OPTIMIZATION_PROMPT, {"Branch": "IT"})
    llm.on(SPECIFICITY_PROMPT, {"confidence": 0.5, "suggestion": ""})

    with pytest.raises(AccessDeniedError):
        await run_hybrid_query("IT managers", "managers", guest)


@pytest.mark.asyncio
@pytest.mark.parametrize("user_input, collection", [("", "managers"), ("   ", "managers"), ("q", ""), ("q", " ")])
async def test_blank_input_rejected(admin: Caller, user_input: str, collection: str) -> None:
    with patch("querychain.agent.hybrid.run_structured_query", new_callable=AsyncMock) as mock_sq:
        with pytest.raises(ValueError):
            await run_hybrid_query(user_input, collection, admin)
    mock_sq.assert_not_called()


@pytest.mark.asyncio
async def test_run_update_validates_and_delegates(admin: Caller) -> None:
    with patch("querychain.agent.hybrid.run_update_pipeline", new_callable=AsyncMock) as mock_update:
        mock_update.return_value = "result"
        assert await run_update(" Set CTC ", " managers ", admin) == "result"
    mock_update.assert_awaited_once_with("Set CTC", "managers", admin)

    with pytest.raises(ValueError):
        await run_update("", "managers", admin)
