"""
Tests for the RAG pipeline over the in-memory store with deterministic embeddings.
"""

import json

import pytest

from querychain.agent.prompts import NO_RESULTS_ANSWER, RAG_ANSWER_PROMPT
from querychain.agent.retrieval import run_retrieval
from querychain.core.caller import Caller
from querychain.core.config import RAG_LIMIT, RAG_NUM_CANDIDATES, VECTOR_INDEX_NAME
from querychain.core.errors import AccessDeniedError, DimensionMismatchError
from querychain.services.reembedding import record_summary


@pytest.mark.asyncio
async def test_answer_from_top_records(store, llm, embedder, admin: Caller) -> None:
    llm.on(RAG_ANSWER_PROMPT, "Vidit Tayal leads the platform team.")
    question = record_summary(store.get("managers", 1))

    result = await run_retrieval(question, "managers", admin)

    assert result.type == "answer"
    assert result.answer == "Vidit Tayal leads the platform team."
    assert result.context[0]["_id"] == 1
    assert result.confidence == pytest.approx(1.0)
    assert result.confidence == result.context[0]["score"]
    assert embedder.calls == [question]
    assert all("docEmbedding" not in doc for doc in result.context)


@pytest.mark.asyncio
async def test_synthesis_prompt_carries_question_and_context(store, llm, embedder, admin: Caller) -> None:
    llm.on(RAG_ANSWER_PROMPT, "answer")

    result = await run_retrieval("who manages the data team?", "managers", admin)

    (prompt_input,) = llm.calls_for(RAG_ANSWER_PROMPT)
    assert prompt_input.startswith("Question: who manages the data team?\n\nContext: ")
    assert json.loads(prompt_input.split("Context: ", 1)[1]) == result.context
    assert llm.calls[0][2] is False


@pytest.mark.asyncio
async def test_no_results_skips_synthesis(store, llm, embedder, admin: Caller) -> None:
    store.collections["empty"] = []

    result = await run_retrieval("anything", "empty", admin)

    assert result.answer == NO_RESULTS_ANSWER
    assert result.confidence == 0.0
    assert result.context == []
    assert llm.calls == []
    assert store.audit[-1]["result_count"] == 0


@pytest.mark.asyncio
async def test_searches_requested_collection(store, llm, embedder, admin: Caller) -> None:
    store.add("reports", {"_id": "r1", "Name": "Q3 report", "Details": "Revenue up."})
    llm.on(RAG_ANSWER_PROMPT, "Revenue went up.")

    result = await run_retrieval("Q3 revenue", "reports", admin)

    assert [d["_id"] for d in result.context] == ["r1"]


@pytest.mark.asyncio
async def test_access_denied_before_embedding(store, llm, embedder, guest: Caller) -> None:
    with pytest.raises(AccessDeniedError):
        await run_retrieval("salaries", "managers", guest)
    assert embedder.calls == []
    assert store.audit == []


@pytest.mark.asyncio
async def test_embedding_failure_is_fatal(store, llm, embedder, admin: Caller) -> None:
    embedder.fail_after = 0
    embedder.error = DimensionMismatchError(768, 3072)

    with pytest.raises(DimensionMismatchError):
        await run_retrieval("question", "managers", admin)
    assert store.audit == []


@pytest.mark.asyncio
async def test_audit_records_search_parameters(store, llm, embedder, admin: Caller) -> None:
    llm.on(RAG_ANSWER_PROMPT, "answer")

    await run_retrieval("who are the engineering managers?", "managers", admin)

    entry = store.audit[-1]
    assert entry["pipeline"] == "rag"
    assert entry["resolved_query"] == {
        "$vectorSearch": {"index": VECTOR_INDEX_NAME, "numCandidates": RAG_NUM_CANDIDATES, "limit": RAG_LIMIT}
    }
    assert entry["result_count"] == min(RAG_LIMIT, 4)
