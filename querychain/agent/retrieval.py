"""
LangGraph RAG pipeline: authorize -> embed -> search -> (synthesize | no_results) -> audit.

Confidence is the top record's vector-search score; an empty search short-circuits
to a canned answer with confidence 0.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from querychain.agent.llm import complete
from querychain.agent.prompts import NO_RESULTS_ANSWER, RAG_ANSWER_PROMPT
from querychain.core.caller import Caller
from querychain.core.config import RAG_LIMIT, RAG_NUM_CANDIDATES, VECTOR_INDEX_NAME
from querychain.services.audit import record_audit
from querychain.services.document_store import get_document_store
from querychain.services.embeddings import embed
from querychain.services.permissions import require_access

logger = logging.getLogger(__name__)

PIPELINE_NAME = "rag"


class RetrievalState(TypedDict, total=False):
    user_input: str
    collection_name: str
    caller: Caller
    query_vector: list
    context: list
    answer: str
    authorized: bool
    audited: bool


@dataclass
class RetrievalResult:
    confidence: float
    answer: str
    context: list[dict[str, Any]]
    type: str = field(default="answer", init=False)


async def _authorize(state: RetrievalState) -> dict:
    await require_access(get_document_store(), state["caller"], state["collection_name"])
    return {"authorized": True}


async def _embed_query(state: RetrievalState) -> dict:
    vector = await embed(state["user_input"])
    logger.info("[retrieval:embed] OUT dims=%d", len(vector))
    return {"query_vector": vector}


async def _search(state: RetrievalState) -> dict:
    collection = state["collection_name"]
    docs = await get_document_store().vector_search(
        collection, state["query_vector"], num_candidates=RAG_NUM_CANDIDATES, limit=RAG_LIMIT
    )
    logger.info("[retrieval:search] OUT collection=%s results=%d top_scores=%s",
                collection, len(docs), [round(float(d.get("score", 0.0)), 4) for d in docs])
    return {"context": docs}


def _route_after_search(state: RetrievalState) -> Literal["synthesize", "no_results"]:
    return "synthesize" if state.get("context") else "no_results"


async def _no_results(state: RetrievalState) -> dict:
    logger.info("[retrieval:no_results] nothing retrieved; skipping synthesis")
    return {"answer": NO_RESULTS_ANSWER}


async def _synthesize(state: RetrievalState) -> dict:
    context = json.dumps(state["context"], default=str)
    prompt_input = f"Question: {state['user_input']}\n\nContext: {context}"
    answer = await complete(RAG_ANSWER_PROMPT, prompt_input, structured=False)
    logger.info("[retrieval:synthesize] OUT answer_len=%d", len(answer))
    return {"answer": answer}


async def _audit(state: RetrievalState) -> dict:
    resolved = {
        "$vectorSearch": {
            "index": VECTOR_INDEX_NAME,
            "numCandidates": RAG_NUM_CANDIDATES,
            "limit": RAG_LIMIT,
        }
    }
    await record_audit(
        get_document_store(),
        state["caller"],
        PIPELINE_NAME,
        state["user_input"],
        resolved,
        len(state.get("context") or []),
    )
    return {"audited": True}


def build_graph():
    graph = StateGraph(RetrievalState)

    graph.add_node("authorize", _authorize)
    graph.add_node("embed", _embed_query)
    graph.add_node("search", _search)
    graph.add_node("synthesize", _synthesize)
    graph.add_node("no_results", _no_results)
    graph.add_node("audit", _audit)

    graph.set_entry_point("authorize")
    graph.add_edge("authorize", "embed")
    graph.add_edge("embed", "search")
    graph.add_conditional_edges("search", _route_after_search)
    graph.add_edge("synthesize", "audit")
    graph.add_edge("no_results", "audit")
    graph.add_edge("audit", END)

    return graph.compile()


async def run_retrieval(user_input: str, collection_name: str, caller: Caller) -> RetrievalResult:
    logger.info("[run_retrieval] START input=%r collection=%s caller=%s", user_input, collection_name, caller.id)
    final = await build_graph().ainvoke({
        "user_input": user_input,
        "collection_name": collection_name,
        "caller": caller,
    })
    context = final.get("context") or []
    confidence = float(context[0].get("score", 0.0)) if context else 0.0
    logger.info("[run_retrieval] END results=%d confidence=%.4f", len(context), confidence)
    return RetrievalResult(confidence=confidence, answer=final.get("answer", ""), context=context)
