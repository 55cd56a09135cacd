"""
LangGraph pipeline: natural language -> vetted MongoDB find -> records.

translate -> safety_check -> optimize -> score_specificity -> authorize -> execute -> audit

Each node is one model or database round-trip. Any node failure aborts the run;
nothing before the audit node is logged to AuditLogs.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from querychain.agent.llm import complete
from querychain.agent.prompts import OPTIMIZATION_PROMPT, QUERY_TRANSLATION_PROMPT, SPECIFICITY_PROMPT
from querychain.core.caller import Caller
from querychain.core.errors import MalformedModelOutputError
from querychain.services.audit import record_audit
from querychain.services.document_store import get_document_store
from querychain.services.permissions import require_access
from querychain.services.query_parser import SAFE_QUERY_REASON, Filter, parse_filter

logger = logging.getLogger(__name__)

PIPELINE_NAME = "nl-to-query"


class StructuredQueryState(TypedDict, total=False):
    user_input: str
    collection_name: str
    caller: Caller
    raw_filter: Any
    parsed_filter: Filter
    safety_reason: str
    optimized_filter: Filter
    specificity: float
    specificity_reason: str
    records: list
    authorized: bool
    audited: bool


@dataclass
class StructuredQueryResult:
    confidence: float
    records: list[dict[str, Any]]
    resolved_filter: dict[str, Any]
    safety_reason: str
    specificity_reason: str
    specificity: float = 0.0
    type: str = field(default="data", init=False)


async def _translate(state: StructuredQueryState) -> dict:
    text = state["user_input"]
    logger.info("[structured:translate] IN  input=%r", text)
    raw = await complete(QUERY_TRANSLATION_PROMPT, text)
    logger.info("[structured:translate] OUT raw_filter=%s", json.dumps(raw, default=str))
    return {"raw_filter": raw}


async def _safety_check(state: StructuredQueryState) -> dict:
    parsed = parse_filter(state["raw_filter"])
    logger.info("[structured:safety_check] OUT safe fields=%s", sorted(parsed.fields()))
    return {"parsed_filter": parsed, "safety_reason": SAFE_QUERY_REASON}


async def _optimize(state: StructuredQueryState) -> dict:
    """
    Let the model rewrite for index use. The rewrite is kept only if it constrains
    the same fields with the same constants; regex patterns may change.
    """
    parsed = state["parsed_filter"]
    raw = await complete(OPTIMIZATION_PROMPT, json.dumps(parsed.to_mongo()))
    optimized = parse_filter(raw)
    if optimized.fields() != parsed.fields() or optimized.literals() != parsed.literals():
        logger.warning(
            "[structured:optimize] rewrite changes constraints; keeping original. before=%s after=%s",
            json.dumps(parsed.to_mongo(), default=str), json.dumps(optimized.to_mongo(), default=str),
        )
        optimized = parsed
    elif optimized != parsed:
        logger.warning(
            "[structured:optimize] rewrite accepted. before=%s after=%s",
            json.dumps(parsed.to_mongo(), default=str), json.dumps(optimized.to_mongo(), default=str),
        )
    logger.info("[structured:optimize] OUT filter=%s", json.dumps(optimized.to_mongo(), default=str))
    return {"optimized_filter": optimized}


def _read_confidence(raw: Any) -> tuple[float, str]:
    if not isinstance(raw, dict):
        raise MalformedModelOutputError("Specificity output must be a JSON object.")
    value = raw.get("confidence")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise MalformedModelOutputError(f"Specificity output has no numeric confidence: {raw!r}")
    return min(1.0, max(0.0, float(value))), str(raw.get("suggestion") or "")


async def _score_specificity(state: StructuredQueryState) -> dict:
    """Rates the original input text only; the filter is not consulted."""
    raw = await complete(SPECIFICITY_PROMPT, state["user_input"])
    score, reason = _read_confidence(raw)
    logger.info("[structured:score_specificity] OUT confidence=%.2f reason=%r", score, reason)
    return {"specificity": score, "specificity_reason": reason}


async def _authorize(state: StructuredQueryState) -> dict:
    await require_access(get_document_store(), state["caller"], state["collection_name"])
    return {"authorized": True}


async def _execute(state: StructuredQueryState) -> dict:
    collection = state["collection_name"]
    flt = state["optimized_filter"].to_mongo()
    logger.info("[structured:execute] IN  collection=%s filter=%s", collection, json.dumps(flt, default=str))
    records = await get_document_store().find(collection, flt)
    logger.info("[structured:execute] OUT results=%d", len(records))
    return {"records": records}


async def _audit(state: StructuredQueryState) -> dict:
    await record_audit(
        get_document_store(),
        state["caller"],
        PIPELINE_NAME,
        state["user_input"],
        state["optimized_filter"].to_mongo(),
        len(state["records"]),
    )
    return {"audited": True}


def build_graph():
    """Compile the structured-query graph (strictly linear)."""
    graph = StateGraph(StructuredQueryState)

    graph.add_node("translate", _translate)
    graph.add_node("safety_check", _safety_check)
    graph.add_node("optimize", _optimize)
    graph.add_node("score_specificity", _score_specificity)
    graph.add_node("authorize", _authorize)
    graph.add_node("execute", _execute)
    graph.add_node("audit", _audit)

    graph.set_entry_point("translate")
    graph.add_edge("translate", "safety_check")
    graph.add_edge("safety_check", "optimize")
    graph.add_edge("optimize", "score_specificity")
    graph.add_edge("score_specificity", "authorize")
    graph.add_edge("authorize", "execute")
    graph.add_edge("execute", "audit")
    graph.add_edge("audit", END)

    return graph.compile()


async def run_structured_query(user_input: str, collection_name: str, caller: Caller) -> StructuredQueryResult:
    """
    Run the pipeline. Confidence is the specificity score, forced to 0 when no
    records match so that arbitration leans toward retrieval.
    """
    logger.info("[run_structured_query] START input=%r collection=%s caller=%s", user_input, collection_name, caller.id)
    final = await build_graph().ainvoke({
        "user_input": user_input,
        "collection_name": collection_name,
        "caller": caller,
    })
    records = final.get("records") or []
    specificity = final.get("specificity", 0.0)
    confidence = specificity if records else 0.0
    logger.info("[run_structured_query] END results=%d confidence=%.2f", len(records), confidence)
    return StructuredQueryResult(
        confidence=confidence,
        records=records,
        resolved_filter=final["optimized_filter"].to_mongo(),
        safety_reason=final.get("safety_reason", ""),
        specificity_reason=final.get("specificity_reason", ""),
        specificity=specificity,
    )
