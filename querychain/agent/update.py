"""
LangGraph update pipeline: authorize -> translate -> safety_check -> apply -> (reembed) -> audit.

Authorization happens before any model call. The safety check is the strict
parser in query_parser.parse_update; only its re-serialized output is applied.
Records the update changes are flagged needsReembedding until their embedding
is rewritten.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from querychain.agent.llm import complete
from querychain.agent.prompts import UPDATE_TRANSLATION_PROMPT
from querychain.core.caller import Caller
from querychain.core.config import REEMBED_MARKER_FIELD
from querychain.services.audit import record_audit
from querychain.services.document_store import get_document_store
from querychain.services.permissions import require_access
from querychain.services.query_parser import SAFE_UPDATE_REASON, Filter, Mutation, parse_update
from querychain.services.reembedding import reembed_records

logger = logging.getLogger(__name__)

PIPELINE_NAME = "update"


class UpdateState(TypedDict, total=False):
    user_input: str
    collection_name: str
    caller: Caller
    authorized: bool
    raw_update: Any
    parsed_filter: Filter
    mutation: Mutation
    safety_reason: str
    changed_ids: list
    modified_count: int
    re_embedded_count: int
    audited: bool


@dataclass
class UpdateResult:
    modified_count: int
    re_embedded_count: int
    resolved_filter: dict[str, Any]
    resolved_update: dict[str, Any]
    success: bool = field(default=True, init=False)


async def _authorize(state: UpdateState) -> dict:
    await require_access(get_document_store(), state["caller"], state["collection_name"])
    return {"authorized": True}


async def _translate(state: UpdateState) -> dict:
    logger.info("[update:translate] IN  input=%r", state["user_input"])
    raw = await complete(UPDATE_TRANSLATION_PROMPT, state["user_input"])
    logger.info("[update:translate] OUT raw=%s", json.dumps(raw, default=str))
    return {"raw_update": raw}


async def _safety_check(state: UpdateState) -> dict:
    flt, mutation = parse_update(state["raw_update"])
    logger.info("[update:safety_check] OUT safe filter_fields=%s set_fields=%s",
                sorted(flt.fields()), sorted(mutation.fields()))
    return {"parsed_filter": flt, "mutation": mutation, "safety_reason": SAFE_UPDATE_REASON}


def _changed_ids(docs: list[dict[str, Any]], mutation: Mutation) -> list[Any]:
    """_ids of the snapshot records the $set would actually change."""
    return [
        doc["_id"]
        for doc in docs
        if any(name not in doc or doc[name] != value for name, value in mutation.assignments)
    ]


async def _apply(state: UpdateState) -> dict:
    """
    Snapshot the matched records, flag the ones the $set changes, then apply the
    $set on its own so modified_count only counts real changes.
    """
    store = get_document_store()
    collection = state["collection_name"]
    flt = state["parsed_filter"].to_mongo()
    update = state["mutation"].to_mongo()
    matched = await store.find_for_embedding(collection, flt)
    changed = _changed_ids(matched, state["mutation"])
    logger.info("[update:apply] IN  collection=%s filter=%s update=%s matched=%d changing=%d",
                collection, json.dumps(flt, default=str), json.dumps(update, default=str),
                len(matched), len(changed))
    if changed:
        await store.update_many(collection, {"_id": {"$in": changed}}, {"$set": {REEMBED_MARKER_FIELD: True}})
    modified = await store.update_many(collection, flt, update)
    logger.info("[update:apply] OUT modified=%d", modified)
    return {"modified_count": modified, "changed_ids": changed, "re_embedded_count": 0}


def _route_after_apply(state: UpdateState) -> Literal["reembed", "audit"]:
    return "reembed" if state.get("modified_count", 0) > 0 and state.get("changed_ids") else "audit"


async def _reembed(state: UpdateState) -> dict:
    """Re-embed by _id, so records whose filter field was rewritten are still covered."""
    count = await reembed_records(
        get_document_store(), state["collection_name"], {"_id": {"$in": state["changed_ids"]}}
    )
    return {"re_embedded_count": count}


async def _audit(state: UpdateState) -> dict:
    resolved = {"filter": state["parsed_filter"].to_mongo(), "update": state["mutation"].to_mongo()}
    await record_audit(
        get_document_store(),
        state["caller"],
        PIPELINE_NAME,
        state["user_input"],
        resolved,
        state.get("modified_count", 0),
    )
    return {"audited": True}


def build_graph():
    graph = StateGraph(UpdateState)

    graph.add_node("authorize", _authorize)
    graph.add_node("translate", _translate)
    graph.add_node("safety_check", _safety_check)
    graph.add_node("apply", _apply)
    graph.add_node("reembed", _reembed)
    graph.add_node("audit", _audit)

    graph.set_entry_point("authorize")
    graph.add_edge("authorize", "translate")
    graph.add_edge("translate", "safety_check")
    graph.add_edge("safety_check", "apply")
    graph.add_conditional_edges("apply", _route_after_apply)
    graph.add_edge("reembed", "audit")
    graph.add_edge("audit", END)

    return graph.compile()


async def run_update_pipeline(user_input: str, collection_name: str, caller: Caller) -> UpdateResult:
    logger.info("[run_update_pipeline] START input=%r collection=%s caller=%s", user_input, collection_name, caller.id)
    final = await build_graph().ainvoke({
        "user_input": user_input,
        "collection_name": collection_name,
        "caller": caller,
    })
    result = UpdateResult(
        modified_count=final.get("modified_count", 0),
        re_embedded_count=final.get("re_embedded_count", 0),
        resolved_filter=final["parsed_filter"].to_mongo(),
        resolved_update=final["mutation"].to_mongo(),
    )
    logger.info("[run_update_pipeline] END modified=%d re_embedded=%d", result.modified_count, result.re_embedded_count)
    return result
