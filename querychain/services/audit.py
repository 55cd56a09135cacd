"""Append-only audit log: one entry per pipeline run that reaches its audit stage."""

import logging
from datetime import datetime, timezone
from typing import Any

from querychain.core.caller import Caller
from querychain.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def build_audit_entry(
    caller: Caller,
    pipeline: str,
    user_input: str,
    resolved_query: dict[str, Any],
    result_count: int,
) -> dict[str, Any]:
    return {
        "user_id": caller.id,
        "role": caller.role,
        "pipeline": pipeline,
        "user_input": user_input,
        "resolved_query": resolved_query,
        "result_count": result_count,
        "timestamp": datetime.now(timezone.utc),
    }


async def record_audit(
    store: DocumentStore,
    caller: Caller,
    pipeline: str,
    user_input: str,
    resolved_query: dict[str, Any],
    result_count: int,
) -> None:
    entry = build_audit_entry(caller, pipeline, user_input, resolved_query, result_count)
    await store.insert_audit(entry)
    logger.info("[audit] pipeline=%s user_id=%s role=%s results=%d", pipeline, caller.id, caller.role, result_count)
