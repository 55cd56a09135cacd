"""
Permission gate: role -> allowed collections, read from the Permissions collection.

A role with no permission record is denied. "*" in allowedCollections grants all.
"""

import logging

from querychain.core.caller import Caller
from querychain.core.errors import AccessDeniedError
from querychain.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

WILDCARD = "*"


async def authorize(store: DocumentStore, role: str, collection_name: str) -> bool:
    """True when role may access collection_name. Never raises on denial."""
    record = await store.find_permission(role)
    allowed = (record or {}).get("allowedCollections") or []
    granted = WILDCARD in allowed or collection_name in allowed
    logger.info("[permissions:authorize] role=%s collection=%s granted=%s", role, collection_name, granted)
    return granted


async def require_access(store: DocumentStore, caller: Caller, collection_name: str) -> None:
    """Raise AccessDeniedError unless the caller's role may access collection_name."""
    if not await authorize(store, caller.role, collection_name):
        raise AccessDeniedError(caller.role, collection_name)
