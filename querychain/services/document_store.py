"""
Document store client: MongoDB / Atlas connection and the operations the pipelines need.

Responsibility: filtered reads with the embedding projected out, multi-document
$set updates, per-record embedding writes, Atlas $vectorSearch, and the
Permissions / AuditLogs collections. Every driver failure surfaces as DatabaseError.
"""

import logging
from typing import Any

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from querychain.core.config import (
    AUDIT_COLLECTION,
    EMBEDDING_FIELD,
    MONGO_SERVER_SELECTION_TIMEOUT_MS,
    MONGODB_DATABASE,
    MONGODB_URI,
    PERMISSIONS_COLLECTION,
    REEMBED_MARKER_FIELD,
    VECTOR_INDEX_NAME,
)
from querychain.core.errors import DatabaseError, ServiceUnavailableError

logger = logging.getLogger(__name__)

# Derived fields never returned to callers
HIDDEN_PROJECTION = {EMBEDDING_FIELD: 0, REEMBED_MARKER_FIELD: 0}


def _serialize(doc: dict[str, Any]) -> dict[str, Any]:
    """Stringify ObjectId so records can be returned as JSON."""
    out = dict(doc)
    if isinstance(out.get("_id"), ObjectId):
        out["_id"] = str(out["_id"])
    return out


class DocumentStore:
    """Async wrapper around one MongoDB database."""

    def __init__(self, client: AsyncMongoClient, database: str) -> None:
        self._client = client
        self._db = client[database]

    async def find(self, collection: str, flt: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            cursor = self._db[collection].find(flt, HIDDEN_PROJECTION)
            docs = await cursor.to_list()
        except PyMongoError as e:
            raise DatabaseError(f"find on {collection!r} failed: {e}") from e
        return [_serialize(d) for d in docs]

    async def find_for_embedding(self, collection: str, flt: dict[str, Any]) -> list[dict[str, Any]]:
        """Records matching flt with their raw _id (for writing embeddings back)."""
        try:
            cursor = self._db[collection].find(flt, {EMBEDDING_FIELD: 0})
            return await cursor.to_list()
        except PyMongoError as e:
            raise DatabaseError(f"find on {collection!r} failed: {e}") from e

    async def find_needing_embedding(self, collection: str) -> list[dict[str, Any]]:
        flt = {"$or": [{EMBEDDING_FIELD: {"$exists": False}}, {REEMBED_MARKER_FIELD: True}]}
        return await self.find_for_embedding(collection, flt)

    async def update_many(self, collection: str, flt: dict[str, Any], update: dict[str, Any]) -> int:
        try:
            result = await self._db[collection].update_many(flt, update)
        except PyMongoError as e:
            raise DatabaseError(f"update on {collection!r} failed: {e}") from e
        return result.modified_count

    async def set_embedding(self, collection: str, doc_id: Any, vector: list[float]) -> None:
        """Overwrite one record's embedding and clear its re-embedding marker."""
        try:
            await self._db[collection].update_one(
                {"_id": doc_id},
                {"$set": {EMBEDDING_FIELD: vector}, "$unset": {REEMBED_MARKER_FIELD: ""}},
            )
        except PyMongoError as e:
            raise DatabaseError(f"embedding write on {collection!r} failed: {e}") from e

    async def vector_search(
        self, collection: str, vector: list[float], num_candidates: int, limit: int
    ) -> list[dict[str, Any]]:
        """Nearest records by embedding, each with a ``score`` (vectorSearchScore)."""
        pipeline = [
            {
                "$vectorSearch": {
                    "index": VECTOR_INDEX_NAME,
                    "path": EMBEDDING_FIELD,
                    "queryVector": vector,
                    "numCandidates": num_candidates,
                    "limit": limit,
                }
            },
            {
                "$project": {
                    **HIDDEN_PROJECTION,
                    "score": {"$meta": "vectorSearchScore"},
                }
            },
        ]
        try:
            cursor = await self._db[collection].aggregate(pipeline)
            docs = await cursor.to_list()
        except PyMongoError as e:
            raise DatabaseError(f"vector search on {collection!r} failed: {e}") from e
        return [_serialize(d) for d in docs]

    async def find_permission(self, role: str) -> dict[str, Any] | None:
        try:
            return await self._db[PERMISSIONS_COLLECTION].find_one({"role": role})
        except PyMongoError as e:
            raise DatabaseError(f"permission lookup failed: {e}") from e

    async def insert_audit(self, entry: dict[str, Any]) -> None:
        try:
            await self._db[AUDIT_COLLECTION].insert_one(dict(entry))
        except PyMongoError as e:
            raise DatabaseError(f"audit write failed: {e}") from e

    async def close(self) -> None:
        await self._client.close()


_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """
    Return the process-wide store, connecting on first use.
    Raises ServiceUnavailableError when MONGODB_URI is not configured.
    """
    global _store
    if _store is None:
        if not MONGODB_URI:
            raise ServiceUnavailableError("MONGODB_URI must be set in .env")
        client = AsyncMongoClient(MONGODB_URI, serverSelectionTimeoutMS=MONGO_SERVER_SELECTION_TIMEOUT_MS)
        _store = DocumentStore(client, MONGODB_DATABASE)
        logger.info("MongoDB client created (database=%s)", MONGODB_DATABASE)
    return _store


async def close_document_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
        logger.info("MongoDB client closed")
