"""
Re-embedding: keep each record's docEmbedding in sync with its summary text.

Updates flag mutated records with needsReembedding before re-embedding them one
by one; the flag is cleared by each successful write. A sweep that dies part-way
leaves the remaining records flagged, and backfill_embeddings() picks them up
together with records that never had an embedding.
"""

import asyncio
import logging
import re
from typing import Any

from querychain.core import config
from querychain.core.errors import DimensionMismatchError
from querychain.services.document_store import DocumentStore
from querychain.services.embeddings import embed

logger = logging.getLogger(__name__)

# (label, field, suffix) in summary order
SUMMARY_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("Manager Name", "Name", ""),
    ("CGPA", "CGPA", ""),
    ("Branch", "Branch", ""),
    ("Role", "Role", ""),
    ("Company", "Company", ""),
    ("CTC", "CTC", " LPA"),
    ("Details", "Details", ""),
)

_WS = re.compile(r"\s+")


def record_summary(doc: dict[str, Any]) -> str:
    """One-line description of a record; this is the text that gets embedded."""
    parts = []
    for label, field, suffix in SUMMARY_FIELDS:
        value = doc.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            text = "N/A"
        else:
            text = f"{str(value).strip()}{suffix}"
        parts.append(f"{label}: {text}")
    return _WS.sub(" ", ", ".join(parts)).strip()


async def reembed_records(store: DocumentStore, collection: str, flt: dict[str, Any]) -> int:
    """Recompute the embedding of every record matching flt, sequentially. Returns the count."""
    docs = await store.find_for_embedding(collection, flt)
    logger.info("[reembed] IN  collection=%s matched=%d", collection, len(docs))
    count = 0
    for doc in docs:
        vector = await embed(record_summary(doc))
        await store.set_embedding(collection, doc["_id"], vector)
        count += 1
        logger.info("[reembed] synced embedding for %s", doc.get("Name", doc["_id"]))
    logger.info("[reembed] OUT re_embedded=%d", count)
    return count


async def backfill_embeddings(
    store: DocumentStore,
    collection: str,
    delay_seconds: float | None = None,
) -> dict[str, int]:
    """
    Embed records that have no embedding or are flagged for re-embedding.

    A record whose vector has the wrong dimensionality is skipped (nothing is
    written); any other failure aborts the run.
    """
    delay = config.BACKFILL_DELAY_SECONDS if delay_seconds is None else delay_seconds
    docs = await store.find_needing_embedding(collection)
    logger.info("[backfill] collection=%s pending=%d", collection, len(docs))
    embedded = 0
    skipped = 0
    for i, doc in enumerate(docs):
        try:
            vector = await embed(record_summary(doc))
        except DimensionMismatchError as e:
            logger.error("[backfill] skipping %s: %s", doc.get("_id"), e)
            skipped += 1
        else:
            await store.set_embedding(collection, doc["_id"], vector)
            embedded += 1
            logger.info("[backfill] embedded %s", doc.get("Name", doc["_id"]))
        if delay and i < len(docs) - 1:
            await asyncio.sleep(delay)
    result = {"processed": len(docs), "embedded": embedded, "skipped": skipped}
    logger.info("[backfill] done %s", result)
    return result
