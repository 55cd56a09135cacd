#!/usr/bin/env python3
"""
Backfill record embeddings.

Embeds every record in the collection that has no docEmbedding yet, plus any
record an update flagged with needsReembedding (e.g. a re-embedding sweep that
failed part-way). Vectors with the wrong dimensionality are skipped, never saved.

Run from project root:

    python scripts/backfill_embeddings.py
    python scripts/backfill_embeddings.py --collection managers --delay 0.5
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Project root on path so "querychain" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from querychain.core.config import BACKFILL_DELAY_SECONDS, DEFAULT_DATA_COLLECTION
from querychain.services.document_store import close_document_store, get_document_store
from querychain.services.reembedding import backfill_embeddings


async def _run(collection: str, delay: float) -> dict[str, int]:
    try:
        return await backfill_embeddings(get_document_store(), collection, delay_seconds=delay)
    finally:
        await close_document_store()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create missing or stale record embeddings.")
    parser.add_argument(
        "--collection",
        default=DEFAULT_DATA_COLLECTION,
        help=f"Collection to process (default: {DEFAULT_DATA_COLLECTION}).",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=BACKFILL_DELAY_SECONDS,
        help="Seconds to wait between records, to respect embedding API rate limits.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    result = asyncio.run(_run(args.collection, args.delay))
    if result["processed"] == 0:
        print("All documents already have embeddings.")
        return
    print(
        f"Done. Embedded {result['embedded']} of {result['processed']} documents "
        f"({result['skipped']} skipped)."
    )


if __name__ == "__main__":
    main()
