"""
FastAPI router for ingestion endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import service

router = APIRouter()


@router.post("/ingest")
async def ingest() -> dict:
    """
    Run the scraping task, then insert every item whose `external_id` is new.

    Blocks until the Apify run finishes (bounded by APIFY_MAX_WAIT_S).
    """
    result = await service.ingest()
    return {
        "ok": True,
        "message": "Data ingested successfully",
        "items_count": result.items_count,
        "stored_count": result.store.inserted,
        "skipped_count": result.store.skipped,
        "stored_records": result.store.inserted_rows,
    }
