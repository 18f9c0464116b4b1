"""
Analysis API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from . import service

router = APIRouter()


@router.post("/analyze")
async def analyze(
    limit: int = Query(service.DEFAULT_BATCH_LIMIT, ge=1, le=service.MAX_BATCH_LIMIT),
) -> dict:
    """
    Analyze up to `limit` records that have no analysis yet.
    """
    batch = await service.analyze_batch(limit)
    if batch.selected == 0:
        return {
            "ok": True,
            "message": "No unanalyzed records found",
            "analyzed": 0,
            "failed": 0,
            "results": [],
            "errors": [],
        }

    return {
        "ok": True,
        "message": f"Analyzed {batch.analyzed} of {batch.selected} records",
        "analyzed": batch.analyzed,
        "failed": batch.failed,
        "results": batch.results,
        "errors": batch.errors,
    }


@router.get("/analyze")
async def analyze_status() -> dict:
    return {"ok": True, "unanalyzed_count": await service.unanalyzed_count()}
