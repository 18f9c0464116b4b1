"""
FastAPI router for the record list.
"""

from __future__ import annotations

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from analysis import service as analysis_service

from . import repository

router = APIRouter()


@router.get("/records")
async def list_records(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    q: str = Query(default="", max_length=500),
    sentiment: Literal["positive", "neutral", "negative"] | None = None,
    status: Literal["all", "analyzed", "pending"] = "all",
    sort: Literal["newest", "oldest", "sentiment"] = "newest",
) -> dict:
    """
    List stored records with optional search, filters and sort order.

    Counters describe the whole table, not the filtered page.
    """
    records = await repository.list_records(
        limit=limit,
        offset=offset,
        search_query=q,
        sentiment=sentiment or "",
        status=status,
        sort=sort,
    )
    stats = await repository.record_stats()
    return {
        "records": records,
        "limit": limit,
        "offset": offset,
        "count": len(records),
        "total": stats["total"],
        "analyzed_count": stats["analyzed_count"],
        "pending_count": stats["pending_count"],
    }


@router.get("/records/{record_id}")
async def get_record(record_id: UUID) -> dict:
    record = await repository.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found.")
    return {"ok": True, "record": record}


@router.delete("/records/{record_id}")
async def delete_record(record_id: UUID) -> dict:
    if not await repository.delete_record(record_id):
        raise HTTPException(status_code=404, detail="Record not found.")
    return {"ok": True, "message": "Record deleted successfully", "record_id": record_id}


@router.post("/records/{record_id}/analyze")
async def analyze_record(record_id: UUID) -> dict:
    """
    Analyze one record. Records that already carry an analysis are rejected with 409.
    """
    record = await analysis_service.analyze_record(record_id)
    return {
        "ok": True,
        "message": "Record analyzed successfully",
        "analysis": record["analysis"],
        "record": record,
    }
