"""
Analysis orchestration.

Flow (batch):
1) Select records with `analyzed_at IS NULL`, oldest first
2) Ask OpenAI for summary / sentiment / keywords, one record at a time
3) Persist the analysis (write-once)
4) Wait between requests to stay under the completion API rate limit

A failing record is reported and the batch moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from fastapi import HTTPException

from core import openai, settings
from records import repository as records_repository

DEFAULT_BATCH_LIMIT = 10
MAX_BATCH_LIMIT = 50
# 3 requests per minute on the free tier.
DEFAULT_DELAY_S = 21.0

logger = logging.getLogger(__name__)


def request_delay_s() -> float:
    return max(0.0, settings.env_float("ANALYZE_DELAY_S", DEFAULT_DELAY_S))


@dataclass
class BatchResult:
    selected: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def analyzed(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


async def _analyze_and_save(record: dict[str, Any]) -> dict[str, Any]:
    analysis = await openai.analyze(str(record.get("content") or ""))
    updated = await records_repository.save_analysis(record["id"], analysis.to_dict())
    if updated is None:
        raise RuntimeError("Record was deleted or analyzed by another request.")
    return updated


async def analyze_batch(limit: int = DEFAULT_BATCH_LIMIT) -> BatchResult:
    records = await records_repository.fetch_unanalyzed(limit=limit)
    batch = BatchResult(selected=len(records))
    if not records:
        return batch

    delay_s = request_delay_s()
    logger.info("analyze_batch_start selected=%s delay_s=%s", len(records), delay_s)

    for i, record in enumerate(records):
        try:
            updated = await _analyze_and_save(record)
            batch.results.append(
                {
                    "id": record["id"],
                    "external_id": record["external_id"],
                    "analysis": updated["analysis"],
                }
            )
        except Exception as e:
            logger.warning("analyze_record_failed id=%s error=%s", record["id"], e)
            batch.errors.append(
                {
                    "id": record["id"],
                    "external_id": record["external_id"],
                    "error": str(e),
                }
            )

        if i < len(records) - 1 and delay_s:
            await asyncio.sleep(delay_s)

    logger.info("analyze_batch_complete analyzed=%s failed=%s", batch.analyzed, batch.failed)
    return batch


async def analyze_record(record_id: UUID) -> dict[str, Any]:
    """
    Analyze a single record on demand.
    """
    record = await records_repository.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found.")
    if record.get("analyzed_at") is not None:
        raise HTTPException(status_code=409, detail="Record is already analyzed.")

    try:
        analysis = await openai.analyze(str(record.get("content") or ""))
    except openai.CompletionError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    updated = await records_repository.save_analysis(record_id, analysis.to_dict())
    if updated is None:
        raise HTTPException(status_code=409, detail="Record is already analyzed.")
    return updated


async def unanalyzed_count() -> int:
    return await records_repository.count_unanalyzed()
