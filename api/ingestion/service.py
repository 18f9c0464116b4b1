"""
Ingestion "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Map scraped Apify items onto `records` rows
- Drop items without content and duplicate keys
- Insert only rows whose `external_id` is new (existing rows are never touched)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException

from core import apify

from . import repository

EXTERNAL_ID_KEYS = ("id", "url", "uniqueId")
SOURCE_KEYS = ("url", "source", "link")
CONTENT_KEYS = ("text", "content", "title", "body")
CREATED_AT_KEYS = ("createdAt", "publishedAt", "date")

UNKNOWN_SOURCE = "unknown"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordRow:
    external_id: str
    source: str
    content: str
    source_created_at: datetime | None = None


@dataclass
class StoreResult:
    inserted_rows: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0

    @property
    def inserted(self) -> int:
        return len(self.inserted_rows)


@dataclass
class IngestResult:
    items_count: int
    store: StoreResult


def _first_str(item: dict[str, Any], keys: tuple[str, ...], *, strip: bool = True) -> str:
    """
    First non-blank value among `keys`. With `strip=False` the value is
    returned as stored.
    """
    for key in keys:
        value = item.get(key)
        if value is None:
            continue
        text = str(value)
        if text.strip():
            return text.strip() if strip else text
    return ""


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an upstream ISO-8601 timestamp. Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds.
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    raw = str(value).strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def content_key(source: str, content: str) -> str:
    """
    Stable fallback key for items that carry no id or url.
    """
    digest = hashlib.sha256(f"{source}\n{content}".encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def map_item(item: dict[str, Any]) -> RecordRow | None:
    content = _first_str(item, CONTENT_KEYS, strip=False)
    if not content:
        return None

    source = _first_str(item, SOURCE_KEYS) or UNKNOWN_SOURCE
    external_id = _first_str(item, EXTERNAL_ID_KEYS) or content_key(source, content)

    created_at = None
    for key in CREATED_AT_KEYS:
        value = item.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        created_at = parse_timestamp(value)
        break

    return RecordRow(
        external_id=external_id,
        source=source,
        content=content,
        source_created_at=created_at,
    )


def map_items(items: list[dict[str, Any]]) -> list[RecordRow]:
    """
    Map items to rows. Items without content are dropped; for a repeated
    `external_id` the first occurrence wins.
    """
    rows: list[RecordRow] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        row = map_item(item)
        if row is None or row.external_id in seen:
            continue
        seen.add(row.external_id)
        rows.append(row)
    return rows


async def store_items(items: list[dict[str, Any]]) -> StoreResult:
    rows = map_items(items)
    if not rows:
        logger.info("store_items_empty items=%s", len(items))
        return StoreResult()

    existing = await repository.existing_external_ids([r.external_id for r in rows])
    new_rows = [r for r in rows if r.external_id not in existing]
    if not new_rows:
        logger.info("store_items_all_existing rows=%s", len(rows))
        return StoreResult(skipped=len(rows))

    inserted = await repository.insert_new_records(new_rows)
    result = StoreResult(inserted_rows=inserted, skipped=len(rows) - len(inserted))
    logger.info("store_items_complete rows=%s inserted=%s skipped=%s", len(rows), result.inserted, result.skipped)
    return result


async def ingest() -> IngestResult:
    """
    Run the configured Apify task and store whatever it scraped.
    """
    try:
        items = await apify.run_workflow()
    except apify.ApifyError as e:
        logger.error("ingest_failed error=%s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    store = await store_items(items)
    logger.info("ingest_complete items=%s inserted=%s", len(items), store.inserted)
    return IngestResult(items_count=len(items), store=store)
