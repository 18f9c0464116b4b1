"""
Ingestion persistence.
This module is where ingestion-related SQL lives.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from core import db
from records.repository import RECORD_COLUMNS, decode_record

if TYPE_CHECKING:
    from .service import RecordRow


async def existing_external_ids(external_ids: list[str]) -> set[str]:
    if not external_ids:
        return set()
    rows = await db.fetch_all(
        "SELECT external_id FROM records WHERE external_id = ANY($1::text[])",
        external_ids,
    )
    return {str(r["external_id"]) for r in rows}


async def insert_new_records(rows: list[RecordRow]) -> list[dict[str, Any]]:
    """
    Bulk insert rows, skipping any `external_id` that already exists.

    Conflicting rows are left untouched; only freshly inserted rows are
    returned.
    """
    if not rows:
        return []

    inserted = await db.fetch_all(
        f"""
        INSERT INTO records (external_id, source, content, source_created_at)
        SELECT *
        FROM unnest($1::text[], $2::text[], $3::text[], $4::timestamptz[])
        ON CONFLICT (external_id) DO NOTHING
        RETURNING {RECORD_COLUMNS}
        """,
        [r.external_id for r in rows],
        [r.source for r in rows],
        [r.content for r in rows],
        [r.source_created_at for r in rows],
    )
    return [decode_record(r) for r in inserted]
