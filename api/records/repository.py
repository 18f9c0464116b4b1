"""
Record persistence.
This module is where SQL over the `records` table lives; ingestion inserts
rows through `ingestion/repository.py`.
"""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from core import db

RECORD_COLUMNS = (
    "id, external_id, source, content, source_created_at, "
    "analysis, analyzed_at, created_at, updated_at"
)

SORT_OPTIONS = {"newest", "oldest", "sentiment"}
STATUS_OPTIONS = {"all", "analyzed", "pending"}


def decode_record(row: dict[str, Any]) -> dict[str, Any]:
    """
    jsonb comes back from asyncpg as text; turn `analysis` into a dict.
    """
    analysis = row.get("analysis")
    if isinstance(analysis, str):
        row["analysis"] = json.loads(analysis)
    return row


async def list_records(
    *,
    limit: int = 50,
    offset: int = 0,
    search_query: str = "",
    sentiment: str = "",
    status: str = "all",
    sort: str = "newest",
) -> list[dict[str, Any]]:
    """
    List records, newest first by default.

    `search_query` is a case-insensitive substring match over content,
    analysis summary and keywords. Records without analysis count as
    "neutral" for sentiment filtering and sorting.
    """
    q = (search_query or "").strip().lower()
    rows = await db.fetch_all(
        f"""
        SELECT {RECORD_COLUMNS}
        FROM records
        WHERE (
            $1 = ''
            OR strpos(lower(content), $1) > 0
            OR strpos(lower(COALESCE(analysis->>'summary', '')), $1) > 0
            OR strpos(
              lower(array_to_string(
                ARRAY(
                  SELECT jsonb_array_elements_text(
                    CASE WHEN jsonb_typeof(analysis->'keywords') = 'array'
                      THEN analysis->'keywords' ELSE '[]'::jsonb END
                  )
                ),
                ' '
              )),
              $1
            ) > 0
          )
          AND ($2 = '' OR COALESCE(analysis->>'sentiment', 'neutral') = $2)
          AND (
            $3 = 'all'
            OR ($3 = 'analyzed' AND analyzed_at IS NOT NULL)
            OR ($3 = 'pending' AND analyzed_at IS NULL)
          )
        ORDER BY
          CASE WHEN $4 = 'sentiment' THEN
            CASE COALESCE(analysis->>'sentiment', 'neutral')
              WHEN 'positive' THEN 0
              WHEN 'neutral' THEN 1
              ELSE 2
            END
          END ASC,
          CASE WHEN $4 = 'oldest' THEN created_at END ASC,
          created_at DESC,
          id DESC
        LIMIT $5
        OFFSET $6
        """,
        q,
        sentiment or "",
        status if status in STATUS_OPTIONS else "all",
        sort if sort in SORT_OPTIONS else "newest",
        limit,
        offset,
    )
    return [decode_record(r) for r in rows]


async def get_record(record_id: UUID) -> dict[str, Any] | None:
    row = await db.fetch_one(
        f"SELECT {RECORD_COLUMNS} FROM records WHERE id = $1",
        record_id,
    )
    return decode_record(row) if row is not None else None


async def delete_record(record_id: UUID) -> bool:
    """
    Hard-delete a record. Returns False when no row matched.
    """
    row = await db.fetch_one(
        "DELETE FROM records WHERE id = $1 RETURNING id",
        record_id,
    )
    return row is not None


async def record_stats() -> dict[str, Any]:
    row = await db.fetch_one(
        """
        SELECT
          count(*)::int AS total,
          (count(*) FILTER (WHERE analyzed_at IS NOT NULL))::int AS analyzed_count,
          max(analyzed_at) AS last_analyzed_at
        FROM records
        """
    )
    row = row or {"total": 0, "analyzed_count": 0, "last_analyzed_at": None}
    row["pending_count"] = int(row["total"]) - int(row["analyzed_count"])
    return row


async def fetch_unanalyzed(*, limit: int) -> list[dict[str, Any]]:
    """
    Records still waiting for analysis, oldest first.
    """
    rows = await db.fetch_all(
        f"""
        SELECT {RECORD_COLUMNS}
        FROM records
        WHERE analyzed_at IS NULL
        ORDER BY created_at ASC, id ASC
        LIMIT $1
        """,
        limit,
    )
    return [decode_record(r) for r in rows]


async def count_unanalyzed() -> int:
    value = await db.fetch_value("SELECT count(*) FROM records WHERE analyzed_at IS NULL")
    return int(value or 0)


async def save_analysis(record_id: UUID, analysis: dict[str, Any]) -> dict[str, Any] | None:
    """
    Store the analysis for a record that has none yet.

    Returns the updated row, or None when the record is missing or was
    already analyzed. Analysis is written once and never replaced.
    """
    row = await db.fetch_one(
        f"""
        UPDATE records
        SET analysis = $2::jsonb,
            analyzed_at = now(),
            updated_at = now()
        WHERE id = $1
          AND analyzed_at IS NULL
        RETURNING {RECORD_COLUMNS}
        """,
        record_id,
        db.json_arg(analysis),
    )
    return decode_record(row) if row is not None else None
