from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from records import repository as records_repository

ENV_VARS = (
    "APIFY_TOKEN",
    "APIFY_TASK_ID",
    "APIFY_BASE_URL",
    "APIFY_POLL_INTERVAL_S",
    "APIFY_MAX_WAIT_S",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "OPENAI_MAX_RETRIES",
    "ANALYZE_DELAY_S",
    "DATABASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def client():
    # No context manager: the lifespan (DB pool) is not started.
    import main

    return TestClient(main.app)


class FakeRecordStore:
    """
    In-memory stand-in for the `records` table used by repository-level fakes.
    """

    def __init__(self) -> None:
        self.rows: dict[UUID, dict[str, Any]] = {}
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def add(self, content: str, *, external_id: str | None = None, analyzed: bool = False) -> dict[str, Any]:
        self._clock += timedelta(seconds=1)
        row = {
            "id": uuid4(),
            "external_id": external_id or f"ext-{len(self.rows) + 1}",
            "source": "https://example.com",
            "content": content,
            "source_created_at": None,
            "analysis": {"summary": "done", "sentiment": "neutral", "keywords": []} if analyzed else None,
            "analyzed_at": self._clock if analyzed else None,
            "created_at": self._clock,
            "updated_at": self._clock,
        }
        self.rows[row["id"]] = row
        return row

    async def fetch_unanalyzed(self, *, limit: int) -> list[dict[str, Any]]:
        pending = [r for r in self.rows.values() if r["analyzed_at"] is None]
        pending.sort(key=lambda r: r["created_at"])
        return [copy.deepcopy(r) for r in pending[:limit]]

    async def count_unanalyzed(self) -> int:
        return sum(1 for r in self.rows.values() if r["analyzed_at"] is None)

    async def get_record(self, record_id: UUID) -> dict[str, Any] | None:
        row = self.rows.get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def save_analysis(self, record_id: UUID, analysis: dict[str, Any]) -> dict[str, Any] | None:
        row = self.rows.get(record_id)
        if row is None or row["analyzed_at"] is not None:
            return None
        self._clock += timedelta(seconds=1)
        row["analysis"] = analysis
        row["analyzed_at"] = self._clock
        row["updated_at"] = self._clock
        return copy.deepcopy(row)


@pytest.fixture()
def record_store(monkeypatch) -> FakeRecordStore:
    store = FakeRecordStore()
    monkeypatch.setattr(records_repository, "fetch_unanalyzed", store.fetch_unanalyzed)
    monkeypatch.setattr(records_repository, "count_unanalyzed", store.count_unanalyzed)
    monkeypatch.setattr(records_repository, "get_record", store.get_record)
    monkeypatch.setattr(records_repository, "save_analysis", store.save_analysis)
    return store
