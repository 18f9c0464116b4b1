from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from uuid import uuid4

import httpx
import pytest
from fastapi import HTTPException

from analysis import service as analysis_service
from core import openai
from ingestion import service as ingestion_service
from records import repository as records_repository

STATS = {
    "total": 3,
    "analyzed_count": 1,
    "pending_count": 2,
    "last_analyzed_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
}


@pytest.fixture()
def stats(monkeypatch):
    async def record_stats():
        return dict(STATS)

    monkeypatch.setattr(records_repository, "record_stats", record_stats)


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_health_stats(client, stats):
    resp = client.get("/health/stats")

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_records"] == 3
    assert body["analyzed_records"] == 1
    assert body["last_analyzed_at"].startswith("2025-01-02")


def test_list_records_passes_filters(client, stats, monkeypatch):
    captured = {}

    async def list_records(**kwargs):
        captured.update(kwargs)
        return [{"id": str(uuid4()), "external_id": "a", "content": "hello", "analysis": None}]

    monkeypatch.setattr(records_repository, "list_records", list_records)

    resp = client.get(
        "/records",
        params={"q": "Hello", "sentiment": "negative", "status": "pending", "sort": "oldest", "limit": 5},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["total"] == 3
    assert body["pending_count"] == 2
    assert captured == {
        "limit": 5,
        "offset": 0,
        "search_query": "Hello",
        "sentiment": "negative",
        "status": "pending",
        "sort": "oldest",
    }


@pytest.mark.parametrize(
    "params",
    [{"sort": "random"}, {"status": "done"}, {"sentiment": "angry"}, {"limit": 0}, {"limit": 201}],
)
def test_list_records_rejects_bad_query(client, stats, params):
    resp = client.get("/records", params=params)

    assert resp.status_code == 422


def test_get_record_not_found(client, record_store):
    resp = client.get(f"/records/{uuid4()}")

    assert resp.status_code == 404


def test_get_record_invalid_id(client):
    resp = client.get("/records/not-a-uuid")

    assert resp.status_code == 422


def test_get_record(client, record_store):
    record = record_store.add("stored")

    resp = client.get(f"/records/{record['id']}")

    assert resp.status_code == 200
    assert resp.json()["record"]["content"] == "stored"


def test_delete_record(client, monkeypatch):
    deleted = []

    async def delete_record(record_id):
        deleted.append(record_id)
        return len(deleted) == 1

    monkeypatch.setattr(records_repository, "delete_record", delete_record)
    record_id = uuid4()

    first = client.delete(f"/records/{record_id}")
    second = client.delete(f"/records/{record_id}")

    assert first.status_code == 200
    assert first.json()["ok"] is True
    assert second.status_code == 404
    assert deleted == [record_id, record_id]


def test_analyze_single_record(client, record_store, monkeypatch):
    async def fake_analyze(content, **_kwargs):
        return openai.Analysis(summary="s", sentiment="neutral", keywords=["k"])

    monkeypatch.setattr(openai, "analyze", fake_analyze)
    record = record_store.add("content")

    first = client.post(f"/records/{record['id']}/analyze")
    second = client.post(f"/records/{record['id']}/analyze")

    assert first.status_code == 200
    assert first.json()["analysis"] == {"summary": "s", "sentiment": "neutral", "keywords": ["k"]}
    assert second.status_code == 409


@pytest.mark.parametrize("limit", [0, 51, "ten"])
def test_analyze_limit_is_validated(client, limit):
    resp = client.post("/analyze", params={"limit": limit})

    assert resp.status_code == 422


def test_analyze_with_nothing_pending(client, record_store):
    resp = client.post("/analyze")

    assert resp.status_code == 200
    body = resp.json()
    assert body["analyzed"] == 0
    assert body["message"] == "No unanalyzed records found"


def test_analyze_reports_results(client, monkeypatch):
    async def analyze_batch(limit):
        assert limit == 2
        return analysis_service.BatchResult(
            selected=2,
            results=[{"id": "1", "external_id": "a", "analysis": {"summary": "s"}}],
            errors=[{"id": "2", "external_id": "b", "error": "boom"}],
        )

    monkeypatch.setattr(analysis_service, "analyze_batch", analyze_batch)

    resp = client.post("/analyze", params={"limit": 2})

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Analyzed 1 of 2 records"
    assert body["failed"] == 1
    assert body["errors"][0]["error"] == "boom"


def test_analyze_status(client, record_store):
    record_store.add("a")
    record_store.add("b")

    resp = client.get("/analyze")

    assert resp.json() == {"ok": True, "unanalyzed_count": 2}


def test_ingest(client, monkeypatch):
    async def ingest():
        store = ingestion_service.StoreResult(
            inserted_rows=[{"id": "1", "external_id": "a", "content": "x"}],
            skipped=4,
        )
        return ingestion_service.IngestResult(items_count=5, store=store)

    monkeypatch.setattr(ingestion_service, "ingest", ingest)

    resp = client.post("/ingest")

    assert resp.status_code == 200
    body = resp.json()
    assert body["items_count"] == 5
    assert body["stored_count"] == 1
    assert body["skipped_count"] == 4


def test_ingest_upstream_failure(client, monkeypatch):
    async def ingest():
        raise HTTPException(status_code=502, detail="Failed to start Apify task: 401")

    monkeypatch.setattr(ingestion_service, "ingest", ingest)

    resp = client.post("/ingest")

    assert resp.status_code == 502
    assert "401" in resp.json()["detail"]


def test_analyze_single_record_malformed_completion_is_502(client, record_store, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    def odd_body(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": ["oops"]})

    monkeypatch.setattr(openai, "analyze", partial(openai.analyze, transport=httpx.MockTransport(odd_body)))
    record = record_store.add("content")

    resp = client.post(f"/records/{record['id']}/analyze")

    assert resp.status_code == 502
    assert "No analysis content" in resp.json()["detail"]
    assert record_store.rows[record["id"]]["analyzed_at"] is None
