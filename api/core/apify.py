"""
Apify HTTP client helpers.

Used endpoints:
- POST /v2/actor-tasks/{taskId}/runs  -> {"data": {"id": "...", "status": "READY"}}
- POST /v2/actors/{actorId}/runs      (fallback when the id is an actor, not a task)
- GET  /v2/actor-runs/{runId}         -> {"data": {"status": "...", "defaultDatasetId": "..."}}
- GET  /v2/datasets/{datasetId}/items -> [{...}, ...]
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from . import settings

DEFAULT_BASE_URL = "https://api.apify.com"
DEFAULT_POLL_INTERVAL_S = 2.0
DEFAULT_MAX_WAIT_S = 300.0

RUN_SUCCEEDED = "SUCCEEDED"
RUN_FAILED_STATUSES = {"FAILED", "ABORTED", "TIMED-OUT"}

logger = logging.getLogger(__name__)


class ApifyError(RuntimeError):
    pass


def apify_base_url() -> str:
    return settings.env_str("APIFY_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


def apify_token() -> str:
    token = settings.env_str("APIFY_TOKEN")
    if not token:
        raise ApifyError("APIFY_TOKEN environment variable must be set.")
    return token


def apify_task_id() -> str:
    task_id = settings.env_str("APIFY_TASK_ID")
    if not task_id:
        raise ApifyError("APIFY_TASK_ID environment variable must be set.")
    return task_id


def _headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/json",
        "Authorization": f"Bearer {token}",
    }


def _error_detail(resp: httpx.Response) -> str:
    # Avoid dumping huge bodies; include a small snippet.
    return f"{resp.status_code} {resp.reason_phrase}. {resp.text[:500]}".strip()


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise ApifyError(f"Apify returned a non-JSON body: {resp.text[:200]}") from e


def _data(resp: httpx.Response) -> dict[str, Any]:
    body = _json(resp)
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, dict) else {}


async def _request(
    method: str,
    path: str,
    *,
    base_url: str,
    token: str,
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None,
    json: Any = None,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(base_url=base_url, timeout=timeout_s, transport=transport) as client:
            return await client.request(method, path, headers=_headers(token), json=json)
    except httpx.HTTPError as e:
        raise ApifyError(f"Apify request {method} {path} failed: {e}") from e


async def start_task(
    task_id: str,
    *,
    base_url: str,
    token: str,
    timeout_s: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Start a task run and return the run id without waiting for completion.

    The id may refer to a saved actor task or to an actor itself; a 404 on the
    task endpoint retries once against the actor endpoint.
    """
    resp = await _request(
        "POST",
        f"/v2/actor-tasks/{task_id}/runs",
        base_url=base_url,
        token=token,
        timeout_s=timeout_s,
        transport=transport,
        json={},
    )
    if resp.status_code == 404:
        logger.info("apify_task_not_found task_id=%s retrying_as=actor", task_id)
        resp = await _request(
            "POST",
            f"/v2/actors/{task_id}/runs",
            base_url=base_url,
            token=token,
            timeout_s=timeout_s,
            transport=transport,
            json={},
        )

    if not resp.is_success:
        raise ApifyError(f"Failed to start Apify task: {_error_detail(resp)}")

    data = _data(resp)
    run_id = data.get("id")
    if not run_id:
        raise ApifyError(f"Invalid response structure. Run ID not found: {resp.text[:500]}")

    logger.info("apify_run_started run_id=%s status=%s", run_id, data.get("status"))
    return str(run_id)


async def wait_for_run(
    run_id: str,
    *,
    base_url: str,
    token: str,
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    max_wait_s: float = DEFAULT_MAX_WAIT_S,
    timeout_s: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Poll a run until it succeeds and return its default dataset id.
    """
    deadline = time.monotonic() + max_wait_s

    while time.monotonic() < deadline:
        resp = await _request(
            "GET",
            f"/v2/actor-runs/{run_id}",
            base_url=base_url,
            token=token,
            timeout_s=timeout_s,
            transport=transport,
        )
        if not resp.is_success:
            raise ApifyError(f"Failed to check run status: {_error_detail(resp)}")

        data = _data(resp)
        status = str(data.get("status") or "")
        logger.debug("apify_run_status run_id=%s status=%s", run_id, status)

        if status == RUN_SUCCEEDED:
            dataset_id = data.get("defaultDatasetId")
            if not dataset_id:
                raise ApifyError(f"Dataset ID not found in completed run {run_id}.")
            logger.info("apify_run_succeeded run_id=%s dataset_id=%s", run_id, dataset_id)
            return str(dataset_id)

        if status in RUN_FAILED_STATUSES:
            message = data.get("statusMessage") or "Unknown error"
            raise ApifyError(f"Apify run {status.lower()}: {message}")

        # READY, RUNNING, TIMING-OUT, ABORTING: keep polling.
        await asyncio.sleep(poll_interval_s)

    raise ApifyError(f"Run {run_id} did not complete within {max_wait_s:g} seconds.")


async def read_items(
    dataset_id: str,
    *,
    base_url: str,
    token: str,
    timeout_s: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict[str, Any]]:
    """
    Read all items of a dataset. A non-list payload is treated as empty.
    """
    resp = await _request(
        "GET",
        f"/v2/datasets/{dataset_id}/items",
        base_url=base_url,
        token=token,
        timeout_s=timeout_s,
        transport=transport,
    )
    if not resp.is_success:
        raise ApifyError(f"Failed to read Apify dataset items: {_error_detail(resp)}")

    data = _json(resp)
    if not isinstance(data, list):
        return []
    items = [item for item in data if isinstance(item, dict)]
    logger.info("apify_items_read dataset_id=%s count=%s", dataset_id, len(items))
    return items


async def run_workflow(*, transport: httpx.AsyncBaseTransport | None = None) -> list[dict[str, Any]]:
    """
    Start the configured task, wait for it and return its dataset items.
    """
    base_url = apify_base_url()
    token = apify_token()

    run_id = await start_task(apify_task_id(), base_url=base_url, token=token, transport=transport)
    dataset_id = await wait_for_run(
        run_id,
        base_url=base_url,
        token=token,
        poll_interval_s=settings.env_float("APIFY_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S),
        max_wait_s=settings.env_float("APIFY_MAX_WAIT_S", DEFAULT_MAX_WAIT_S),
        transport=transport,
    )
    return await read_items(dataset_id, base_url=base_url, token=token, transport=transport)
