from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from reelwatch.errors import ActorInvocationError, ActorTimeoutError
from reelwatch.settings import Settings

logger = logging.getLogger(__name__)

APIFY_ACTOR_RUN_URL = "https://api.apify.com/v2/acts/{actor_id}/runs"
APIFY_RUN_STATUS_URL = "https://api.apify.com/v2/actor-runs/{run_id}"
APIFY_DATASET_ITEMS_URL = "https://api.apify.com/v2/datasets/{dataset_id}/items"

DEFAULT_RESULTS_LIMIT = 1000
TERMINAL_RUN_STATUSES = {"SUCCEEDED", "FAILED", "ABORTED", "TIMED-OUT"}
DATASET_PAGE_SIZE = 1000


def _normalize_actor_id(actor_id: str) -> str:
    """Apify expects username~actor-name in URLs."""
    if "~" in actor_id:
        return actor_id
    if "/" in actor_id:
        return actor_id.replace("/", "~", 1)
    return actor_id


class ApifyActorClient:
    """Runs the reel scraper actor for one identifier and returns its dataset items.

    One actor run per call, no retries: any failure surfaces as
    ActorInvocationError and the caller decides what to do with it.
    """

    def __init__(
        self,
        token: str,
        actor_id: str,
        *,
        timeout_s: float = 900,
        poll_interval_s: float = 5.0,
        request_timeout_s: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.actor_id = _normalize_actor_id(actor_id)
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.request_timeout_s = request_timeout_s
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApifyActorClient":
        return cls(
            settings.require_apify_token(),
            settings.apify_actor_id,
            timeout_s=settings.actor_timeout_sec,
            poll_interval_s=settings.actor_poll_interval_sec,
        )

    async def invoke(self, identifier: str, result_limit: int | None = None) -> list[dict[str, Any]]:
        limit = result_limit or DEFAULT_RESULTS_LIMIT
        payload = {"username": [identifier], "resultsLimit": limit}
        logger.info("[actor] starting %s for %r (limit=%d)", self.actor_id, identifier, limit)
        try:
            items = await asyncio.wait_for(self._run(payload, limit), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise ActorTimeoutError(
                f"Apify run did not finish within {self.timeout_s}s",
                actor=self.actor_id,
            ) from exc
        logger.info("[actor] %s returned %d items for %r", self.actor_id, len(items), identifier)
        return items

    async def _run(self, payload: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        params = {"token": self.token}
        async with httpx.AsyncClient(timeout=self.request_timeout_s, transport=self._transport) as client:
            run_id, dataset_id = await self._start_and_wait(client, params, payload)
            return await self._read_dataset(client, run_id, dataset_id, limit)

    async def _start_and_wait(
        self, client: httpx.AsyncClient, params: dict[str, str], payload: dict[str, Any]
    ) -> tuple[str, str]:
        try:
            run_resp = await client.post(APIFY_ACTOR_RUN_URL.format(actor_id=self.actor_id), params=params, json=payload)
        except httpx.HTTPError as exc:
            raise ActorInvocationError(f"Apify run start failed: {exc}", actor=self.actor_id) from exc

        if run_resp.status_code >= 400:
            raise ActorInvocationError(
                "Apify run start failed",
                actor=self.actor_id,
                status=run_resp.status_code,
                body=run_resp.text[:400],
            )

        run_data = _json_data(run_resp)
        run_id = run_data.get("id")
        if not run_id:
            raise ActorInvocationError("Apify run id missing", actor=self.actor_id, body=run_resp.text[:400])

        while True:
            try:
                status_resp = await client.get(APIFY_RUN_STATUS_URL.format(run_id=run_id), params=params)
            except httpx.HTTPError as exc:
                raise ActorInvocationError(
                    f"Apify run status failed: {exc}", actor=self.actor_id, run_id=run_id
                ) from exc
            if status_resp.status_code >= 400:
                raise ActorInvocationError(
                    "Apify run status failed",
                    actor=self.actor_id,
                    run_id=run_id,
                    status=status_resp.status_code,
                    body=status_resp.text[:400],
                )
            data = _json_data(status_resp)
            final_status = data.get("status")
            if final_status in TERMINAL_RUN_STATUSES:
                break
            await asyncio.sleep(self.poll_interval_s)

        if final_status != "SUCCEEDED":
            raise ActorInvocationError(
                f"Apify run {final_status}: {data.get('errorMessage') or 'no error message'}",
                actor=self.actor_id,
                run_id=run_id,
                status=final_status,
            )

        dataset_id = data.get("defaultDatasetId")
        if not dataset_id:
            raise ActorInvocationError("Apify dataset missing", actor=self.actor_id, run_id=run_id, status=final_status)
        return run_id, dataset_id

    async def _read_dataset(
        self, client: httpx.AsyncClient, run_id: str, dataset_id: str, limit: int
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_size = min(limit, DATASET_PAGE_SIZE)
        offset = 0
        while len(items) < limit:
            try:
                ds_resp = await client.get(
                    APIFY_DATASET_ITEMS_URL.format(dataset_id=dataset_id),
                    params={"token": self.token, "clean": "true", "limit": page_size, "offset": offset},
                )
            except httpx.HTTPError as exc:
                raise ActorInvocationError(
                    f"Apify dataset fetch failed: {exc}", actor=self.actor_id, run_id=run_id
                ) from exc
            if ds_resp.status_code >= 400:
                raise ActorInvocationError(
                    "Apify dataset fetch failed",
                    actor=self.actor_id,
                    run_id=run_id,
                    status=ds_resp.status_code,
                    body=ds_resp.text[:400],
                )
            try:
                page_items = ds_resp.json()
            except ValueError as exc:
                raise ActorInvocationError(
                    "Invalid dataset response", actor=self.actor_id, run_id=run_id, body=ds_resp.text[:400]
                ) from exc
            if not isinstance(page_items, list):
                raise ActorInvocationError(
                    "Invalid dataset response", actor=self.actor_id, run_id=run_id, body=str(page_items)[:400]
                )
            items.extend(item for item in page_items if isinstance(item, dict))
            if len(page_items) < page_size:
                break
            offset += page_size
        return items[:limit]


def _json_data(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    return body.get("data") or {}
