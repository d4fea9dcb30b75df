"""Async client for the Treninfo train-status backend."""

import asyncio
import logging

import httpx

from treninfo.config import settings
from treninfo.core.errors import TransportError, UpstreamError
from treninfo.core.models import SelectionContext

logger = logging.getLogger(__name__)

RETRY_BACKOFF = [1, 2, 4]  # seconds between retries


class TreninfoClient:
    """Fetches raw train-status payloads. Interpreting them is the engine's job."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=settings.upstream_base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._max_retries = settings.http_max_retries

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, path: str, params: dict, label: str) -> httpx.Response:
        """GET with retry on connect errors, timeouts and 5xx; raises TransportError when exhausted."""
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.get(path, params=params)
                resp.raise_for_status()
                return resp
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < self._max_retries:
                    wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                    logger.warning(
                        "%s attempt %d/%d failed (%s), retrying in %ds",
                        label, attempt + 1, self._max_retries + 1, type(e).__name__, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("%s failed after %d attempts: %s", label, self._max_retries + 1, e)
                    raise TransportError(f"{label}: {type(e).__name__}") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status >= 500 and attempt < self._max_retries:
                    wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                    logger.warning(
                        "%s attempt %d/%d got HTTP %d, retrying in %ds",
                        label, attempt + 1, self._max_retries + 1, status, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("Failed to fetch %s from Treninfo: HTTP %d", label, status)
                    raise TransportError(f"{label}: HTTP {status}") from e
            except asyncio.CancelledError:
                logger.debug("%s cancelled", label)
                raise
            except httpx.HTTPError as e:
                logger.error("Failed to fetch %s from Treninfo: %s", label, e)
                raise TransportError(f"{label}: {e}") from e
        raise TransportError(f"{label}: no attempts made")

    async def fetch_train_status(
        self,
        train_number: str,
        context: SelectionContext | None = None,
    ) -> dict:
        """Raw status payload for a train number, narrowed by whatever context is known."""
        context = context or SelectionContext()
        params = {"trainNumber": train_number}
        if context.origin_code:
            params["originCode"] = context.origin_code
        if context.technical_id:
            params["technical"] = context.technical_id
        if context.reference_timestamp_ms is not None:
            params["epochMs"] = str(context.reference_timestamp_ms)
        if context.choice is not None:
            params["choice"] = context.choice
        if context.date:
            params["date"] = context.date

        resp = await self._get_with_retry("/api/trains/status", params, f"train {train_number}")
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"Train {train_number}: response is not JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Train {train_number}: unexpected {type(data).__name__} body")
        logger.debug("Train %s status keys=%s", train_number, list(data.keys())[:12])
        return data
