"""
Client for the remote paginated card catalog.

Wraps one ``httpx.AsyncClient`` per owner. Page fetches and the total-count
probe each run under their own ``RetryPolicy``: transport errors, timeouts,
HTTP 429, 5xx and undecodable bodies are retried; other 4xx responses fail
immediately.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Mapping, Optional

import httpx

from catalog_sync.config import Settings
from catalog_sync.domain.models import PageResult
from catalog_sync.errors import PageFetchError, ProbeError
from catalog_sync.infrastructure.retry import RetryPolicy
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


class MissingTotalCountError(ValueError):
    """The probe response carried no usable ``totalCount``."""


def is_transient_http_error(exc: BaseException) -> bool:
    """Transport failures, timeouts, 429, 5xx and garbled bodies are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, (httpx.TransportError, json.JSONDecodeError, MissingTotalCountError))


def fetch_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.fetch_max_attempts,
        base_delay=settings.fetch_base_delay_seconds,
        backoff="exponential",
        retry_on=(httpx.HTTPError, json.JSONDecodeError, MissingTotalCountError),
        is_transient=is_transient_http_error,
    )


def probe_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.probe_max_attempts,
        base_delay=settings.probe_delay_seconds,
        backoff="fixed",
        retry_on=(httpx.HTTPError, json.JSONDecodeError, MissingTotalCountError),
        is_transient=is_transient_http_error,
    )


class CatalogClient:
    """
    Fetch pages and the total item count from the catalog API.

    Parameters
    ----------
    base_url : str
        Collection endpoint, e.g. ``https://api.pokemontcg.io/v2/cards``.
    page_size : int
        Items per page requested from the API.
    fetch_retry, probe_retry : RetryPolicy
        Policies for page fetches and for the count probe.
    timeout_seconds : float
        Per-request timeout.
    client : httpx.AsyncClient, optional
        Injected client (tests pass one built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        page_size: int,
        fetch_retry: RetryPolicy,
        probe_retry: RetryPolicy,
        timeout_seconds: float = 180.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url
        self.page_size = page_size
        self.fetch_retry = fetch_retry
        self.probe_retry = probe_retry
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "CatalogClient":
        return cls(
            base_url=settings.catalog_base_url,
            page_size=settings.page_size,
            fetch_retry=fetch_policy(settings),
            probe_retry=probe_policy(settings),
            timeout_seconds=settings.request_timeout_seconds,
            client=client,
        )

    async def _get(self, params: Mapping[str, Any], credential: str) -> Any:
        response = await self._client.get(
            self.base_url,
            params=dict(params),
            headers={"X-Api-Key": credential},
        )
        response.raise_for_status()
        return response.json()

    async def fetch_page(
        self, params: Mapping[str, Any], page: int, credential: str
    ) -> PageResult:
        """
        Fetch one page, retrying transient failures.

        Raises
        ------
        PageFetchError
            When the page still fails after the retry ceiling, or fails with a
            non-retryable status.
        """
        query = {**params, "page": page, "pageSize": self.page_size}

        async def _attempt() -> Dict[str, Any]:
            log.debug(f"[FETCH] requesting page {page}", extra={"page": page})
            return await self._get(query, credential)

        try:
            payload = await self.fetch_retry.call(f"fetch page {page}", _attempt)
            result = PageResult.model_validate(payload)
        except (httpx.HTTPError, ValueError) as exc:
            raise PageFetchError(page, exc) from exc
        return result.model_copy(update={"page": page})

    async def probe_total_pages(self, credential: str) -> int:
        """
        Ask for a one-item page and derive ``ceil(totalCount / page_size)``.

        Raises
        ------
        ProbeError
            When no total could be obtained within the probe retry ceiling.
        """

        async def _attempt() -> int:
            payload = await self._get({"page": 1, "pageSize": 1}, credential)
            if not isinstance(payload, dict):
                raise MissingTotalCountError(f"probe response is not an object: {payload!r}")
            total = payload.get("totalCount")
            if not isinstance(total, int) or total <= 0:
                raise MissingTotalCountError(f"no totalCount in probe response: {total!r}")
            return total

        try:
            total_count = await self.probe_retry.call("probe total count", _attempt)
        except (httpx.HTTPError, ValueError) as exc:
            raise ProbeError(f"total count probe failed: {exc!r}") from exc

        total_pages = math.ceil(total_count / self.page_size)
        log.info(
            f"[PROBE] {total_count} items -> {total_pages} pages",
            extra={"total_count": total_count, "total_pages": total_pages},
        )
        return total_pages

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "CatalogClient",
    "fetch_policy",
    "probe_policy",
    "is_transient_http_error",
]
