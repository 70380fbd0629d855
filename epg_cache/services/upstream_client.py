"""
TVHeadend upstream client

Thin async client for the two grid endpoints the cache needs, plus the
paginated loaders that pull a complete event and channel listing.
"""
import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from epg_cache.config import EpgCacheSettings, sanitize_url_for_logging
from epg_cache.errors import (
    UpstreamAuthenticationError,
    UpstreamAuthorizationError,
    UpstreamBadRequestError,
    UpstreamError,
    UpstreamNetworkError,
    UpstreamNotFoundError,
)
from epg_cache.schemas import Channel, EpgEvent
from epg_cache.services.fetch_types import GridPage
from epg_cache.utils.data_merging import merge_page


logger = logging.getLogger(__name__)

PAGE_SIZE = 500
EPG_EVENTS_GRID_PATH = "/api/epg/events/grid"
CHANNEL_GRID_PATH = "/api/channel/grid"


class UpstreamSource(Protocol):
    """Operations the refresh scheduler needs from the upstream backend."""

    async def get_epg_events_grid(
        self, *, start: int, limit: int, sort: str = "start", direction: str = "ASC"
    ) -> GridPage[EpgEvent]: ...

    async def get_channel_grid(
        self, *, start: int, limit: int, sort: str = "number", direction: str = "ASC"
    ) -> GridPage[Channel]: ...


class TVHeadendClient:
    """Basic-auth JSON client for the TVHeadend HTTP API."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        auth = httpx.BasicAuth(username, password) if username or password else None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )
        self._display_url = sanitize_url_for_logging(base_url)
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor

    @classmethod
    def from_settings(cls, settings: EpgCacheSettings) -> "TVHeadendClient":
        if not settings.tvh_url:
            raise RuntimeError("TVH_URL environment variable is required")
        return cls(
            settings.tvh_url,
            settings.tvh_username,
            settings.tvh_password,
            timeout=settings.upstream_timeout_sec,
            max_retries=settings.upstream_max_retries,
            backoff_factor=settings.upstream_backoff_factor,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_epg_events_grid(
        self, *, start: int, limit: int, sort: str = "start", direction: str = "ASC"
    ) -> GridPage[EpgEvent]:
        payload = await self._request_json(
            EPG_EVENTS_GRID_PATH,
            {"start": start, "limit": limit, "sort": sort, "dir": direction},
        )
        return _parse_grid(payload, EpgEvent)

    async def get_channel_grid(
        self, *, start: int, limit: int, sort: str = "number", direction: str = "ASC"
    ) -> GridPage[Channel]:
        payload = await self._request_json(
            CHANNEL_GRID_PATH,
            {"start": start, "limit": limit, "sort": sort, "dir": direction},
        )
        return _parse_grid(payload, Channel)

    async def _request_json(self, path: str, params: dict[str, Any]) -> Any:
        """
        GET a JSON document with exponential backoff retry logic

        Retries on transient network errors and 5xx responses.
        Does NOT retry on 4xx HTTP errors (client errors).

        Raises:
            UpstreamError: If the request fails after all retries
        """
        last_error: UpstreamError | None = None

        for attempt in range(self._max_retries):
            try:
                response = await self._client.get(path, params=params)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_error = UpstreamNetworkError(
                    f"Network request failed: {type(exc).__name__}: {exc}"
                )
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise UpstreamError(f"Failed to parse response: {exc}") from exc

                if response.status_code < 500:
                    raise _status_error(response)

                last_error = UpstreamError(
                    f"HTTP {response.status_code}: {response.text or response.reason_phrase}",
                    response.status_code,
                )

            if attempt < self._max_retries - 1:
                wait_time = self._backoff_factor ** attempt
                logger.warning(
                    "Upstream request %s%s failed (attempt %s/%s): %s. Retrying in %.1fs...",
                    self._display_url,
                    path,
                    attempt + 1,
                    self._max_retries,
                    last_error,
                    wait_time,
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(
                    "Upstream request %s%s failed after %s attempts",
                    self._display_url,
                    path,
                    self._max_retries,
                )

        if last_error:
            raise last_error

        raise UpstreamError(f"Failed to fetch {path} after {self._max_retries} attempts")


def _status_error(response: httpx.Response) -> UpstreamError:
    text = response.text
    if response.status_code == 400:
        return UpstreamBadRequestError(text or "Bad request")
    if response.status_code == 401:
        return UpstreamAuthenticationError(text or "Authentication failed")
    if response.status_code == 403:
        return UpstreamAuthorizationError(text or "Permission denied")
    if response.status_code == 404:
        return UpstreamNotFoundError(text or "Resource not found")
    return UpstreamError(f"HTTP {response.status_code}: {text or response.reason_phrase}", response.status_code)


def _parse_grid(payload: Any, model: type) -> GridPage:
    if not isinstance(payload, dict):
        raise UpstreamError("Unexpected grid response: expected a JSON object")
    try:
        entries = [model.model_validate(entry) for entry in payload.get("entries", [])]
    except ValidationError as exc:
        raise UpstreamError(f"Invalid grid entry: {exc}") from exc
    total = payload.get("total", len(entries))
    return GridPage(entries=entries, total=int(total))


async def fetch_all_events(client: UpstreamSource, page_size: int = PAGE_SIZE) -> list[EpgEvent]:
    """
    Pull the complete EPG event listing page by page.

    Stops once ``total`` entries were collected or a short page arrives.
    """
    collected: dict[int, EpgEvent] = {}
    offset = 0
    fetched = 0

    while True:
        page = await client.get_epg_events_grid(start=offset, limit=page_size, sort="start", direction="ASC")
        merge_page(collected, page.entries, key=lambda event: event.event_id)
        fetched += len(page.entries)
        logger.debug("Fetched events page at offset %s: %s entries", offset, len(page.entries))

        if fetched >= page.total or len(page.entries) < page_size:
            break
        offset += page_size

    if fetched != len(collected):
        logger.warning("Dropped %s duplicate events returned across pages", fetched - len(collected))
    return list(collected.values())


async def fetch_all_channels(client: UpstreamSource, page_size: int = PAGE_SIZE) -> list[Channel]:
    """Pull the complete channel listing page by page."""
    collected: dict[str, Channel] = {}
    offset = 0
    fetched = 0

    while True:
        page = await client.get_channel_grid(start=offset, limit=page_size, sort="number", direction="ASC")
        merge_page(collected, page.entries, key=lambda channel: channel.uuid)
        fetched += len(page.entries)
        logger.debug("Fetched channels page at offset %s: %s entries", offset, len(page.entries))

        if fetched >= page.total or len(page.entries) < page_size:
            break
        offset += page_size

    if fetched != len(collected):
        logger.warning("Dropped %s duplicate channels returned across pages", fetched - len(collected))
    return list(collected.values())
