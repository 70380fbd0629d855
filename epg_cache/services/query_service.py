"""
EPG Query Service

Business logic behind the HTTP endpoints: parameter validation, channel
resolution and composition of the store, the search index, the picon index
and the refresh scheduler. Failures are raised as ``EpgCacheError``
subclasses and mapped to HTTP responses by the API layer.
"""
import logging
import re
from typing import Protocol

from epg_cache.database import SQLITE_MAX_INTEGER, SQLITE_MIN_INTEGER
from epg_cache.errors import (
    InvalidParameterError,
    NotFoundError,
    RefreshConflictError,
    ServiceUnavailableError,
)
from epg_cache.schemas import (
    CacheHealthMeta,
    CachedChannel,
    EpgEvent,
    HealthResponse,
    RefreshAccepted,
    SearchResult,
    SyncMeta,
)
from epg_cache.services.fetch_types import PiconResult
from epg_cache.services.picon_service import PICON_VARIANTS, PiconIndex
from epg_cache.services.search_service import SearchIndex
from epg_cache.services.store_service import EpgStore
from epg_cache.utils.timezone import datetime_to_iso8601, now_unix, unix_to_iso8601

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 20
DEFAULT_TIMERANGE_LIMIT = 100
SEARCH_OVERFETCH_FACTOR = 5

_INTEGER_RE = re.compile(r"[+-]?\d+")


class RefreshControl(Protocol):
    """Scheduler operations the query layer depends on."""

    def is_refreshing(self) -> bool: ...

    def get_next_refresh_time(self): ...

    def trigger_refresh(self, trigger: str = "manual"): ...


def parse_int_param(name: str, value: str | None) -> int | None:
    """
    Strictly parse an optional integer parameter.

    Raises:
        InvalidParameterError: If the value is present but not an integer
            in the range SQLite can store
    """
    if value is None or value == "":
        return None
    stripped = value.strip()
    if not _INTEGER_RE.fullmatch(stripped):
        raise InvalidParameterError(f'Query parameter "{name}" must be an integer')
    number = int(stripped)
    if not SQLITE_MIN_INTEGER <= number <= SQLITE_MAX_INTEGER:
        raise InvalidParameterError(f'Query parameter "{name}" is out of range')
    return number


def parse_limit(value: str | None, default: int) -> int:
    limit = parse_int_param("limit", value)
    if limit is None:
        return default
    if limit <= 0:
        raise InvalidParameterError('Query parameter "limit" must be a positive integer')
    return limit


class EpgQueryService:
    """Read operations over the cache plus refresh and picon control"""

    def __init__(
        self,
        store: EpgStore,
        search_index: SearchIndex,
        scheduler: RefreshControl,
        refresh_interval: int,
        picon_index: PiconIndex | None = None,
    ):
        self.store = store
        self.search_index = search_index
        self.scheduler = scheduler
        self.refresh_interval = refresh_interval
        self.picon_index = picon_index

    async def build_meta(self) -> CacheHealthMeta:
        """Cache health metadata attached to every data response"""
        meta = await self.store.get_sync_meta()
        return CacheHealthMeta(
            cache_age=_cache_age(meta),
            last_refresh=_last_refresh(meta),
            refresh_status=meta.status,
            total_events=meta.event_count,
        )

    async def health(self) -> HealthResponse:
        meta = await self.store.get_sync_meta()
        cache_age = _cache_age(meta)

        if meta.event_count == 0 and meta.last_refresh_end == 0:
            status = "error"
        elif cache_age > self.refresh_interval * 2:
            status = "stale"
        else:
            status = "healthy"

        next_refresh = self.scheduler.get_next_refresh_time()
        return HealthResponse(
            status=status,
            cache_age=cache_age,
            last_refresh=_last_refresh(meta),
            refresh_status=meta.status,
            total_events=meta.event_count,
            total_channels=meta.channel_count,
            last_refresh_duration=meta.last_refresh_duration if meta.last_refresh_end > 0 else None,
            next_refresh=datetime_to_iso8601(next_refresh) if next_refresh else None,
        )

    async def resolve_channel_uuid(self, channel: str) -> str:
        """
        Resolve a channel number or UUID.

        Raises:
            NotFoundError: If no channel matches
        """
        cached = await self.store.get_channel_by_uuid_or_number(channel)
        if cached is None:
            raise NotFoundError(f'Channel "{channel}" not found')
        return cached.uuid

    async def search(
        self,
        q: str | None,
        *,
        channel: str | None = None,
        start: str | None = None,
        stop: str | None = None,
        genre: str | None = None,
        limit: str | None = None,
    ) -> list[SearchResult]:
        """
        Fuzzy search with optional channel, time window and genre filters.

        The index is asked for more hits than requested so that post-filtering
        still fills the page; the time window only applies when both ``start``
        and ``stop`` are given.
        """
        if not q:
            raise InvalidParameterError('Query parameter "q" is required')

        max_results = parse_limit(limit, DEFAULT_SEARCH_LIMIT)
        window_start = parse_int_param("start", start)
        window_stop = parse_int_param("stop", stop)
        content_type = parse_int_param("genre", genre)
        channel_uuid = await self.resolve_channel_uuid(channel) if channel else None

        hits = self.search_index.search(q, max_results * SEARCH_OVERFETCH_FACTOR)
        if not hits:
            return []

        events = await self.store.get_events_by_ids([hit.event_id for hit in hits])
        events_by_id = {event.event_id: event for event in events}

        results: list[SearchResult] = []
        for hit in hits:
            event = events_by_id.get(hit.event_id)
            if event is None:
                # Index may briefly reference an event dropped by a newer refresh
                continue
            if channel_uuid and event.channel_uuid != channel_uuid:
                continue
            if (
                window_start is not None
                and window_stop is not None
                and (event.start >= window_stop or event.stop <= window_start)
            ):
                continue
            if content_type is not None and event.content_type != content_type:
                continue
            results.append(SearchResult(score=hit.score, event=event))
            if len(results) >= max_results:
                break

        logger.debug("Search %r: %s hits, %s results after filtering", q, len(hits), len(results))
        return results

    async def timerange(
        self,
        start: str | None,
        stop: str | None,
        *,
        channel: str | None = None,
        genre: str | None = None,
        limit: str | None = None,
    ) -> list[EpgEvent]:
        window_start = parse_int_param("start", start)
        window_stop = parse_int_param("stop", stop)
        if window_start is None or window_stop is None:
            raise InvalidParameterError('Query parameters "start" and "stop" are required')

        max_results = parse_limit(limit, DEFAULT_TIMERANGE_LIMIT)
        content_type = parse_int_param("genre", genre)
        channel_uuid = await self.resolve_channel_uuid(channel) if channel else None

        return await self.store.get_events_by_timerange(
            window_start,
            window_stop,
            channel_uuid=channel_uuid,
            content_type=content_type,
            limit=max_results,
        )

    async def get_event(self, event_id: str) -> EpgEvent:
        stripped = event_id.strip()
        if not _INTEGER_RE.fullmatch(stripped):
            raise InvalidParameterError("Invalid event ID")

        parsed_id = int(stripped)
        if not SQLITE_MIN_INTEGER <= parsed_id <= SQLITE_MAX_INTEGER:
            raise NotFoundError("Event not found")

        event = await self.store.get_event_by_id(parsed_id)
        if event is None:
            raise NotFoundError("Event not found")
        return event

    async def list_channels(self) -> list[CachedChannel]:
        return await self.store.get_all_channels()

    def trigger_refresh(self) -> RefreshAccepted:
        """
        Start a background refresh.

        Raises:
            RefreshConflictError: If a refresh is already running
        """
        if self.scheduler.is_refreshing():
            raise RefreshConflictError("Refresh already in progress")

        logger.info("Manual EPG refresh triggered via API")
        self.scheduler.trigger_refresh("manual")
        return RefreshAccepted(message="Refresh started")

    def resolve_picon_by_channel_name(self, name: str, variant: str | None = None) -> PiconResult:
        picon_index = self._require_picon_index()
        result = picon_index.resolve_by_channel_name(name, _validate_variant(variant))
        if result is None:
            raise NotFoundError(f'No picon found for channel "{name}"')
        return result

    def resolve_picon_by_service_ref(self, ref: str, variant: str | None = None) -> PiconResult:
        picon_index = self._require_picon_index()
        result = picon_index.resolve_by_service_ref(ref, _validate_variant(variant))
        if result is None:
            raise NotFoundError(f'No picon found for service reference "{ref}"')
        return result

    def _require_picon_index(self) -> PiconIndex:
        if self.picon_index is None:
            raise ServiceUnavailableError("Picons are not configured")
        return self.picon_index


def _validate_variant(variant: str | None):
    if variant is None or variant == "":
        return "default"
    if variant not in PICON_VARIANTS:
        raise InvalidParameterError(
            f'Invalid variant "{variant}". Must be one of: {", ".join(sorted(PICON_VARIANTS))}'
        )
    return variant


def _cache_age(meta: SyncMeta) -> int:
    return now_unix() - meta.last_refresh_end if meta.last_refresh_end > 0 else -1


def _last_refresh(meta: SyncMeta) -> str | None:
    return unix_to_iso8601(meta.last_refresh_end) if meta.last_refresh_end > 0 else None
