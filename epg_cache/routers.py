from typing import Annotated
import logging

from fastapi import APIRouter, Query, Response, status

from epg_cache.dependencies import QueryServiceDep
from epg_cache.schemas import (
    ApiResponse,
    CachedChannel,
    EpgEvent,
    HealthResponse,
    RefreshAccepted,
    SearchResult,
)
from epg_cache.services.fetch_types import PiconResult
from epg_cache.utils.file_operations import read_file_bytes


logger = logging.getLogger(__name__)

PICON_CACHE_CONTROL = "public, max-age=86400, stale-while-revalidate=604800"

main_router = APIRouter(prefix="/api")

# Parameters are taken as raw strings and validated by the query service
OptionalParam = Annotated[str | None, Query()]


@main_router.get("/health", response_model=HealthResponse)
async def health_check(query_service: QueryServiceDep) -> HealthResponse:
    """Cache freshness and refresh state"""
    return await query_service.health()


@main_router.get("/events/search", response_model=ApiResponse[list[SearchResult]])
async def search_events(
    query_service: QueryServiceDep,
    q: OptionalParam = None,
    channel: OptionalParam = None,
    start: OptionalParam = None,
    stop: OptionalParam = None,
    genre: OptionalParam = None,
    limit: OptionalParam = None,
) -> ApiResponse[list[SearchResult]]:
    """
    Fuzzy full-text search over titles, subtitles, summaries and descriptions

    Args:
        q: Search text
        channel: Channel number or UUID
        start: Window start (Unix seconds); needs ``stop`` as well
        stop: Window end (Unix seconds); needs ``start`` as well
        genre: Content type code
        limit: Maximum number of results (default 20)
    """
    results = await query_service.search(
        q,
        channel=channel,
        start=start,
        stop=stop,
        genre=genre,
        limit=limit,
    )
    return ApiResponse(data=results, meta=await query_service.build_meta())


@main_router.get("/events/timerange", response_model=ApiResponse[list[EpgEvent]])
async def get_events_in_timerange(
    query_service: QueryServiceDep,
    start: OptionalParam = None,
    stop: OptionalParam = None,
    channel: OptionalParam = None,
    genre: OptionalParam = None,
    limit: OptionalParam = None,
) -> ApiResponse[list[EpgEvent]]:
    """Events overlapping [start, stop), ordered by start time"""
    events = await query_service.timerange(
        start,
        stop,
        channel=channel,
        genre=genre,
        limit=limit,
    )
    return ApiResponse(data=events, meta=await query_service.build_meta())


@main_router.get("/events/{event_id}", response_model=ApiResponse[EpgEvent])
async def get_event(event_id: str, query_service: QueryServiceDep) -> ApiResponse[EpgEvent]:
    event = await query_service.get_event(event_id)
    return ApiResponse(data=event, meta=await query_service.build_meta())


@main_router.get("/channels", response_model=ApiResponse[list[CachedChannel]])
async def list_channels(query_service: QueryServiceDep) -> ApiResponse[list[CachedChannel]]:
    channels = await query_service.list_channels()
    return ApiResponse(data=channels, meta=await query_service.build_meta())


@main_router.post(
    "/cache/refresh",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RefreshAccepted,
)
async def trigger_refresh(query_service: QueryServiceDep) -> RefreshAccepted:
    """
    Manually trigger a cache refresh from upstream

    Returns immediately; the refresh runs in the background.
    """
    return query_service.trigger_refresh()


@main_router.get("/picon/channel/{channel_name:path}")
async def get_picon_by_channel_name(
    channel_name: str,
    query_service: QueryServiceDep,
    variant: OptionalParam = None,
) -> Response:
    """Channel logo looked up by channel name"""
    result = query_service.resolve_picon_by_channel_name(channel_name, variant)
    return await _picon_response(result)


@main_router.get("/picon/srp/{service_ref:path}")
async def get_picon_by_service_ref(
    service_ref: str,
    query_service: QueryServiceDep,
    variant: OptionalParam = None,
) -> Response:
    """Channel logo looked up by service reference"""
    result = query_service.resolve_picon_by_service_ref(service_ref, variant)
    return await _picon_response(result)


async def _picon_response(result: PiconResult) -> Response:
    content = await read_file_bytes(result.file_path)
    return Response(
        content=content,
        media_type=result.content_type,
        headers={"Cache-Control": PICON_CACHE_CONTROL},
    )
