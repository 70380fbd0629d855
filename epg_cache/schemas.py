from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel


T = TypeVar("T")

RefreshStatus = Literal["idle", "refreshing", "error"]


class CamelModel(BaseModel):
    """Base model exposing snake_case attributes as camelCase JSON keys"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EpgEvent(CamelModel):
    """One broadcast program instance"""
    event_id: int = Field(..., description="Unique upstream event ID")
    channel_uuid: str = Field(..., description="UUID of the broadcasting channel")
    channel_name: str = Field(..., description="Human-readable channel name")
    channel_number: int | None = None
    channel_icon: str | None = None
    start: int = Field(..., description="Start time (Unix seconds)")
    stop: int = Field(..., description="Stop time (Unix seconds)")
    duration: int | None = None
    title: str = Field(..., description="Program title")
    subtitle: str | None = None
    summary: str | None = None
    description: str | None = None
    genre: list[int] | None = None
    content_type: int | None = None
    series_link: str | None = None
    episode_number: int | None = None
    season_number: int | None = None
    part_number: int | None = None
    part_count: int | None = None
    episode_uri: str | None = None
    image: str | None = None
    next_event_id: int | None = None
    age_rating: int | None = None
    star_rating: int | None = None
    hd: bool | None = None
    widescreen: bool | None = None
    audio_desc: bool | None = None
    subtitled: bool | None = None

    @model_serializer(mode="wrap")
    def _omit_absent(self, handler):
        # Absent optional attributes are left out of the JSON payload
        return {key: value for key, value in handler(self).items() if value is not None}


class Channel(CamelModel):
    """Channel entry as delivered by the upstream channel grid"""
    uuid: str
    enabled: bool | None = None
    name: str
    number: int | None = None
    icon: str | None = None
    icon_public_url: str | None = None


class CachedChannel(CamelModel):
    """Channel projection stored in the cache"""
    uuid: str
    enabled: bool = True
    name: str
    number: int | None = None
    icon: str | None = None
    icon_public_url: str | None = None


class SyncMeta(CamelModel):
    """Cache freshness bookkeeping"""
    last_refresh_start: int = 0
    last_refresh_end: int = 0
    last_refresh_duration: int = 0
    event_count: int = 0
    channel_count: int = 0
    status: RefreshStatus = "idle"


class CacheHealthMeta(CamelModel):
    """Cache health metadata included in every data response"""
    cache_age: int = Field(..., description="Seconds since last successful refresh, -1 if never")
    last_refresh: str | None = Field(None, description="ISO8601 timestamp of last refresh completion")
    refresh_status: RefreshStatus
    total_events: int


class HealthResponse(CamelModel):
    """Health endpoint response"""
    status: Literal["healthy", "stale", "error"]
    cache_age: int
    last_refresh: str | None
    refresh_status: RefreshStatus
    total_events: int
    total_channels: int
    last_refresh_duration: int | None
    next_refresh: str | None


class SearchResult(CamelModel):
    """A search hit with its relevance score"""
    score: float
    event: EpgEvent


class ApiResponse(CamelModel, Generic[T]):
    """Standard API response wrapper"""
    data: T
    meta: CacheHealthMeta


class RefreshAccepted(CamelModel):
    message: str


class ErrorResponse(BaseModel):
    """Error body returned for every failed request"""
    error: str = Field(..., description="Human-readable error message")
