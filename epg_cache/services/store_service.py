"""
EPG Store

Embedded SQLite projection of upstream events and channels. Every write is a
wholesale replace inside one transaction; reads are indexed range and point
queries. The store also owns the singleton sync metadata row.
"""
import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from time import perf_counter

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from epg_cache.database import (
    MEMORY_PATH,
    SQLITE_MAX_INTEGER,
    SQLITE_MIN_INTEGER,
    create_engine,
    create_session_factory,
    session_scope,
)
from epg_cache.models import Base, ChannelRow, EventRow, SyncMetaRow
from epg_cache.schemas import CachedChannel, Channel, EpgEvent, RefreshStatus, SyncMeta
from epg_cache.services.fetch_types import IndexableEvent
from epg_cache.utils.timezone import now_unix


logger = logging.getLogger(__name__)

SYNC_META_ID = 1
INSERT_CHUNK_SIZE = 1000


class EpgStore:
    """Cached projection of events and channels with sync bookkeeping."""

    def __init__(
        self,
        database_path: str = MEMORY_PATH,
        *,
        journal_mode: str = "WAL",
        cache_size_kb: int = 64000,
    ) -> None:
        self.database_path = database_path
        self._engine: AsyncEngine = create_engine(
            database_path,
            journal_mode=journal_mode,
            cache_size_kb=cache_size_kb,
        )
        self._session_factory = create_session_factory(self._engine)
        # An in-memory database shares one connection, so readers would see
        # a replace in progress; access is serialized instead
        self._access_lock = asyncio.Lock() if database_path == MEMORY_PATH else None

    @asynccontextmanager
    async def _session(self, *, begin: bool = True) -> AsyncIterator[AsyncSession]:
        if self._access_lock is None:
            async with session_scope(self._session_factory, begin=begin) as session:
                yield session
            return

        async with self._access_lock:
            async with session_scope(self._session_factory, begin=begin) as session:
                yield session

    async def init(self) -> None:
        """Create tables, indexes and the singleton sync row if missing."""
        logger.info("Initializing EPG store at %s", self.database_path)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        # ORM insert so the column defaults fill the counters and status
        async with self._session() as session:
            await session.execute(
                sqlite_insert(SyncMetaRow)
                .values(id=SYNC_META_ID)
                .on_conflict_do_nothing(index_elements=[SyncMetaRow.id])
            )
        logger.info("EPG store initialized successfully")

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self._engine.dispose()
        logger.info("EPG store connections closed")

    # Events

    async def replace_all_events(self, events: Sequence[EpgEvent]) -> None:
        """
        Replace the whole event table in one transaction.

        Duplicate event ids violate the primary key and roll the
        transaction back, leaving the previous contents in place.
        """
        payload = [_event_to_row(event) for event in events]
        started = perf_counter()

        async with self._session() as session:
            await session.execute(delete(EventRow))
            for start_index in range(0, len(payload), INSERT_CHUNK_SIZE):
                chunk = payload[start_index:start_index + INSERT_CHUNK_SIZE]
                await session.execute(insert(EventRow), chunk)

        logger.info(
            "Replaced events table with %s events in %.2fs",
            len(payload),
            perf_counter() - started,
        )

    async def get_events_by_timerange(
        self,
        start: int,
        stop: int,
        *,
        channel_uuid: str | None = None,
        content_type: int | None = None,
        limit: int | None = None,
    ) -> list[EpgEvent]:
        """
        Return events overlapping [start, stop), ordered by start time.

        Args:
            start: Window start (Unix seconds)
            stop: Window end (Unix seconds, exclusive)
            channel_uuid: Only events on this channel
            content_type: Only events with this content type code
            limit: Maximum number of events after ordering

        Returns:
            List of events with ``event.start < stop`` and ``event.stop > start``
        """
        stmt = select(EventRow).where(EventRow.start < stop, EventRow.stop > start)
        if channel_uuid:
            stmt = stmt.where(EventRow.channel_uuid == channel_uuid)
        if content_type is not None:
            stmt = stmt.where(EventRow.content_type == content_type)
        stmt = stmt.order_by(EventRow.start.asc())
        if limit:
            stmt = stmt.limit(limit)

        async with self._session(begin=False) as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        logger.debug("Timerange %s-%s matched %s events", start, stop, len(rows))
        return [_row_to_event(row) for row in rows]

    async def get_event_by_id(self, event_id: int) -> EpgEvent | None:
        async with self._session(begin=False) as session:
            row = await session.get(EventRow, event_id)
            return _row_to_event(row) if row is not None else None

    async def get_events_by_ids(self, event_ids: Sequence[int]) -> list[EpgEvent]:
        """Batch lookup; the order of the returned events is unspecified."""
        if not event_ids:
            return []

        async with self._session(begin=False) as session:
            result = await session.execute(
                select(EventRow).where(EventRow.event_id.in_(list(event_ids)))
            )
            return [_row_to_event(row) for row in result.scalars().all()]

    async def get_all_events_for_indexing(self) -> list[IndexableEvent]:
        async with self._session(begin=False) as session:
            result = await session.execute(
                select(
                    EventRow.event_id,
                    EventRow.title,
                    EventRow.subtitle,
                    EventRow.summary,
                    EventRow.description,
                )
            )
            return [
                IndexableEvent(
                    event_id=event_id,
                    title=title or "",
                    subtitle=subtitle or "",
                    summary=summary or "",
                    description=description or "",
                )
                for event_id, title, subtitle, summary, description in result.all()
            ]

    async def get_event_count(self) -> int:
        async with self._session(begin=False) as session:
            result = await session.execute(select(func.count()).select_from(EventRow))
            return result.scalar_one()

    # Channels

    async def replace_all_channels(self, channels: Sequence[Channel | CachedChannel]) -> None:
        """Replace the whole channel table in one transaction."""
        payload = [
            {
                "uuid": channel.uuid,
                "enabled": channel.enabled is not False,
                "name": channel.name,
                "number": channel.number,
                "icon": channel.icon,
                "icon_public_url": channel.icon_public_url,
            }
            for channel in channels
        ]

        async with self._session() as session:
            await session.execute(delete(ChannelRow))
            for start_index in range(0, len(payload), INSERT_CHUNK_SIZE):
                chunk = payload[start_index:start_index + INSERT_CHUNK_SIZE]
                await session.execute(insert(ChannelRow), chunk)

        logger.info("Replaced channels table with %s channels", len(payload))

    async def get_all_channels(self) -> list[CachedChannel]:
        """All channels ordered by number (unnumbered last), then name."""
        stmt = select(ChannelRow).order_by(
            ChannelRow.number.is_(None),
            ChannelRow.number.asc(),
            ChannelRow.name.asc(),
        )
        async with self._session(begin=False) as session:
            result = await session.execute(stmt)
            return [_row_to_channel(row) for row in result.scalars().all()]

    async def get_channel_by_uuid_or_number(self, identifier: str) -> CachedChannel | None:
        """
        Look a channel up by display number or UUID.

        The identifier is a number only when it is exactly the rendering of
        an integer ("1" but not "01" or "1.0"); anything else is a UUID.
        """
        number = _parse_channel_number(identifier)
        if number is not None:
            stmt = select(ChannelRow).where(ChannelRow.number == number).limit(1)
        else:
            stmt = select(ChannelRow).where(ChannelRow.uuid == identifier)

        async with self._session(begin=False) as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            return _row_to_channel(row) if row is not None else None

    async def get_channel_count(self) -> int:
        async with self._session(begin=False) as session:
            result = await session.execute(select(func.count()).select_from(ChannelRow))
            return result.scalar_one()

    # Sync metadata

    async def get_sync_meta(self) -> SyncMeta:
        async with self._session(begin=False) as session:
            row = await session.get(SyncMetaRow, SYNC_META_ID)
            if row is None:
                raise RuntimeError("Sync metadata missing. Call init() before using the store.")
            return SyncMeta(
                last_refresh_start=row.last_refresh_start,
                last_refresh_end=row.last_refresh_end,
                last_refresh_duration=row.last_refresh_duration,
                event_count=row.event_count,
                channel_count=row.channel_count,
                status=row.status,
            )

    async def update_sync_status(self, status: RefreshStatus) -> None:
        """Set the refresh status; entering ``refreshing`` records the start time."""
        values: dict[str, object] = {"status": status}
        if status == "refreshing":
            values["last_refresh_start"] = now_unix()

        async with self._session() as session:
            await session.execute(
                update(SyncMetaRow).where(SyncMetaRow.id == SYNC_META_ID).values(**values)
            )
        logger.debug("Sync status set to %s", status)

    async def update_sync_complete(self, event_count: int, channel_count: int) -> None:
        """Mark a refresh as finished and record its duration and counts."""
        now = now_unix()
        async with self._session() as session:
            row = await session.get(SyncMetaRow, SYNC_META_ID)
            if row is None:
                raise RuntimeError("Sync metadata missing. Call init() before using the store.")
            row.status = "idle"
            row.last_refresh_end = now
            row.last_refresh_duration = now - row.last_refresh_start
            row.event_count = event_count
            row.channel_count = channel_count


def _parse_channel_number(identifier: str) -> int | None:
    try:
        number = int(identifier)
    except ValueError:
        return None
    if str(number) != identifier:
        return None
    # Out of SQLite's integer range cannot match any stored number
    if not SQLITE_MIN_INTEGER <= number <= SQLITE_MAX_INTEGER:
        return None
    return number


def _event_to_row(event: EpgEvent) -> dict[str, object]:
    return {
        "event_id": event.event_id,
        "channel_uuid": event.channel_uuid,
        "channel_name": event.channel_name,
        "channel_number": event.channel_number,
        "channel_icon": event.channel_icon,
        "start": event.start,
        "stop": event.stop,
        "duration": event.duration,
        "title": event.title,
        "subtitle": event.subtitle,
        "summary": event.summary,
        "description": event.description,
        "genre": json.dumps(event.genre) if event.genre else None,
        "content_type": event.content_type,
        "series_link": event.series_link,
        "episode_number": event.episode_number,
        "season_number": event.season_number,
        "part_number": event.part_number,
        "part_count": event.part_count,
        "episode_uri": event.episode_uri,
        "image": event.image,
        "next_event_id": event.next_event_id,
        "age_rating": event.age_rating,
        "star_rating": event.star_rating,
        # Unknown flags are persisted as false
        "hd": bool(event.hd),
        "widescreen": bool(event.widescreen),
        "audio_desc": bool(event.audio_desc),
        "subtitled": bool(event.subtitled),
    }


def _row_to_event(row: EventRow) -> EpgEvent:
    return EpgEvent(
        event_id=row.event_id,
        channel_uuid=row.channel_uuid,
        channel_name=row.channel_name,
        channel_number=row.channel_number,
        channel_icon=row.channel_icon,
        start=row.start,
        stop=row.stop,
        duration=row.duration,
        title=row.title,
        subtitle=row.subtitle,
        summary=row.summary,
        description=row.description,
        genre=json.loads(row.genre) if row.genre else None,
        content_type=row.content_type,
        series_link=row.series_link,
        episode_number=row.episode_number,
        season_number=row.season_number,
        part_number=row.part_number,
        part_count=row.part_count,
        episode_uri=row.episode_uri,
        image=row.image,
        next_event_id=row.next_event_id,
        age_rating=row.age_rating,
        star_rating=row.star_rating,
        hd=bool(row.hd),
        widescreen=bool(row.widescreen),
        audio_desc=bool(row.audio_desc),
        subtitled=bool(row.subtitled),
    )


def _row_to_channel(row: ChannelRow) -> CachedChannel:
    return CachedChannel(
        uuid=row.uuid,
        enabled=bool(row.enabled),
        name=row.name,
        number=row.number,
        icon=row.icon,
        icon_public_url=row.icon_public_url,
    )
