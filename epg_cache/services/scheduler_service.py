import asyncio
import logging
from datetime import datetime, timedelta, timezone
from time import perf_counter

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from epg_cache.services.search_service import SearchIndex
from epg_cache.services.store_service import EpgStore
from epg_cache.services.upstream_client import UpstreamSource, fetch_all_channels, fetch_all_events
from epg_cache.utils.logging_helpers import (
    log_pull_summary,
    log_refresh_end,
    log_refresh_start,
    log_storage_stats,
)


logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "epg_refresh"


class RefreshScheduler:
    """Periodic single-flight refresh of the cache from upstream"""

    def __init__(
        self,
        client: UpstreamSource,
        store: EpgStore,
        search_index: SearchIndex,
        interval_seconds: int,
        *,
        page_size: int = 500,
    ):
        self.client = client
        self.store = store
        self.search_index = search_index
        self.interval_seconds = interval_seconds
        self.page_size = page_size
        self.scheduler: AsyncIOScheduler | None = None
        self._refresh_lock = asyncio.Lock()
        self._refresh_claimed = False
        self._next_refresh_time: datetime | None = None
        self._background_tasks: set[asyncio.Task] = set()

    async def _refresh_job(self) -> None:
        """Background job that runs the periodic refresh"""
        logger.info("Scheduled EPG refresh triggered")
        await self.refresh(trigger="interval")

    def start(self) -> None:
        """Refresh immediately, then every ``interval_seconds``"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._refresh_job,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=REFRESH_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._update_next_refresh_time()

        self.trigger_refresh(trigger="startup")
        logger.info(
            "Scheduler started (interval: %ss). Next refresh: %s",
            self.interval_seconds,
            self._next_refresh_time.isoformat() if self._next_refresh_time else "unknown",
        )

    def stop(self) -> None:
        """Stop periodic refreshes; a refresh already running is left to finish"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None
        self._next_refresh_time = None

    def trigger_refresh(self, trigger: str = "manual") -> asyncio.Task | None:
        """
        Start a refresh in the background and return its task.

        The refresh is claimed before this returns, so a second call made
        before the task first runs sees ``is_refreshing()`` and gets None.
        """
        if self.is_refreshing():
            logger.warning("EPG refresh already in progress, skipping this request")
            return None

        self._refresh_claimed = True
        task = asyncio.get_running_loop().create_task(self._run_refresh(trigger))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def refresh(self, trigger: str = "manual") -> None:
        """
        Pull everything from upstream and replace the cache.

        Concurrent calls collapse: while a refresh runs, further calls return
        immediately. Failures are logged and leave the previous cache
        contents in place; nothing is raised to the caller.
        """
        if self.is_refreshing():
            logger.warning("EPG refresh already in progress, skipping this request")
            return
        await self._run_refresh(trigger)

    async def _run_refresh(self, trigger: str) -> None:
        try:
            async with self._refresh_lock:
                self._refresh_claimed = False
                await self._pull_and_replace(trigger)
        finally:
            self._refresh_claimed = False
            self._update_next_refresh_time()

    async def _pull_and_replace(self, trigger: str) -> None:
        log_refresh_start(logger, trigger)
        started = perf_counter()
        try:
            await self.store.update_sync_status("refreshing")

            events, channels = await asyncio.gather(
                fetch_all_events(self.client, self.page_size),
                fetch_all_channels(self.client, self.page_size),
            )
            log_pull_summary(logger, len(events), len(channels))

            await self.store.replace_all_events(events)
            await self.store.replace_all_channels(channels)
            await self.search_index.rebuild(self.store)
            await self.store.update_sync_complete(len(events), len(channels))

            log_storage_stats(
                logger,
                len(events),
                len(channels),
                self.search_index.get_document_count(),
            )
            log_refresh_end(logger, perf_counter() - started)
        except Exception as exc:  # Keep serving the last good snapshot
            logger.error("EPG refresh failed: %s", exc, exc_info=True)
            try:
                await self.store.update_sync_status("idle")
            except Exception as reset_exc:
                logger.error(
                    "Failed to reset sync status after refresh failure: %s",
                    reset_exc,
                    exc_info=True,
                )

    def is_refreshing(self) -> bool:
        return self._refresh_claimed or self._refresh_lock.locked()

    def get_next_refresh_time(self) -> datetime | None:
        """Next scheduled refresh, or None while the periodic job is inactive"""
        return self._next_refresh_time

    def _update_next_refresh_time(self) -> None:
        if self.scheduler and self.scheduler.running:
            self._next_refresh_time = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
