"""Tests for the SQLite-backed EPG store."""
import asyncio

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from epg_cache.services.store_service import EpgStore


def run_with_store(scenario, database_path=":memory:"):
    """Run ``scenario(store)`` against a freshly initialized store."""

    async def _run():
        store = EpgStore(database_path)
        await store.init()
        try:
            return await scenario(store)
        finally:
            await store.close()

    return asyncio.run(_run())


# =============================================================================
# EVENTS
# =============================================================================


class TestEvents:
    """Event replace and lookup."""

    def test_timerange_returns_overlapping_events_in_start_order(self, sample_events, t0):
        async def scenario(store):
            await store.replace_all_events(list(reversed(sample_events)))
            return await store.get_events_by_timerange(t0 - 1000, t0 + 4000)

        events = run_with_store(scenario)
        assert [event.event_id for event in events] == [1, 2]

    def test_timerange_boundaries_are_exclusive(self, make_event, t0):
        async def scenario(store):
            await store.replace_all_events([make_event(1, start=t0, stop=t0 + 100)])
            ends_at_start = await store.get_events_by_timerange(t0 + 100, t0 + 200)
            starts_at_stop = await store.get_events_by_timerange(t0 - 100, t0)
            overlapping = await store.get_events_by_timerange(t0 + 99, t0 + 200)
            return ends_at_start, starts_at_stop, overlapping

        ends_at_start, starts_at_stop, overlapping = run_with_store(scenario)
        assert ends_at_start == []
        assert starts_at_stop == []
        assert [event.event_id for event in overlapping] == [1]

    def test_timerange_filters_and_limit(self, sample_events, t0):
        async def scenario(store):
            await store.replace_all_events(sample_events)
            by_channel = await store.get_events_by_timerange(t0, t0 + 10000, channel_uuid="uuid-2")
            by_type = await store.get_events_by_timerange(t0, t0 + 10000, content_type=32)
            limited = await store.get_events_by_timerange(t0, t0 + 10000, limit=1)
            return by_channel, by_type, limited

        by_channel, by_type, limited = run_with_store(scenario)
        assert [event.event_id for event in by_channel] == [2, 3]
        assert [event.event_id for event in by_type] == [2]
        assert [event.event_id for event in limited] == [1]

    def test_replace_drops_events_missing_from_new_set(self, sample_events, make_event):
        async def scenario(store):
            await store.replace_all_events(sample_events)
            await store.replace_all_events([make_event(99)])
            return await store.get_event_count(), await store.get_event_by_id(1)

        count, old_event = run_with_store(scenario)
        assert count == 1
        assert old_event is None

    def test_replace_with_duplicate_ids_keeps_previous_contents(self, sample_events, make_event):
        async def scenario(store):
            await store.replace_all_events(sample_events)
            with pytest.raises(IntegrityError):
                await store.replace_all_events([make_event(7), make_event(7)])
            return await store.get_event_count()

        assert run_with_store(scenario) == len(sample_events)

    def test_event_fields_round_trip(self, make_event):
        original = make_event(
            5,
            genre=[16, 17],
            content_type=16,
            subtitle="Folge 1",
            episode_number=3,
            season_number=2,
            hd=True,
        )

        async def scenario(store):
            await store.replace_all_events([original])
            return await store.get_event_by_id(5)

        stored = run_with_store(scenario)
        assert stored.genre == [16, 17]
        assert stored.subtitle == "Folge 1"
        assert stored.episode_number == 3
        assert stored.season_number == 2
        assert stored.hd is True

    def test_unknown_flags_are_stored_as_false(self, make_event):
        async def scenario(store):
            await store.replace_all_events([make_event(1)])
            return await store.get_event_by_id(1)

        stored = run_with_store(scenario)
        assert stored.hd is False
        assert stored.widescreen is False
        assert stored.audio_desc is False
        assert stored.subtitled is False
        assert stored.genre is None

    def test_get_events_by_ids(self, sample_events):
        async def scenario(store):
            await store.replace_all_events(sample_events)
            found = await store.get_events_by_ids([3, 1, 404])
            empty = await store.get_events_by_ids([])
            return found, empty

        found, empty = run_with_store(scenario)
        assert sorted(event.event_id for event in found) == [1, 3]
        assert empty == []

    def test_indexing_projection_uses_empty_strings(self, make_event):
        async def scenario(store):
            await store.replace_all_events([make_event(1, title="Tatort")])
            return await store.get_all_events_for_indexing()

        [projection] = run_with_store(scenario)
        assert projection.event_id == 1
        assert projection.title == "Tatort"
        assert projection.subtitle == ""
        assert projection.description == ""

    def test_file_database_persists_between_stores(self, tmp_path, sample_events):
        database_path = str(tmp_path / "nested" / "epg-cache.db")

        async def write(store):
            await store.replace_all_events(sample_events)

        async def read(store):
            return await store.get_event_count()

        run_with_store(write, database_path)
        assert run_with_store(read, database_path) == len(sample_events)

    def test_reads_during_replace_see_old_or_new_set(self, make_event):
        old_events = [make_event(i) for i in range(1, 1501)]
        new_events = [make_event(i) for i in range(10_001, 12_501)]

        async def scenario(store):
            await store.replace_all_events(old_events)
            results = await asyncio.gather(
                store.replace_all_events(new_events),
                *(store.get_event_count() for _ in range(50)),
            )
            return results[1:], await store.get_event_count()

        counts, final = run_with_store(scenario)
        assert set(counts) <= {1500, 2500}
        assert final == 2500


# =============================================================================
# CHANNELS
# =============================================================================


class TestChannels:
    """Channel replace, ordering and lookup."""

    def test_channels_ordered_by_number_with_unnumbered_last(self, make_channel):
        channels = [
            make_channel("uuid-c", "Zeta", None),
            make_channel("uuid-b", "Bravo", 2),
            make_channel("uuid-a", "Alpha", None),
            make_channel("uuid-d", "Delta", 1),
        ]

        async def scenario(store):
            await store.replace_all_channels(channels)
            return await store.get_all_channels()

        ordered = run_with_store(scenario)
        assert [channel.name for channel in ordered] == ["Delta", "Bravo", "Alpha", "Zeta"]

    def test_missing_enabled_flag_defaults_to_true(self, make_channel):
        channels = [
            make_channel("uuid-1", "One", 1),
            make_channel("uuid-2", "Two", 2, enabled=False),
        ]

        async def scenario(store):
            await store.replace_all_channels(channels)
            return await store.get_all_channels()

        one, two = run_with_store(scenario)
        assert one.enabled is True
        assert two.enabled is False

    def test_lookup_by_number_or_uuid(self, sample_channels):
        async def scenario(store):
            await store.replace_all_channels(sample_channels)
            return (
                await store.get_channel_by_uuid_or_number("2"),
                await store.get_channel_by_uuid_or_number("uuid-1"),
                await store.get_channel_by_uuid_or_number("02"),
                await store.get_channel_by_uuid_or_number("missing"),
            )

        by_number, by_uuid, padded, missing = run_with_store(scenario)
        assert by_number.uuid == "uuid-2"
        assert by_uuid.name == "Das Erste HD"
        assert by_uuid.icon_public_url == "imagecache/1"
        assert padded is None
        assert missing is None

    def test_replace_channels_is_wholesale(self, sample_channels, make_channel):
        async def scenario(store):
            await store.replace_all_channels(sample_channels)
            await store.replace_all_channels([make_channel("uuid-9", "Neu", 9)])
            return await store.get_channel_count()

        assert run_with_store(scenario) == 1

    def test_lookup_by_number_beyond_integer_range(self, sample_channels):
        async def scenario(store):
            await store.replace_all_channels(sample_channels)
            return await store.get_channel_by_uuid_or_number("99999999999999999999999")

        assert run_with_store(scenario) is None


# =============================================================================
# SYNC METADATA
# =============================================================================


class TestSyncMeta:
    """Singleton sync metadata row."""

    def test_fresh_store_reports_never_refreshed(self):
        async def scenario(store):
            return await store.get_sync_meta()

        meta = run_with_store(scenario)
        assert meta.status == "idle"
        assert meta.last_refresh_end == 0
        assert meta.event_count == 0

    def test_init_is_idempotent(self):
        async def scenario(store):
            await store.update_sync_complete(3, 2)
            await store.init()
            return await store.get_sync_meta()

        meta = run_with_store(scenario)
        assert meta.event_count == 3
        assert meta.channel_count == 2

    def test_refresh_lifecycle_records_duration(self, monkeypatch):
        clock = iter([1000, 1042])
        monkeypatch.setattr("epg_cache.services.store_service.now_unix", lambda: next(clock))

        async def scenario(store):
            await store.update_sync_status("refreshing")
            refreshing = await store.get_sync_meta()
            await store.update_sync_complete(10, 4)
            return refreshing, await store.get_sync_meta()

        refreshing, done = run_with_store(scenario)
        assert refreshing.status == "refreshing"
        assert refreshing.last_refresh_start == 1000
        assert done.status == "idle"
        assert done.last_refresh_end == 1042
        assert done.last_refresh_duration == 42
        assert done.event_count == 10
        assert done.channel_count == 4

    def test_status_change_keeps_counts(self):
        async def scenario(store):
            await store.update_sync_complete(5, 1)
            await store.update_sync_status("error")
            return await store.get_sync_meta()

        meta = run_with_store(scenario)
        assert meta.status == "error"
        assert meta.event_count == 5

    def test_fresh_file_store_has_sync_row(self, tmp_path):
        async def scenario(store):
            await store.update_sync_complete(4, 2)
            return await store.get_sync_meta()

        meta = run_with_store(scenario, str(tmp_path / "epg-cache.db"))
        assert meta.status == "idle"
        assert meta.event_count == 4
        assert meta.channel_count == 2

    def test_init_restores_missing_sync_row(self, tmp_path):
        database_path = str(tmp_path / "epg-cache.db")

        async def drop_row(store):
            async with store._engine.begin() as conn:
                await conn.execute(text("DELETE FROM sync_meta"))

        async def complete_refresh(store):
            await store.update_sync_complete(7, 3)
            return await store.get_sync_meta()

        run_with_store(drop_row, database_path)
        meta = run_with_store(complete_refresh, database_path)
        assert meta.status == "idle"
        assert meta.last_refresh_start == 0
        assert meta.event_count == 7
