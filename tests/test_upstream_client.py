"""Tests for the TVHeadend client and the paginated loaders."""
import asyncio
import base64

import httpx
import pytest

from epg_cache.config import EpgCacheSettings
from epg_cache.errors import UpstreamAuthenticationError, UpstreamNetworkError
from epg_cache.services.upstream_client import TVHeadendClient, fetch_all_channels, fetch_all_events


def event_entry(event_id: int, **extra) -> dict:
    entry = {
        "eventId": event_id,
        "channelUuid": "uuid-1",
        "channelName": "Das Erste HD",
        "channelNumber": "1",
        "start": 1_760_000_000 + event_id * 60,
        "stop": 1_760_000_000 + event_id * 60 + 60,
        "title": f"Event {event_id}",
    }
    entry.update(extra)
    return entry


def make_client(handler, **kwargs) -> TVHeadendClient:
    return TVHeadendClient(
        "http://tvh.local:9981",
        "admin",
        "secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("epg_cache.services.upstream_client.asyncio.sleep", fake_sleep)
    return delays


class TestTVHeadendClient:
    """Grid requests, authentication and retries."""

    def test_grid_request_parameters_and_auth(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"entries": [event_entry(1, hd=1)], "total": 1})

        async def scenario():
            client = make_client(handler)
            try:
                return await client.get_epg_events_grid(start=0, limit=500)
            finally:
                await client.close()

        page = asyncio.run(scenario())
        assert page.total == 1
        assert page.entries[0].event_id == 1
        assert page.entries[0].channel_number == 1
        assert page.entries[0].hd is True

        [request] = seen
        assert request.url.path == "/api/epg/events/grid"
        assert request.url.params["start"] == "0"
        assert request.url.params["limit"] == "500"
        assert request.url.params["sort"] == "start"
        assert request.url.params["dir"] == "ASC"
        expected = base64.b64encode(b"admin:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_channel_icon_url_accepts_camel_case(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "entries": [
                        {"uuid": "uuid-1", "name": "Das Erste HD", "number": 1, "iconPublicUrl": "imagecache/1"},
                        {"uuid": "uuid-2", "name": "ZDF HD", "number": 2, "icon_public_url": "imagecache/2"},
                    ],
                    "total": 2,
                },
            )

        async def scenario():
            client = make_client(handler)
            try:
                return await client.get_channel_grid(start=0, limit=500)
            finally:
                await client.close()

        page = asyncio.run(scenario())
        assert [channel.icon_public_url for channel in page.entries] == ["imagecache/1", "imagecache/2"]

    def test_retries_server_errors(self, no_sleep):
        responses = iter([
            httpx.Response(503, text="busy"),
            httpx.Response(200, json={"entries": [], "total": 0}),
        ])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return next(responses)

        async def scenario():
            client = make_client(handler, max_retries=3, backoff_factor=2.0)
            try:
                return await client.get_channel_grid(start=0, limit=500)
            finally:
                await client.close()

        page = asyncio.run(scenario())
        assert page.entries == []
        assert len(calls) == 2
        assert no_sleep == [1.0]

    def test_client_errors_are_not_retried(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, text="")

        async def scenario():
            client = make_client(handler)
            try:
                await client.get_epg_events_grid(start=0, limit=500)
            finally:
                await client.close()

        with pytest.raises(UpstreamAuthenticationError):
            asyncio.run(scenario())
        assert len(calls) == 1
        assert no_sleep == []

    def test_network_errors_exhaust_retries(self, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            client = make_client(handler, max_retries=3, backoff_factor=2.0)
            try:
                await client.get_epg_events_grid(start=0, limit=500)
            finally:
                await client.close()

        with pytest.raises(UpstreamNetworkError):
            asyncio.run(scenario())
        assert no_sleep == [1.0, 2.0]

    def test_from_settings_requires_url(self):
        settings = EpgCacheSettings(tvh_url=None, epg_sqlite_path=":memory:")
        with pytest.raises(RuntimeError, match="TVH_URL"):
            TVHeadendClient.from_settings(settings)


class TestPaginatedLoaders:
    """Page-by-page pulls with de-duplication."""

    def test_fetches_all_pages(self, fake_upstream_factory, make_event):
        upstream = fake_upstream_factory(events=[make_event(i) for i in range(5)])

        events = asyncio.run(fetch_all_events(upstream, page_size=2))
        assert [event.event_id for event in events] == [0, 1, 2, 3, 4]
        assert upstream.event_calls == 3

    def test_stops_when_total_reached(self, fake_upstream_factory, make_event):
        upstream = fake_upstream_factory(events=[make_event(i) for i in range(4)])

        events = asyncio.run(fetch_all_events(upstream, page_size=2))
        assert len(events) == 4
        assert upstream.event_calls == 2

    def test_stops_on_short_page(self, fake_upstream_factory, make_channel):
        upstream = fake_upstream_factory(
            channels=[make_channel(f"uuid-{i}", f"Channel {i}", i) for i in range(3)],
            total_override=100,
        )

        channels = asyncio.run(fetch_all_channels(upstream, page_size=2))
        assert len(channels) == 3
        assert upstream.channel_calls == 2

    def test_duplicates_across_pages_are_merged(self, fake_upstream_factory, make_event):
        upstream = fake_upstream_factory(
            events=[
                make_event(1, title="first"),
                make_event(2),
                make_event(1, title="second"),
            ]
        )

        events = asyncio.run(fetch_all_events(upstream, page_size=2))
        assert sorted(event.event_id for event in events) == [1, 2]
        assert {event.event_id: event.title for event in events}[1] == "second"
