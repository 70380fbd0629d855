"""Shared fixtures for the EPG cache tests."""
from pathlib import Path

import pytest

from epg_cache.schemas import Channel, EpgEvent
from epg_cache.services.fetch_types import GridPage


T0 = 1_760_000_000


@pytest.fixture
def t0() -> int:
    """Fixed reference time used by event factories"""
    return T0


@pytest.fixture
def make_event():
    """Factory for events with sensible defaults."""

    def _make_event(event_id: int, **overrides) -> EpgEvent:
        values = {
            "event_id": event_id,
            "channel_uuid": "uuid-1",
            "channel_name": "Das Erste HD",
            "channel_number": 1,
            "start": T0,
            "stop": T0 + 3600,
            "title": f"Event {event_id}",
        }
        values.update(overrides)
        return EpgEvent(**values)

    return _make_event


@pytest.fixture
def make_channel():
    def _make_channel(uuid: str, name: str, number: int | None, **overrides) -> Channel:
        return Channel(uuid=uuid, name=name, number=number, **overrides)

    return _make_channel


@pytest.fixture
def sample_events(make_event):
    """Three events across two channels, one of them with content type 32"""
    return [
        make_event(
            1,
            title="Tatort: Tödliche Stille",
            description="Kommissarin Lindholm ermittelt.",
            content_type=16,
            genre=[16],
        ),
        make_event(
            2,
            channel_uuid="uuid-2",
            channel_name="ZDF HD",
            channel_number=2,
            start=T0 + 1800,
            stop=T0 + 5400,
            title="Tatort Classics",
            subtitle="Reifezeugnis",
            content_type=32,
            genre=[32, 33],
        ),
        make_event(
            3,
            channel_uuid="uuid-2",
            channel_name="ZDF HD",
            channel_number=2,
            start=T0 + 7200,
            stop=T0 + 9000,
            title="heute journal",
            summary="Nachrichten",
        ),
    ]


@pytest.fixture
def sample_channels(make_channel):
    return [
        make_channel("uuid-2", "ZDF HD", 2),
        make_channel("uuid-1", "Das Erste HD", 1, icon_public_url="imagecache/1"),
    ]


class FakeUpstream:
    """In-memory upstream serving fixed event and channel grids."""

    def __init__(self, events=None, channels=None, *, error: Exception | None = None, total_override=None):
        self.events = list(events or [])
        self.channels = list(channels or [])
        self.error = error
        self.total_override = total_override
        self.event_calls = 0
        self.channel_calls = 0

    async def get_epg_events_grid(self, *, start, limit, sort="start", direction="ASC"):
        self.event_calls += 1
        if self.error:
            raise self.error
        return self._page(self.events, start, limit)

    async def get_channel_grid(self, *, start, limit, sort="number", direction="ASC"):
        self.channel_calls += 1
        if self.error:
            raise self.error
        return self._page(self.channels, start, limit)

    def _page(self, entries, start, limit):
        total = self.total_override if self.total_override is not None else len(entries)
        return GridPage(entries=entries[start:start + limit], total=total)


@pytest.fixture
def fake_upstream_factory():
    return FakeUpstream


@pytest.fixture
def picon_source(tmp_path: Path) -> Path:
    """A picons build-source directory with a handful of logos"""
    (tmp_path / "snp.index").write_text(
        "daserstehd=daserste\n"
        "zdfhd=zdf\n"
        "arte=arte\n"
        "broken\n"
        "=nokey\n",
        encoding="utf-8",
    )
    (tmp_path / "srp.index").write_text(
        "1_0_19_283D_3FB_1_C00000_0_0_0=daserste\n"
        "1_0_19_2B66_3F3_1_C00000_0_0_0=zdf\n",
        encoding="utf-8",
    )
    logos = tmp_path / "logos"
    logos.mkdir()
    (logos / "daserste.default.svg").write_text("<svg>default</svg>", encoding="utf-8")
    (logos / "daserste.default.png").write_bytes(b"\x89PNG default")
    (logos / "daserste.dark.png").write_bytes(b"\x89PNG dark")
    (logos / "zdf.default.png").write_bytes(b"\x89PNG zdf")
    return tmp_path
