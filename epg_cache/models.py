"""
SQLAlchemy ORM Models for the EPG cache

This module defines the database tables for cached events, channels and the
singleton sync metadata row.
"""
from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class EventRow(Base):
    """De-normalized EPG event as pulled from upstream"""
    __tablename__ = "events"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    channel_uuid: Mapped[str] = mapped_column(String, nullable=False)
    channel_name: Mapped[str] = mapped_column(String, nullable=False)
    channel_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel_icon: Mapped[str | None] = mapped_column(String, nullable=True)
    start: Mapped[int] = mapped_column(Integer, nullable=False)
    stop: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    genre: Mapped[str | None] = mapped_column(String, nullable=True)  # JSON array
    content_type: Mapped[int | None] = mapped_column(Integer, nullable=True)
    series_link: Mapped[str | None] = mapped_column(String, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    part_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    part_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_uri: Mapped[str | None] = mapped_column(String, nullable=True)
    image: Mapped[str | None] = mapped_column(String, nullable=True)
    next_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    age_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    star_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    widescreen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    audio_desc: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subtitled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_events_timerange", "start", "stop"),
        Index("idx_events_channel_timerange", "channel_uuid", "start", "stop"),
        Index("idx_events_content_type", "content_type"),
    )

    def __repr__(self) -> str:
        return f"<EventRow(event_id={self.event_id}, title={self.title}, channel={self.channel_uuid})>"


class ChannelRow(Base):
    """Cached channel projection"""
    __tablename__ = "channels"

    uuid: Mapped[str] = mapped_column(String, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    icon_public_url: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_channels_number", "number"),
    )

    def __repr__(self) -> str:
        return f"<ChannelRow(uuid={self.uuid}, name={self.name}, number={self.number})>"


class SyncMetaRow(Base):
    """Singleton row describing cache freshness"""
    __tablename__ = "sync_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_refresh_start: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_refresh_end: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_refresh_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    channel_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[str] = mapped_column(String, nullable=False, default="idle", server_default="idle")

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_sync_meta_singleton"),
    )
