"""
Shared dataclasses used across the refresh, search and picon pipelines.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class IndexableEvent:
    """Lightweight event projection used to build the search index."""
    event_id: int
    title: str = ""
    subtitle: str = ""
    summary: str = ""
    description: str = ""


@dataclass(slots=True)
class SearchHit:
    """Scored event id returned by the search index."""
    event_id: int
    score: float


@dataclass(slots=True)
class GridPage(Generic[T]):
    """One page of an upstream grid response."""
    entries: list[T] = field(default_factory=list)
    total: int = 0


@dataclass(slots=True, frozen=True)
class PiconResult:
    """Resolved logo file on disk."""
    file_path: str
    content_type: str


__all__ = ["IndexableEvent", "SearchHit", "GridPage", "PiconResult"]
