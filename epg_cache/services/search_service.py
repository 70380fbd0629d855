"""
Search Index

In-memory fuzzy/prefix full-text index over event title, subtitle, summary and
description. The index is immutable once built: ``rebuild`` constructs a new
snapshot in a worker thread and swaps the active reference, so a concurrent
search always sees one complete snapshot.
"""
from __future__ import annotations

import asyncio
import bisect
import logging
import math
import re
from collections import defaultdict
from collections.abc import Sequence
from time import perf_counter
from typing import TYPE_CHECKING

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from epg_cache.services.fetch_types import IndexableEvent, SearchHit

if TYPE_CHECKING:
    from epg_cache.services.store_service import EpgStore


logger = logging.getLogger(__name__)

FIELD_BOOSTS: dict[str, float] = {
    "title": 4.0,
    "subtitle": 3.0,
    "summary": 2.0,
    "description": 1.0,
}
FUZZY_FRACTION = 0.2
EXACT_WEIGHT = 1.0
PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45

# BM25+ parameters
BM25_K = 1.2
BM25_B = 0.7
BM25_D = 0.5

_TOKEN_RE = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    """Split text into lowercase alphanumeric tokens."""
    if not text:
        return []
    return [token.lower() for token in _TOKEN_RE.findall(text)]


class _IndexSnapshot:
    """Immutable inverted index built from one set of documents."""

    __slots__ = ("doc_ids", "postings", "field_lengths", "avg_field_lengths", "terms")

    def __init__(
        self,
        doc_ids: list[int],
        postings: dict[str, dict[str, dict[int, int]]],
        field_lengths: dict[str, list[int]],
    ) -> None:
        self.doc_ids = doc_ids
        # term -> field -> {document position: term frequency}
        self.postings = postings
        self.field_lengths = field_lengths
        count = len(doc_ids)
        self.avg_field_lengths = {
            name: (sum(lengths) / count if count else 0.0)
            for name, lengths in field_lengths.items()
        }
        self.terms = sorted(postings)

    @classmethod
    def empty(cls) -> _IndexSnapshot:
        return cls([], {}, {name: [] for name in FIELD_BOOSTS})

    @classmethod
    def build(cls, events: Sequence[IndexableEvent]) -> _IndexSnapshot:
        doc_ids: list[int] = []
        postings: dict[str, dict[str, dict[int, int]]] = defaultdict(dict)
        field_lengths: dict[str, list[int]] = {name: [] for name in FIELD_BOOSTS}

        for position, event in enumerate(events):
            doc_ids.append(event.event_id)
            for name in FIELD_BOOSTS:
                tokens = tokenize(getattr(event, name))
                field_lengths[name].append(len(tokens))
                for token in tokens:
                    by_field = postings[token].setdefault(name, {})
                    by_field[position] = by_field.get(position, 0) + 1

        return cls(doc_ids, dict(postings), field_lengths)

    @property
    def document_count(self) -> int:
        return len(self.doc_ids)

    def search(self, query: str, limit: int) -> list[SearchHit]:
        query_terms = list(dict.fromkeys(tokenize(query)))
        if not query_terms or limit <= 0 or not self.doc_ids:
            return []

        scores: dict[int, float] = defaultdict(float)
        for term in query_terms:
            for key, weight in self._expand_term(term).items():
                self._accumulate(key, weight, scores)

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return [
            SearchHit(event_id=self.doc_ids[position], score=score)
            for position, score in ranked[:limit]
        ]

    def _expand_term(self, term: str) -> dict[str, float]:
        """Map a query term to the index terms it matches and their weights."""
        matches: dict[str, float] = {}
        if term in self.postings:
            matches[term] = EXACT_WEIGHT

        start = bisect.bisect_left(self.terms, term)
        for key in self.terms[start:]:
            if not key.startswith(term):
                break
            if key == term:
                continue
            distance = len(key) - len(term)
            matches[key] = PREFIX_WEIGHT * len(term) / (len(term) + 0.3 * distance)

        max_distance = int(len(term) * FUZZY_FRACTION + 0.5)
        if max_distance > 0:
            for key, distance, _ in process.extract(
                term,
                self.terms,
                scorer=Levenshtein.distance,
                score_cutoff=max_distance,
                limit=None,
            ):
                if distance == 0:
                    continue
                weight = FUZZY_WEIGHT * len(term) / (len(term) + distance)
                if weight > matches.get(key, 0.0):
                    matches[key] = weight

        return matches

    def _accumulate(self, key: str, weight: float, scores: dict[int, float]) -> None:
        total_docs = len(self.doc_ids)
        for name, posting in self.postings[key].items():
            boost = FIELD_BOOSTS[name]
            lengths = self.field_lengths[name]
            avg_length = self.avg_field_lengths[name] or 1.0
            doc_frequency = len(posting)
            idf = math.log(1 + (total_docs - doc_frequency + 0.5) / (doc_frequency + 0.5))
            for position, frequency in posting.items():
                norm = lengths[position] / avg_length
                term_score = BM25_D + frequency * (BM25_K + 1) / (
                    frequency + BM25_K * (1 - BM25_B + BM25_B * norm)
                )
                scores[position] += weight * boost * idf * term_score


class SearchIndex:
    """Swap-on-rebuild fuzzy search over cached events."""

    def __init__(self) -> None:
        self._snapshot = _IndexSnapshot.empty()

    async def rebuild(self, store: EpgStore) -> None:
        """
        Replace the index with one built from the store's current events.

        Index construction is offloaded to the default thread pool so the
        event loop keeps serving requests meanwhile.
        """
        started = perf_counter()
        events = await store.get_all_events_for_indexing()
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, _IndexSnapshot.build, events)
        self._snapshot = snapshot
        logger.info(
            "Search index rebuilt: %s documents, %s terms in %.2fs",
            snapshot.document_count,
            len(snapshot.terms),
            perf_counter() - started,
        )

    def search(self, query: str, limit: int = 20) -> list[SearchHit]:
        """
        Search the active snapshot.

        Args:
            query: Free text; every token is matched exactly, by prefix and fuzzily
            limit: Maximum number of hits

        Returns:
            Hits ordered by descending score, empty for blank or unmatched queries
        """
        snapshot = self._snapshot
        return snapshot.search(query or "", limit)

    def get_document_count(self) -> int:
        return self._snapshot.document_count
