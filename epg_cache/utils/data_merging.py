"""
Data merging utilities

This module de-duplicates entries collected across upstream grid pages.
"""
import logging
from collections.abc import Callable, Hashable, MutableMapping, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def merge_page(
    collected: MutableMapping[Hashable, T],
    page_entries: Sequence[T],
    key: Callable[[T], Hashable],
) -> int:
    """
    Merge one page of entries into the collected mapping.

    Offset pagination over a grid that changes between requests can return
    the same entry twice; the later occurrence wins.

    Args:
        collected: Entries gathered so far (key -> entry), modified in place
        page_entries: Entries of the page just fetched
        key: Function returning the identity of an entry

    Returns:
        Number of entries that were not seen before
    """
    new_count = 0

    for entry in page_entries:
        entry_key = key(entry)
        if entry_key in collected:
            logger.debug("Duplicate upstream entry %s replaced by later page", entry_key)
        else:
            new_count += 1
        collected[entry_key] = entry

    return new_count
