"""
Services package for EPG Cache

This package contains all business logic and service layer components.
"""
from epg_cache.services.picon_service import PiconIndex, normalize_snp
from epg_cache.services.query_service import EpgQueryService
from epg_cache.services.scheduler_service import RefreshScheduler
from epg_cache.services.search_service import SearchIndex
from epg_cache.services.store_service import EpgStore
from epg_cache.services.upstream_client import TVHeadendClient, fetch_all_channels, fetch_all_events

__all__ = [
    'EpgStore',
    'SearchIndex',
    'PiconIndex',
    'normalize_snp',
    'RefreshScheduler',
    'EpgQueryService',
    'TVHeadendClient',
    'fetch_all_events',
    'fetch_all_channels',
]
