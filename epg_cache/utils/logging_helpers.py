"""
Structured logging helpers for consistent refresh-cycle log lines.
"""
import logging
from datetime import datetime, timezone


def log_refresh_start(logger: logging.Logger, trigger: str) -> None:
    """
    Log the start of a refresh cycle.

    Args:
        logger: Logger instance
        trigger: What started the cycle (e.g. "startup", "interval", "manual")
    """
    logger.info(f"EPG refresh started at {datetime.now(timezone.utc).isoformat()} (trigger: {trigger})")


def log_refresh_end(logger: logging.Logger, duration_seconds: float) -> None:
    """Log a successful refresh cycle."""
    logger.info(f"EPG refresh completed in {duration_seconds:.2f}s")


def log_pull_summary(
    logger: logging.Logger,
    events_count: int,
    channels_count: int
) -> None:
    """
    Log what the upstream pull returned.

    Args:
        logger: Logger instance
        events_count: Number of events pulled
        channels_count: Number of channels pulled
    """
    logger.info(f"Upstream pull summary - Events: {events_count}, Channels: {channels_count}")


def log_storage_stats(
    logger: logging.Logger,
    total_events: int,
    total_channels: int,
    indexed_documents: int
) -> None:
    """
    Log cache contents after a refresh.

    Args:
        logger: Logger instance
        total_events: Events now stored
        total_channels: Channels now stored
        indexed_documents: Documents in the active search index
    """
    logger.info(
        f"Cache now holds {total_events} events, {total_channels} channels "
        f"({indexed_documents} indexed documents)"
    )
