"""
Dependency Injection Configuration

The application keeps one ``ServiceContext`` on ``app.state``; route handlers
receive its pieces through FastAPI dependencies. Tests build a context with
fakes and hand it to ``create_app`` instead of configuring from the
environment.
"""
from dataclasses import dataclass
import logging
from typing import Annotated

from fastapi import Depends, Request

from epg_cache.services.picon_service import PiconIndex
from epg_cache.services.query_service import EpgQueryService, RefreshControl
from epg_cache.services.search_service import SearchIndex
from epg_cache.services.store_service import EpgStore
from epg_cache.services.upstream_client import TVHeadendClient


logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Every long-lived service the API depends on"""
    store: EpgStore
    search_index: SearchIndex
    scheduler: RefreshControl
    refresh_interval: int
    picon_index: PiconIndex | None = None
    client: TVHeadendClient | None = None
    query_service: EpgQueryService | None = None

    def __post_init__(self) -> None:
        if self.query_service is None:
            self.query_service = EpgQueryService(
                self.store,
                self.search_index,
                self.scheduler,
                self.refresh_interval,
                picon_index=self.picon_index,
            )
        logger.debug(
            "Service context ready (picons %s)",
            "enabled" if self.picon_index else "disabled",
        )


def get_service_context(request: Request) -> ServiceContext:
    """
    Get the service context of the running application.

    Raises:
        RuntimeError: If the application lifespan has not set one up
    """
    context = getattr(request.app.state, "services", None)
    if context is None:
        raise RuntimeError("Service context not initialized")
    return context


def get_query_service(
    context: Annotated[ServiceContext, Depends(get_service_context)]
) -> EpgQueryService:
    return context.query_service


QueryServiceDep = Annotated[EpgQueryService, Depends(get_query_service)]
