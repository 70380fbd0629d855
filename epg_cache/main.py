from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from epg_cache.config import get_settings, setup_logging
from epg_cache.dependencies import ServiceContext
from epg_cache.errors import EpgCacheError
from epg_cache.routers import main_router
from epg_cache.services.picon_service import PiconIndex
from epg_cache.services.scheduler_service import RefreshScheduler
from epg_cache.services.search_service import SearchIndex
from epg_cache.services.store_service import EpgStore
from epg_cache.services.upstream_client import TVHeadendClient


logger = logging.getLogger(__name__)


async def build_service_context() -> ServiceContext:
    """Wire every service from environment configuration"""
    settings = get_settings()

    logger.info("Initializing database...")
    store = EpgStore(
        settings.epg_sqlite_path,
        journal_mode=settings.sqlite_journal_mode,
        cache_size_kb=settings.sqlite_cache_size_kb,
    )
    await store.init()
    logger.info("Database initialized successfully")

    try:
        client = TVHeadendClient.from_settings(settings)

        # Serve whatever a previous run persisted until the first refresh lands
        search_index = SearchIndex()
        await search_index.rebuild(store)

        picon_index = None
        if settings.picon_build_source_path:
            picon_index = PiconIndex(settings.picon_build_source_path)
            logger.info("Picon index loaded: %s", picon_index.get_stats())
    except Exception:
        await store.close()
        raise

    scheduler = RefreshScheduler(
        client,
        store,
        search_index,
        settings.epg_refresh_interval,
        page_size=settings.upstream_page_size,
    )
    return ServiceContext(
        store=store,
        search_index=search_index,
        scheduler=scheduler,
        refresh_interval=settings.epg_refresh_interval,
        picon_index=picon_index,
        client=client,
    )


async def close_service_context(context: ServiceContext) -> None:
    stop = getattr(context.scheduler, "stop", None)
    if stop is not None:
        try:
            stop()
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    if context.client is not None:
        await context.client.close()
    await context.store.close()


def create_app(context: ServiceContext | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context: Pre-built services. When omitted, services are built from
            the environment at startup and the refresh scheduler is started.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        logger.info("="*60)
        logger.info("Starting EPG Cache...")
        logger.info("="*60)

        owns_context = context is None
        try:
            if owns_context:
                services = await build_service_context()

                logger.info("Starting scheduler...")
                services.scheduler.start()
                logger.info("Scheduler started successfully")
            else:
                services = context
                await services.store.init()
            app.state.services = services

            logger.info("="*60)
            logger.info("EPG Cache started successfully")
            logger.info("="*60)
        except Exception as e:
            logger.error("="*60)
            logger.error(f"Failed to start EPG Cache: {e}", exc_info=True)
            logger.error("="*60)
            raise

        yield

        logger.info("="*60)
        logger.info("Shutting down EPG Cache...")
        logger.info("="*60)

        if owns_context:
            await close_service_context(services)

        logger.info("="*60)
        logger.info("EPG Cache stopped")
        logger.info("="*60)

    app = FastAPI(
        title="EPG Cache",
        version="0.1.0",
        lifespan=lifespan
    )

    app.include_router(main_router)

    @app.exception_handler(EpgCacheError)
    async def epg_cache_exception_handler(request: Request, exc: EpgCacheError):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        else:
            logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with details"""
        logger.error(f"Validation error for {request.method} {request.url.path}")
        logger.error(f"Validation details: {exc.errors()}")

        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "query")
            messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))

        return JSONResponse(
            status_code=400,
            content={"error": "; ".join(messages) or "Invalid request"}
        )

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn"""
    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(
        "epg_cache.main:app",
        host=settings.epg_http_host,
        port=settings.epg_http_port,
        log_level=settings.log_level.lower(),
    )


setup_logging()
app = create_app()


if __name__ == "__main__":
    run()
