import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from flashsync.consts import VERSION

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("flashsync.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from flashsync.application.config import resolve_config
    from flashsync.application.factory import build_review_service

    # Startup
    logger.info(f"flashsync server v{VERSION} starting up...")
    config = resolve_config()
    service = build_review_service(config)
    if not await service.initialize():
        logger.warning("Profile could not be loaded at startup; will retry on first request")
    app.state.service = service
    app.state.config = config
    yield
    # Shutdown
    logger.info("flashsync server shutting down...")
    if service.cache.is_dirty:
        await service.force_sync()
    await service.cache.store.close()


app = FastAPI(
    title="flashsync Server",
    description="Progress and sync endpoints for flashsync review clients.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ProgressResponse(BaseModel):
    card_set_id: str
    total_cards: int
    reviewed_cards: int
    progress_percentage: int
    mastered_cards: int
    need_practice_cards: int
    reviewed_today: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CacheStatsResponse(BaseModel):
    read_operations: int
    write_operations: int
    cached_card_sets: int
    has_profile: bool
    last_sync_time: datetime | None
    is_dirty: bool
    queue_size: int
    status: str
    last_error: str | None = None


class SyncResponse(BaseModel):
    success: bool
    queue_size: int
    error: str | None = None


class MigrationResponse(BaseModel):
    success: bool
    skipped: bool
    migrated_card_sets: list[str]
    errors: list[str]
    total_read_operations: int
    total_write_operations: int


async def _service(request: Request):
    service = request.app.state.service
    if not await service.initialize():
        error = service.cache.last_error
        raise HTTPException(
            status_code=503,
            detail=error.message if error else "Profile unavailable",
        )
    return service


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/progress", response_model=dict[str, ProgressResponse])
async def get_all_progress(request: Request):
    """All card set summaries, served from the cache snapshot."""
    service = await _service(request)
    return {
        card_set_id: ProgressResponse(**vars(p))
        for card_set_id, p in service.get_all_progress().items()
    }


@app.get("/progress/{card_set_id}", response_model=ProgressResponse)
async def get_progress(card_set_id: str, request: Request):
    service = await _service(request)
    progress = service.get_card_set_progress(card_set_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No progress for card set '{card_set_id}'")
    return ProgressResponse(**vars(progress))


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(request: Request):
    service = request.app.state.service
    stats = service.get_cache_stats()
    error = service.cache.last_error
    return CacheStatsResponse(**vars(stats), last_error=error.message if error else None)


@app.post("/sync", response_model=SyncResponse)
async def trigger_sync(request: Request):
    """
    Flush queued progress updates now.
    """
    service = await _service(request)
    logger.info("Sync requested via API")
    ok = await service.force_sync()
    error = service.cache.last_error
    return SyncResponse(
        success=ok,
        queue_size=service.get_cache_stats().queue_size,
        error=None if ok or error is None else error.message,
    )


@app.post("/migrate", response_model=MigrationResponse)
async def trigger_migration(request: Request):
    from flashsync.application.migration import MigrationService

    service = request.app.state.service
    config = request.app.state.config
    try:
        result = await MigrationService(service.cache.store).migrate(config.account_id)
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
    if result.success and not result.skipped and not service.cache.is_dirty:
        # Reload the consolidated profile on the next request.
        service.cache.clear()
    return MigrationResponse(**vars(result))
