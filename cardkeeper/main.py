import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardkeeper.api import (
    health_router,
    inventory_router,
    jobs_router,
    sorting_rules_router,
    storage_router,
)
from cardkeeper.config import settings
from cardkeeper.db.database import async_session_factory, init_db
from cardkeeper.db.operations import cancel_stale_jobs
from cardkeeper.models.failure import ApiResponse, KnownError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()

    # A restart interrupts any running re-sort; nothing resumes it
    async with async_session_factory() as session:
        cancelled = await cancel_stale_jobs(session)
        await session.commit()
    if cancelled:
        logger.warning("STALE_JOBS_CANCELLED", extra={"count": cancelled})

    yield


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardkeeper"),
    lifespan=lifespan,
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Render a KnownError as a failure envelope with its status code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unknown_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Anything unclassified becomes a generic 500 envelope."""
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ApiResponse.unknown_failure(detail=type(exc).__name__).model_dump(mode="json"),
    )


app.include_router(health_router)
app.include_router(inventory_router)
app.include_router(jobs_router)
app.include_router(sorting_rules_router)
app.include_router(storage_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
