"""ColoringBook backend - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coloringbook.api.deps import Services
from coloringbook.api.files import router as files_router
from coloringbook.api.v1.health import router as health_root_router
from coloringbook.api.v1.router import v1_router
from coloringbook.config import Settings, settings as default_settings
from coloringbook.db.job_store import InMemoryJobStore, JobStore, SupabaseJobStore
from coloringbook.db.supabase_client import create_supabase
from coloringbook.generation.client import build_generator
from coloringbook.io.image_fetch import ImageFetcher
from coloringbook.jobs.dispatcher import PHOTOBOOK_TASK, PROMPT_REMIX_TASK
from coloringbook.jobs.in_process_queue import InProcessQueue
from coloringbook.jobs.photobook import PhotobookQueue
from coloringbook.jobs.prompt_remix import PromptRemixRunner
from coloringbook.observability import ensure_initialized
from coloringbook.storage.file_store import FileStore, LocalFileStore, SupabaseFileStore

logger = logging.getLogger(__name__)


def build_services(settings: Settings, http_client: httpx.AsyncClient) -> Services:
    """Wire stores, generator, runners and the dispatcher from settings."""
    supabase = None
    if settings.job_store_backend == "supabase" or settings.file_store_backend == "supabase":
        supabase = create_supabase(settings)

    store: JobStore
    if settings.job_store_backend == "memory":
        store = InMemoryJobStore()
    else:
        store = SupabaseJobStore(supabase)

    file_store: FileStore
    if settings.file_store_backend == "local":
        file_store = LocalFileStore(settings.local_files_dir, settings.public_base_url)
    else:
        file_store = SupabaseFileStore(supabase, settings.storage_bucket)

    fetcher = ImageFetcher(http_client, timeout=settings.image_fetch_timeout_seconds)
    generator = build_generator(settings, file_store, http_client, fetcher)

    remix_runner = PromptRemixRunner(
        store,
        generator,
        max_concurrency=settings.remix_max_concurrency,
        generation_timeout=settings.generation_timeout_seconds,
    )
    photobook_queue = PhotobookQueue(
        store, file_store, fetcher, fetch_timeout=settings.image_fetch_timeout_seconds
    )

    async def drain_photobooks(_job_id: Optional[str]) -> int:
        return await photobook_queue.process_queue()

    dispatcher = InProcessQueue(
        handlers={
            PHOTOBOOK_TASK: drain_photobooks,
            PROMPT_REMIX_TASK: remix_runner.process,
        },
        workers=settings.dispatcher_workers,
    )

    return Services(
        settings=settings,
        store=store,
        file_store=file_store,
        remix_runner=remix_runner,
        photobook_queue=photobook_queue,
        dispatcher=dispatcher,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    settings: Settings = app.state.settings
    ensure_initialized(settings)

    http_client: Optional[httpx.AsyncClient] = None
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        http_client = httpx.AsyncClient()
        services = build_services(settings, http_client)
        app.state.services = services

    logger.info(
        "Starting ColoringBook backend (job store: %s, file store: %s)",
        settings.job_store_backend,
        settings.file_store_backend,
    )

    await services.dispatcher.start()
    logger.info("Job dispatcher started")

    # Jobs queued before a restart are picked up on boot
    await services.dispatcher.submit(PHOTOBOOK_TASK)

    yield

    logger.info("Shutting down ColoringBook backend")
    await services.dispatcher.stop()
    if http_client is not None:
        await http_client.aclose()


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(
        title="ColoringBook Service",
        description="Prompt remix coloring pages and photobook PDF generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    app.include_router(files_router, tags=["files"])
    return app


app = create_app()
