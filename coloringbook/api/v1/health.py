"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter, Depends

from coloringbook.api.deps import Services, get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Service health, configured backends and system info."""
    settings = services.settings
    generator = services.remix_runner.generator
    return {
        "status": "healthy",
        "job_store": settings.job_store_backend,
        "file_store": settings.file_store_backend,
        "dispatcher_running": getattr(services.dispatcher, "running", None),
        "image_providers": getattr(generator, "providers", []),
        "default_provider": settings.default_provider,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
