"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from coloringbook.api.v1.health import router as health_router
from coloringbook.api.v1.photobook_jobs import router as photobook_router
from coloringbook.api.v1.prompt_remix import router as prompt_remix_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(prompt_remix_router, tags=["prompt-remix"])
v1_router.include_router(photobook_router, tags=["photobook"])
