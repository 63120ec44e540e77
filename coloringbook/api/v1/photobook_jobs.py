"""Photobook job API: enqueue a PDF build, poll its status."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from coloringbook.api.deps import Services, get_services
from coloringbook.auth.supabase_auth import current_user_id
from coloringbook.errors import ForbiddenError, NotFoundError, ValidationError
from coloringbook.jobs.dispatcher import PHOTOBOOK_TASK
from coloringbook.observability import capture_exception, start_span

logger = logging.getLogger(__name__)

router = APIRouter()


class PhotobookJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    images: List[Dict[str, Any]] = Field(default_factory=list)
    title: str = ""
    user_id: Optional[str] = Field(default=None, alias="userId")
    description: Optional[str] = None


@router.post("/photobook-jobs", status_code=202)
async def create_photobook_job(
    request: PhotobookJobRequest,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    """Queue a photobook build and return immediately with a poll URL."""
    with start_span("http.server", "POST /api/v1/photobook-jobs", **{"photobook.user_id": user_id}):
        try:
            job = await services.photobook_queue.enqueue(
                request.images,
                request.title,
                user_id,
                request.description,
                claimed_user_id=request.user_id,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except ForbiddenError as exc:
            raise HTTPException(status_code=403, detail=str(exc))
        except Exception as exc:
            logger.error("Failed to enqueue photobook job: %s", exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Failed to enqueue photobook job")

    # A job left queued here is picked up by the next queue drain
    try:
        await services.dispatcher.submit(PHOTOBOOK_TASK)
    except Exception as exc:
        logger.error("Failed to schedule photobook processing for %s: %s", job.id, exc)
        capture_exception(exc)

    return {
        "jobId": job.id,
        "status": job.status.value,
        "pollUrl": f"/api/v1/photobook-jobs/{job.id}",
        "totalCount": job.total_count,
    }


@router.get("/photobook-jobs")
async def list_photobook_jobs(
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    with start_span("photobook.list_jobs", "GET /api/v1/photobook-jobs", **{"photobook.user_id": user_id}):
        try:
            jobs = await services.photobook_queue.list_jobs(user_id)
        except Exception as exc:
            logger.error("Failed to list photobook jobs for %s: %s", user_id, exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Failed to list photobook jobs")
    return {"jobs": [job.to_response() for job in jobs], "count": len(jobs)}


@router.get("/photobook-jobs/{job_id}")
async def get_photobook_job(
    job_id: str,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    """Status snapshot scoped to the authenticated owner."""
    with start_span(
        "photobook.job_status",
        "GET /api/v1/photobook-jobs/{id}",
        **{"photobook.job_id": job_id, "photobook.user_id": user_id},
    ):
        try:
            status = await services.photobook_queue.get_status(job_id, user_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Photobook job not found")
        except Exception as exc:
            logger.error("Failed to fetch photobook job %s: %s", job_id, exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Failed to fetch photobook job status")
    return status.to_response()
