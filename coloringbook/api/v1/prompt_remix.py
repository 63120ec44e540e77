"""Prompt remix API: create a remix job, fetch it, resume it."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from coloringbook.api.deps import Services, get_services
from coloringbook.auth.supabase_auth import optional_user_id
from coloringbook.errors import NotFoundError, PersistenceError, ValidationError
from coloringbook.jobs.dispatcher import PROMPT_REMIX_TASK
from coloringbook.jobs.models import PromptRemixJob, SlotStatus, coerce_provider
from coloringbook.jobs.prompts import VARIANT_THEMES, prompts_from_themes
from coloringbook.observability import capture_exception, start_span

logger = logging.getLogger(__name__)

router = APIRouter()


class PromptRemixRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    prompts: Optional[List[str]] = None
    remix_prompt: Optional[str] = Field(default=None, alias="remixPrompt")
    theme_ids: Optional[List[str]] = Field(default=None, alias="themeIds")
    image_id: Optional[str] = Field(default=None, alias="imageId")
    provider: Optional[str] = None


def _job_response(job: PromptRemixJob, **extra) -> dict:
    return {"success": True, "job": job.model_dump(mode="json"), **extra}


@router.post("/prompt-remix")
async def create_prompt_remix(
    request: PromptRemixRequest,
    user_id: Optional[str] = Depends(optional_user_id),
    services: Services = Depends(get_services),
):
    """Create a remix job and process it in the background.

    Batch callers (prompts[] or themeIds[]) get the job back right away and
    poll GET /prompt-remix/{jobId}. Legacy callers that send a single
    remixPrompt wait for the result and get {success, coloringPageUrl}.
    """
    provider = coerce_provider(request.provider) if request.provider else None
    legacy = False
    if request.prompts is not None:
        prompts = request.prompts
    elif request.theme_ids:
        prompts = prompts_from_themes(request.theme_ids)
    elif request.remix_prompt:
        prompts = [request.remix_prompt]
        legacy = True
    else:
        prompts = []

    runner = services.remix_runner
    with start_span(
        "http.server",
        "POST /api/v1/prompt-remix",
        hasImageUrl=bool(request.image_url),
        hasRemixPrompt=bool(request.remix_prompt),
        hasPrompts=request.prompts is not None,
        imageProvider=provider.value if provider else "default",
        promptCount=len(prompts),
    ):
        try:
            job = await runner.create(
                request.image_url,
                prompts,
                image_id=request.image_id,
                provider=provider,
                user_id=user_id,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception as exc:
            logger.error("Failed to create prompt remix job: %s", exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Failed to create prompt remix job")

        if legacy:
            return await _process_single(services, job)

    try:
        await services.dispatcher.submit(PROMPT_REMIX_TASK, job.id)
    except Exception as exc:
        logger.error("Failed to schedule prompt remix job %s: %s", job.id, exc)
        capture_exception(exc)

    return _job_response(job)


async def _process_single(services: Services, job: PromptRemixJob) -> dict:
    try:
        job = await services.remix_runner.process(job.id)
    except PersistenceError as exc:
        if exc.job is None:
            logger.error("Prompt remix job %s failed: %s", job.id, exc)
            raise HTTPException(status_code=500, detail="Failed to generate prompt remix")
        job = exc.job
    except Exception as exc:
        logger.error("Prompt remix job %s failed: %s", job.id, exc)
        capture_exception(exc)
        raise HTTPException(status_code=500, detail="Failed to generate prompt remix")

    slot = job.results[0]
    if slot.status != SlotStatus.SUCCEEDED:
        raise HTTPException(status_code=500, detail=slot.error or "Failed to generate prompt remix")
    return {"success": True, "coloringPageUrl": slot.url, "jobId": job.id}


@router.get("/prompt-remix/themes")
async def list_themes():
    """Curated scene themes usable as themeIds."""
    return {"themes": [theme.to_dict() for theme in VARIANT_THEMES]}


@router.get("/prompt-remix/{job_id}")
async def get_prompt_remix_job(
    job_id: str,
    user_id: Optional[str] = Depends(optional_user_id),
    services: Services = Depends(get_services),
):
    with start_span("http.server", "GET /api/v1/prompt-remix/{jobId}", jobId=job_id):
        try:
            job = await services.remix_runner.get(job_id, owner_id=user_id)
        except Exception as exc:
            logger.error("Failed to fetch prompt remix job %s: %s", job_id, exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Unable to fetch prompt remix job")

    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.post("/prompt-remix/{job_id}/resume")
async def resume_prompt_remix_job(
    job_id: str,
    user_id: Optional[str] = Depends(optional_user_id),
    services: Services = Depends(get_services),
):
    """Re-run a job in the request, retrying only slots that did not succeed."""
    runner = services.remix_runner
    with start_span("http.server", "POST /api/v1/prompt-remix/{jobId}/resume", jobId=job_id):
        try:
            if await runner.get(job_id, owner_id=user_id) is None:
                raise NotFoundError(job_id)
            job = await runner.process(job_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Job not found")
        except PersistenceError as exc:
            if exc.job is None:
                logger.error("Failed to resume prompt remix job %s: %s", job_id, exc)
                raise HTTPException(status_code=500, detail="Unable to resume prompt remix job")
            return _job_response(exc.job, persisted=False)
        except Exception as exc:
            logger.error("Failed to resume prompt remix job %s: %s", job_id, exc)
            capture_exception(exc)
            raise HTTPException(status_code=500, detail="Unable to resume prompt remix job")

    return _job_response(job)
