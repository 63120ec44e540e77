"""Prompt remix job runner.

A job holds one source image and up to ten scene prompts. Processing turns
every prompt into its own coloring page and records the outcome in a result
slot at the same position as the prompt.

Lifecycle:
    create()   -> job persisted as queued, every slot queued
    process()  -> claims the job (queued/failed -> processing), generates each
                  slot that has not succeeded yet, then marks the job completed
                  (all slots succeeded) or failed (anything else)

process() doubles as "resume": calling it again after a partial failure only
retries the slots that did not succeed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from coloringbook.db.job_store import JobStore
from coloringbook.errors import NotFoundError, PersistenceError, UpstreamGenerationError
from coloringbook.generation.client import ImageGenerator
from coloringbook.jobs.models import (
    JobStatus,
    PromptRemixJob,
    Provider,
    ResultSlot,
    SlotStatus,
    build_result_skeleton,
    parse_remix_request,
    utcnow,
)
from coloringbook.jobs.prompts import build_combined_prompt
from coloringbook.observability import capture_exception, start_span

logger = logging.getLogger(__name__)

JOB_TABLE = "prompt_remix_jobs"
IMAGES_TABLE = "images"
MAX_CONCURRENCY = 5

DEFAULT_ERROR = "Failed to generate prompt remix variant."


@dataclass
class VariantAccumulator:
    """Variant URLs/prompts already saved on the owning image."""
    urls: List[str] = field(default_factory=list)
    prompts: List[str] = field(default_factory=list)


@dataclass
class _Run:
    """Mutable state of one processing pass."""
    job: PromptRemixJob
    results: List[ResultSlot]
    accumulator: Optional[VariantAccumulator]
    errors: Dict[int, str] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def reconcile_slots(prompts: Sequence[str], existing: Sequence[ResultSlot]) -> List[ResultSlot]:
    """One slot per prompt, reusing existing slots whose prompt still matches."""
    slots = []
    for index, prompt in enumerate(prompts):
        if index < len(existing) and existing[index].prompt == prompt:
            slots.append(existing[index])
        else:
            slots.append(ResultSlot(prompt=prompt))
    return slots


def _dump_results(results: Sequence[ResultSlot]) -> List[dict]:
    return [slot.model_dump(mode="json") for slot in results]


def _provider_label(provider: Optional[Provider]) -> str:
    return provider.value if provider else "default"


class PromptRemixRunner:
    """Creates and processes prompt remix jobs against a job store and generator."""

    def __init__(
        self,
        store: JobStore,
        generator: ImageGenerator,
        max_concurrency: int = 1,
        generation_timeout: float = 180.0,
    ):
        if not 1 <= max_concurrency <= MAX_CONCURRENCY:
            raise ValueError(f"max_concurrency must be between 1 and {MAX_CONCURRENCY}")
        self._store = store
        self._generator = generator
        self._max_concurrency = max_concurrency
        self._generation_timeout = generation_timeout

    @property
    def generator(self) -> ImageGenerator:
        return self._generator

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create(
        self,
        image_url: Optional[str],
        prompts: Optional[Sequence[str]],
        image_id: Optional[str] = None,
        provider: Optional[Provider] = None,
        user_id: Optional[str] = None,
    ) -> PromptRemixJob:
        """Validate input and persist a queued job. Raises ValidationError."""
        request = parse_remix_request(
            image_url=image_url,
            prompts=list(prompts or []),
            image_id=image_id,
            provider=provider,
            user_id=user_id,
        )
        job = PromptRemixJob(
            image_id=request.image_id,
            image_url=request.image_url,
            prompts=request.prompts,
            results=build_result_skeleton(request.prompts),
            provider=request.provider,
            user_id=request.user_id,
        )
        job.updated_at = job.created_at

        with start_span(
            "prompt_remix.create",
            "Create prompt remix job",
            **{
                "prompt_remix.job_id": job.id,
                "prompt_remix.prompt_count": len(job.prompts),
                "prompt_remix.provider": _provider_label(job.provider),
            },
        ):
            row = await self._store.insert(JOB_TABLE, job.model_dump(mode="json"))

        logger.info("Created prompt remix job %s with %d prompt(s)", job.id, len(job.prompts))
        return PromptRemixJob.model_validate(row)

    async def get(self, job_id: str, owner_id: Optional[str] = None) -> Optional[PromptRemixJob]:
        """Current snapshot, or None if unknown or owned by someone other than owner_id.

        Jobs created without an owner are visible to every caller.
        """
        job = await self._load(job_id)
        if job is None:
            return None
        if job.user_id and job.user_id != owner_id:
            return None
        return job

    async def _load(self, job_id: str) -> Optional[PromptRemixJob]:
        row = await self._store.get_by_id(JOB_TABLE, job_id)
        return PromptRemixJob.model_validate(row) if row else None

    # ------------------------------------------------------------------
    # Process / resume
    # ------------------------------------------------------------------

    async def process(self, job_id: str) -> PromptRemixJob:
        """Run (or resume) a job and return its final snapshot.

        Jobs already processing or completed are returned untouched. Per-slot
        failures never escape; a failed claim write or final write raises
        PersistenceError (the latter carries the in-memory final job).
        """
        with start_span(
            "prompt_remix.process",
            "Process prompt remix job",
            **{"prompt_remix.job_id": job_id},
        ) as span:
            job = await self._load(job_id)
            if job is None:
                raise NotFoundError(f"Prompt remix job {job_id} not found")

            if job.status in (JobStatus.PROCESSING, JobStatus.COMPLETED):
                logger.info("Prompt remix job %s is already %s", job.id, job.status.value)
                return job

            results = reconcile_slots(job.prompts, job.results)
            now = utcnow()
            claimed = await self._store.claim(
                JOB_TABLE,
                job.id,
                [job.status.value],
                {
                    "status": JobStatus.PROCESSING.value,
                    "started_at": (job.started_at or now).isoformat(),
                    "error_message": None,
                    "results": _dump_results(results),
                    "updated_at": now.isoformat(),
                },
            )
            if claimed is None:
                logger.info("Prompt remix job %s was claimed by another worker", job.id)
                return await self._load(job.id) or job

            job = PromptRemixJob.model_validate(claimed)
            pending = [index for index, slot in enumerate(results) if slot.status != SlotStatus.SUCCEEDED]
            span.set_data("prompt_remix.prompt_count", len(results))
            span.set_data("prompt_remix.pending_count", len(pending))
            span.set_data("prompt_remix.provider", _provider_label(job.provider))

            run = _Run(job=job, results=results, accumulator=await self._load_variants(job))

            if self._max_concurrency == 1:
                for index in pending:
                    await self._run_slot(run, index)
            else:
                semaphore = asyncio.Semaphore(self._max_concurrency)

                async def bounded(index: int) -> None:
                    async with semaphore:
                        await self._run_slot(run, index)

                await asyncio.gather(*(bounded(index) for index in pending))

            return await self._finalize(run)

    async def _run_slot(self, run: _Run, index: int) -> None:
        prompt = run.results[index].prompt
        run.results[index] = run.results[index].model_copy(
            update={
                "status": SlotStatus.PROCESSING,
                "error": None,
                "started_at": utcnow(),
                "completed_at": None,
            }
        )
        await self._save_progress(run)

        try:
            with start_span(
                "prompt_remix.generate",
                "Generate prompt remix variant",
                **{
                    "prompt_remix.job_id": run.job.id,
                    "prompt_remix.slot": index,
                    "prompt_remix.provider": _provider_label(run.job.provider),
                },
            ):
                url = await asyncio.wait_for(
                    self._generator.generate(
                        run.job.image_url,
                        build_combined_prompt(prompt),
                        provider=run.job.provider,
                    ),
                    timeout=self._generation_timeout,
                )
        except asyncio.TimeoutError:
            error = UpstreamGenerationError(
                f"Image generation timed out after {self._generation_timeout:g} seconds"
            )
            await self._fail_slot(run, index, error)
            return
        except Exception as exc:
            await self._fail_slot(run, index, exc)
            return

        run.results[index] = run.results[index].model_copy(
            update={"status": SlotStatus.SUCCEEDED, "url": url, "completed_at": utcnow()}
        )
        await self._save_progress(run)
        await self._persist_variant(run, prompt, url)

    async def _fail_slot(self, run: _Run, index: int, error: Exception) -> None:
        prompt = run.results[index].prompt
        message = str(error) or DEFAULT_ERROR
        run.results[index] = run.results[index].model_copy(
            update={"status": SlotStatus.FAILED, "error": message, "completed_at": utcnow()}
        )
        run.errors[index] = f"{prompt}: {message}"
        logger.error("Prompt remix generation failed for job %s slot %d: %s", run.job.id, index, message)
        capture_exception(error)
        await self._save_progress(run)

    async def _save_progress(self, run: _Run) -> None:
        """Persist the slot list. Best-effort: failures are logged and reported."""
        async with run.lock:
            try:
                await self._store.update(
                    JOB_TABLE,
                    run.job.id,
                    {"results": _dump_results(run.results), "updated_at": utcnow().isoformat()},
                )
            except PersistenceError as exc:
                logger.warning("Failed to update progress for prompt remix job %s: %s", run.job.id, exc)
                capture_exception(exc)

    async def _load_variants(self, job: PromptRemixJob) -> Optional[VariantAccumulator]:
        if not job.image_id:
            return None
        try:
            image = await self._store.get_by_id(IMAGES_TABLE, job.image_id)
        except PersistenceError as exc:
            logger.error("Failed to load existing variants for job %s: %s", job.id, exc)
            capture_exception(exc)
            return None
        if image is None:
            return None
        return VariantAccumulator(
            urls=list(image.get("variant_urls") or []),
            prompts=list(image.get("variant_prompts") or []),
        )

    async def _persist_variant(self, run: _Run, prompt: str, url: str) -> None:
        """Append a succeeded output to the owning image's variant list, once."""
        accumulator = run.accumulator
        if not run.job.image_id or accumulator is None or not url:
            return
        async with run.lock:
            if url in accumulator.urls:
                return
            accumulator.urls.append(url)
            accumulator.prompts.append(prompt)
            try:
                await self._store.update(
                    IMAGES_TABLE,
                    run.job.image_id,
                    {
                        "variant_urls": list(accumulator.urls),
                        "variant_prompts": list(accumulator.prompts),
                    },
                )
            except PersistenceError as exc:
                logger.error("Failed to persist variant for image %s: %s", run.job.image_id, exc)
                capture_exception(exc)

    async def _finalize(self, run: _Run) -> PromptRemixJob:
        results = run.results
        succeeded = sum(1 for slot in results if slot.status == SlotStatus.SUCCEEDED)
        final_status = JobStatus.COMPLETED if succeeded == len(results) else JobStatus.FAILED
        error_message = "\n".join(run.errors[index] for index in sorted(run.errors)) or None
        completed_at = utcnow()

        final_job = run.job.model_copy(
            update={
                "status": final_status,
                "results": list(results),
                "completed_at": completed_at,
                "updated_at": completed_at,
                "error_message": error_message,
            }
        )

        try:
            row = await self._store.update(
                JOB_TABLE,
                run.job.id,
                {
                    "status": final_status.value,
                    "results": _dump_results(results),
                    "completed_at": completed_at.isoformat(),
                    "updated_at": completed_at.isoformat(),
                    "error_message": error_message,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to finalize prompt remix job %s: %s", run.job.id, exc)
            capture_exception(exc)
            raise PersistenceError(
                f"Failed to finalize prompt remix job {run.job.id}: {exc}", job=final_job
            ) from exc

        logger.info(
            "Prompt remix job %s %s: %d/%d variant(s) succeeded",
            run.job.id,
            final_status.value,
            succeeded,
            len(results),
        )
        return PromptRemixJob.model_validate(row) if row else final_job
