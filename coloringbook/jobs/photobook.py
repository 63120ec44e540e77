"""Photobook job queue: enqueue a batch of coloring pages, assemble a PDF later.

enqueue() only persists a queued job. process_queue() is the worker entry
point: it claims queued jobs one at a time (compare-and-set on status),
builds the PDF, uploads it and records the download URL.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from coloringbook.db.job_store import JobStore
from coloringbook.errors import ForbiddenError, NotFoundError, PersistenceError
from coloringbook.jobs.models import (
    JobStatus,
    PhotobookJob,
    PhotobookPayload,
    parse_photobook_payload,
    utcnow,
)
from coloringbook.observability import capture_exception, start_span
from coloringbook.rendering.photobook_pdf import PhotobookPdf
from coloringbook.storage.file_store import FileStore

logger = logging.getLogger(__name__)

JOB_TABLE = "photobook_jobs"
PHOTOBOOKS_TABLE = "photobooks"

# fn(url) -> image bytes
ImageSource = Callable[[str], Awaitable[bytes]]


class PhotobookStatus(BaseModel):
    """Owner-facing snapshot of a photobook job."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: JobStatus
    title: str
    processed_count: int
    total_count: int
    download_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: PhotobookJob) -> "PhotobookStatus":
        return cls(
            id=job.id,
            status=job.status,
            title=job.title,
            processed_count=job.processed_count,
            total_count=job.total_count,
            download_url=job.pdf_url,
            error_message=job.error_message,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _image_dict(image: Any) -> Any:
    return image.model_dump() if isinstance(image, BaseModel) else image


class PhotobookQueue:
    def __init__(
        self,
        store: JobStore,
        file_store: FileStore,
        fetch_image: ImageSource,
        fetch_timeout: float = 15.0,
    ):
        self._store = store
        self._file_store = file_store
        self._fetch_image = fetch_image
        self._fetch_timeout = fetch_timeout
        self._lock = asyncio.Lock()
        self._rerun_requested = False

    async def enqueue(
        self,
        images: Sequence[Any],
        title: str,
        user_id: Optional[str],
        description: Optional[str] = None,
        claimed_user_id: Optional[str] = None,
    ) -> PhotobookJob:
        """Persist a queued job. Raises ValidationError without writing anything.

        claimed_user_id is the owner named in the request body; it must match
        the authenticated user_id when given (ForbiddenError otherwise).
        """
        if claimed_user_id and claimed_user_id != user_id:
            raise ForbiddenError("Cannot create a photobook for another user")
        payload = parse_photobook_payload(
            {
                "images": [_image_dict(image) for image in images or []],
                "title": title,
                "userId": user_id,
                "description": description,
            }
        )
        job = PhotobookJob(
            title=payload.title,
            user_id=payload.user_id,
            payload=payload.to_json(),
            processed_count=0,
            total_count=len(payload.images),
        )
        job.updated_at = job.created_at

        with start_span(
            "photobook.enqueue",
            "Enqueue photobook job",
            **{
                "photobook.job_id": job.id,
                "photobook.user_id": job.user_id,
                "photobook.image_count": job.total_count,
            },
        ):
            row = await self._store.insert(JOB_TABLE, job.model_dump(mode="json"))

        logger.info("Queued photobook job %s with %d image(s)", job.id, job.total_count)
        return PhotobookJob.model_validate(row)

    async def get_status(self, job_id: str, owner_id: str) -> PhotobookStatus:
        row = await self._store.get_by_id(JOB_TABLE, job_id)
        if row is None or row.get("user_id") != owner_id:
            raise NotFoundError("Photobook job not found")
        return PhotobookStatus.from_job(PhotobookJob.model_validate(row))

    async def list_jobs(self, owner_id: str) -> List[PhotobookStatus]:
        rows = await self._store.list_by_owner(JOB_TABLE, owner_id)
        return [PhotobookStatus.from_job(PhotobookJob.model_validate(row)) for row in rows]

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def process_queue(self) -> int:
        """Drain queued jobs. Returns how many jobs this call processed.

        A call made while this worker is already draining returns 0 at once and
        asks the running drain to scan again before it stops.
        """
        if self._lock.locked():
            logger.debug("Photobook queue is already being processed")
            self._rerun_requested = True
            return 0

        processed = 0
        async with self._lock:
            while True:
                self._rerun_requested = False
                job = await self._claim_next()
                if job is None:
                    if self._rerun_requested:
                        continue
                    break
                await self._process_claimed(job)
                processed += 1
        return processed

    async def _claim_next(self) -> Optional[PhotobookJob]:
        while True:
            try:
                row = await self._store.next_with_status(JOB_TABLE, JobStatus.QUEUED.value)
            except PersistenceError as exc:
                logger.error("Failed to find queued photobook job: %s", exc)
                capture_exception(exc)
                return None
            if row is None:
                return None

            now = utcnow().isoformat()
            claimed = await self._store.claim(
                JOB_TABLE,
                row["id"],
                [JobStatus.QUEUED.value],
                {
                    "status": JobStatus.PROCESSING.value,
                    "started_at": row.get("started_at") or now,
                    "updated_at": now,
                    "error_message": None,
                },
            )
            if claimed is not None:
                return PhotobookJob.model_validate(claimed)
            logger.info("Photobook job %s was claimed by another worker", row["id"])

    async def _process_claimed(self, job: PhotobookJob) -> None:
        with start_span(
            "photobook.process_job",
            "Process photobook job",
            **{"photobook.job_id": job.id, "photobook.user_id": job.user_id},
        ):
            try:
                payload = parse_photobook_payload(job.payload)
                await self._build_and_store(job, payload)
            except Exception as exc:
                message = str(exc) or "Unknown photobook job error"
                logger.error("Photobook job %s failed: %s", job.id, message)
                capture_exception(exc)
                await self._mark_failed(job.id, message)

    async def _build_and_store(self, job: PhotobookJob, payload: PhotobookPayload) -> None:
        total = len(payload.images)
        await self._update_quietly(job.id, {"processed_count": 0, "total_count": total})

        loop = asyncio.get_running_loop()
        pdf = PhotobookPdf(payload.title, payload.description, generated_at=utcnow())
        embedded = 0

        for image in payload.images:
            try:
                with start_span(
                    "photobook.fetch_image",
                    "Fetch photobook image",
                    **{"photobook.image_id": image.id},
                ):
                    data = await asyncio.wait_for(
                        self._fetch_image(image.coloring_page_url),
                        timeout=self._fetch_timeout,
                    )
                    await loop.run_in_executor(None, pdf.add_image_page, data, image.name)
            except Exception as exc:
                logger.warning(
                    "Skipping image %s (%s) in photobook job %s: %s",
                    image.id,
                    image.coloring_page_url,
                    job.id,
                    str(exc) or type(exc).__name__,
                )
                capture_exception(exc)
                continue

            embedded += 1
            await self._update_quietly(job.id, {"processed_count": embedded})

        if embedded == 0:
            await self._mark_failed(
                job.id, f"None of the {total} image(s) could be added to the photobook"
            )
            return

        with start_span(
            "photobook.build_pdf",
            "Build photobook PDF",
            **{"photobook.job_id": job.id, "photobook.page_count": embedded + 1},
        ):
            data = await loop.run_in_executor(None, pdf.render)
            path = f"photobooks/photobook-{payload.user_id}-{int(time.time() * 1000)}.pdf"
            stored_path = await self._file_store.upload(path, data, "application/pdf")
            public_url = self._file_store.get_public_url(stored_path)

        await self._insert_photobook_record(payload, public_url, embedded)
        await self._mark_completed(job.id, stored_path, public_url, embedded, total)
        logger.info(
            "Photobook job %s completed: %d/%d image(s), %d bytes",
            job.id,
            embedded,
            total,
            len(data),
        )

    async def _update_quietly(self, job_id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": utcnow().isoformat()}
        try:
            await self._store.update(JOB_TABLE, job_id, fields)
        except PersistenceError as exc:
            logger.warning("Failed to update photobook job %s progress: %s", job_id, exc)
            capture_exception(exc)

    async def _mark_failed(self, job_id: str, message: str) -> None:
        now = utcnow().isoformat()
        try:
            await self._store.update(
                JOB_TABLE,
                job_id,
                {
                    "status": JobStatus.FAILED.value,
                    "error_message": message,
                    "completed_at": now,
                    "updated_at": now,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to mark photobook job %s as failed: %s", job_id, exc)
            capture_exception(exc)

    async def _mark_completed(
        self, job_id: str, pdf_path: str, pdf_url: str, embedded: int, total: int
    ) -> None:
        now = utcnow().isoformat()
        try:
            await self._store.update(
                JOB_TABLE,
                job_id,
                {
                    "status": JobStatus.COMPLETED.value,
                    "processed_count": embedded,
                    "total_count": total,
                    "pdf_path": pdf_path,
                    "pdf_url": pdf_url,
                    "error_message": None,
                    "completed_at": now,
                    "updated_at": now,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to mark photobook job %s as completed: %s", job_id, exc)
            capture_exception(exc)

    async def _insert_photobook_record(self, payload: PhotobookPayload, pdf_url: str, embedded: int) -> None:
        try:
            await self._store.insert(
                PHOTOBOOKS_TABLE,
                {
                    "id": str(uuid.uuid4()),
                    "user_id": payload.user_id,
                    "title": payload.title,
                    "pdf_url": pdf_url,
                    "image_count": embedded,
                    "created_at": utcnow().isoformat(),
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to insert photobook record: %s", exc)
            capture_exception(exc)
