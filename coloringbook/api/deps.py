"""Service container handed to routes through FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from coloringbook.config import Settings
from coloringbook.db.job_store import JobStore
from coloringbook.jobs.dispatcher import JobDispatcher
from coloringbook.jobs.photobook import PhotobookQueue
from coloringbook.jobs.prompt_remix import PromptRemixRunner
from coloringbook.storage.file_store import FileStore


@dataclass
class Services:
    settings: Settings
    store: JobStore
    file_store: FileStore
    remix_runner: PromptRemixRunner
    photobook_queue: PhotobookQueue
    dispatcher: JobDispatcher


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Job services not initialized")
    return services
