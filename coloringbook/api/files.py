"""Serves files written by LocalFileStore at /files/{path}."""

import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from coloringbook.api.deps import Services, get_services
from coloringbook.storage.file_store import LocalFileStore

router = APIRouter()


@router.get("/files/{path:path}")
async def download_file(path: str, services: Services = Depends(get_services)):
    file_store = services.file_store
    if not isinstance(file_store, LocalFileStore) or not file_store.file_exists(path):
        raise HTTPException(status_code=404, detail="File not found")

    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return FileResponse(file_store.get_local_path(path), media_type=media_type)
