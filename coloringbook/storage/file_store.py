"""Durable file storage for generated coloring pages and photobook PDFs."""

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Optional

from supabase import Client

from coloringbook.errors import PersistenceError


class FileStore(ABC):
    """Abstract interface for durable file storage (Supabase bucket or local disk)."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes under path. Returns the stored path."""
        ...

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        ...


class SupabaseFileStore(FileStore):
    """Files kept in a Supabase Storage bucket."""

    def __init__(self, client: Client, bucket: str = "images"):
        self._client = client
        self._bucket = bucket

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        bucket = self._client.storage.from_(self._bucket)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: bucket.upload(
                    path,
                    data,
                    file_options={"content-type": content_type, "upsert": "false"},
                ),
            )
        except Exception as exc:
            raise PersistenceError(f"Storage upload failed: {exc}") from exc
        return path

    def get_public_url(self, path: str) -> str:
        return self._client.storage.from_(self._bucket).get_public_url(path)


class LocalFileStore(FileStore):
    """Files kept under a local directory and served by the app at /files/."""

    def __init__(self, base_dir: str, public_base_url: str = "http://localhost:8000"):
        self._base_dir = os.path.abspath(base_dir)
        os.makedirs(self._base_dir, exist_ok=True)
        self._public_base_url = public_base_url.rstrip("/")

    def get_local_path(self, path: str) -> Optional[str]:
        """Absolute path for a stored file, or None if it escapes base_dir."""
        full_path = os.path.abspath(os.path.join(self._base_dir, path.lstrip("/")))
        if os.path.commonpath([full_path, self._base_dir]) != self._base_dir:
            return None
        return full_path

    def file_exists(self, path: str) -> bool:
        full_path = self.get_local_path(path)
        return bool(full_path) and os.path.isfile(full_path)

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        full_path = self.get_local_path(path)
        if full_path is None:
            raise PersistenceError(f"Refusing to write outside storage root: {path}")
        if os.path.exists(full_path):
            raise PersistenceError(f"Storage upload failed: {path} already exists")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, full_path, data)
        except OSError as exc:
            raise PersistenceError(f"Storage upload failed: {exc}") from exc
        return path

    @staticmethod
    def _write(full_path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "xb") as dst:
            dst.write(data)

    def get_public_url(self, path: str) -> str:
        return f"{self._public_base_url}/files/{path.lstrip('/')}"
