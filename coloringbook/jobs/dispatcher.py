"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional

PHOTOBOOK_TASK = "photobook.process_queue"
PROMPT_REMIX_TASK = "prompt_remix.process"


class JobDispatcher(ABC):
    """Abstract interface for running job work outside the request cycle."""

    @abstractmethod
    async def submit(self, task: str, job_id: Optional[str] = None) -> None:
        """Schedule the named task for a job. Returns before the work runs."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
