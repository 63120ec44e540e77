import asyncio

import pytest

from conftest import FakeImageSource, make_png
from coloringbook.db.job_store import InMemoryJobStore
from coloringbook.errors import ForbiddenError, NotFoundError, ValidationError
from coloringbook.jobs.models import JobStatus
from coloringbook.jobs.photobook import JOB_TABLE, PHOTOBOOKS_TABLE, PhotobookQueue


def _images(count):
    return [
        {"id": f"img-{index}", "name": f"Page {index}", "coloringPageUrl": f"https://cdn.test/{index}.png"}
        for index in range(count)
    ]


def _image_rows(count):
    return [
        {"id": f"img-{index}", "name": f"Page {index}", "coloring_page_url": f"https://cdn.test/{index}.png"}
        for index in range(count)
    ]


def _source(count, missing=()):
    return FakeImageSource(
        {
            f"https://cdn.test/{index}.png": make_png()
            for index in range(count)
            if index not in missing
        }
    )


def test_enqueue_persists_queued_job(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(2))

    job = asyncio.run(queue.enqueue(_image_rows(2), "Summer", "user-1", "Our trip"))

    assert job.status == JobStatus.QUEUED
    assert job.total_count == 2
    assert job.processed_count == 0
    assert job.payload["userId"] == "user-1"
    assert job.payload["images"][0]["coloring_page_url"] == "https://cdn.test/0.png"


def test_enqueue_accepts_camel_case_image_urls(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))

    job = asyncio.run(queue.enqueue([{"id": "a", "name": "A", "imageUrl": "https://cdn.test/0.png"}], "T", "u"))

    assert job.total_count == 1


@pytest.mark.parametrize(
    "images, title, user_id, message",
    [
        ([], "Summer", "user-1", "No images provided"),
        (_image_rows(1), "Summer", None, "User ID required"),
    ],
)
def test_enqueue_rejects_invalid_payload_without_writing(store, file_store, images, title, user_id, message):
    queue = PhotobookQueue(store, file_store, _source(1))

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(queue.enqueue(images, title, user_id))

    assert str(excinfo.value) == message
    assert asyncio.run(store.next_with_status(JOB_TABLE, "queued")) is None


def test_enqueue_rejects_blank_title(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))
    with pytest.raises(ValidationError):
        asyncio.run(queue.enqueue(_image_rows(1), "   ", "user-1"))


def test_process_queue_skips_unfetchable_images(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(3, missing={1}))

    async def scenario():
        job = await queue.enqueue(_images(3), "Summer", "user-1")
        processed = await queue.process_queue()
        status = await queue.get_status(job.id, "user-1")
        records = await store.list_by_owner(PHOTOBOOKS_TABLE, "user-1")
        return processed, status, records

    processed, status, records = asyncio.run(scenario())

    assert processed == 1
    assert status.status == JobStatus.COMPLETED
    assert status.processed_count == 2
    assert status.total_count == 3
    assert status.download_url.startswith("http://testserver/files/photobooks/photobook-user-1-")
    assert status.completed_at is not None

    path = status.download_url.split("/files/", 1)[1]
    assert file_store.file_exists(path)
    with open(file_store.get_local_path(path), "rb") as pdf:
        assert pdf.read(4) == b"%PDF"

    assert len(records) == 1
    assert records[0]["image_count"] == 2
    assert records[0]["pdf_url"] == status.download_url


def test_undecodable_image_is_skipped(store, file_store):
    source = _source(2)
    source.images["https://cdn.test/1.png"] = b"not an image"
    queue = PhotobookQueue(store, file_store, source)

    async def scenario():
        job = await queue.enqueue(_images(2), "Summer", "user-1")
        await queue.process_queue()
        return await queue.get_status(job.id, "user-1")

    status = asyncio.run(scenario())

    assert status.status == JobStatus.COMPLETED
    assert status.processed_count == 1


def test_job_fails_when_no_image_can_be_added(store, file_store):
    queue = PhotobookQueue(store, file_store, FakeImageSource({}))

    async def scenario():
        job = await queue.enqueue(_images(3), "Summer", "user-1")
        await queue.process_queue()
        return await queue.get_status(job.id, "user-1")

    status = asyncio.run(scenario())

    assert status.status == JobStatus.FAILED
    assert status.processed_count == 0
    assert status.download_url is None
    assert status.error_message == "None of the 3 image(s) could be added to the photobook"


def test_process_queue_drains_jobs_oldest_first(store, file_store):
    source = _source(2)
    queue = PhotobookQueue(store, file_store, source)

    async def scenario():
        await queue.enqueue(_images(1), "First", "user-1")
        await queue.enqueue(_images(2)[1:], "Second", "user-1")
        return await queue.process_queue()

    assert asyncio.run(scenario()) == 2
    assert source.calls == ["https://cdn.test/0.png", "https://cdn.test/1.png"]


def test_concurrent_drains_on_one_worker_run_once(store, file_store):
    source = _source(2)
    queue = PhotobookQueue(store, file_store, source)

    async def scenario():
        await queue.enqueue(_images(2), "Summer", "user-1")
        return await asyncio.gather(queue.process_queue(), queue.process_queue())

    assert sorted(asyncio.run(scenario())) == [0, 1]
    assert len(source.calls) == 2


def test_two_workers_never_process_the_same_job(store, file_store):
    source = _source(2)
    first = PhotobookQueue(store, file_store, source)
    second = PhotobookQueue(store, file_store, source)

    async def scenario():
        await first.enqueue(_images(2), "Summer", "user-1")
        return await asyncio.gather(first.process_queue(), second.process_queue())

    assert sorted(asyncio.run(scenario())) == [0, 1]
    assert len(source.calls) == 2


def test_status_is_scoped_to_the_owner(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))

    async def scenario():
        job = await queue.enqueue(_images(1), "Summer", "user-1")
        await queue.get_status(job.id, "user-2")

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())
    with pytest.raises(NotFoundError):
        asyncio.run(queue.get_status("missing", "user-1"))


def test_status_response_uses_camel_case_keys(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))

    async def scenario():
        job = await queue.enqueue(_images(1), "Summer", "user-1")
        return await queue.get_status(job.id, "user-1")

    response = asyncio.run(scenario()).to_response()

    assert response["status"] == "queued"
    assert response["processedCount"] == 0
    assert response["totalCount"] == 1
    assert response["downloadUrl"] is None
    assert "createdAt" in response


def test_list_jobs_returns_only_the_owners_jobs(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))

    async def scenario():
        await queue.enqueue(_images(1), "Mine", "user-1")
        await queue.enqueue(_images(1), "Theirs", "user-2")
        return await queue.list_jobs("user-1")

    jobs = asyncio.run(scenario())

    assert [job.title for job in jobs] == ["Mine"]


def test_enqueue_for_another_user_is_forbidden(store, file_store):
    queue = PhotobookQueue(store, file_store, _source(1))

    with pytest.raises(ForbiddenError):
        asyncio.run(queue.enqueue(_image_rows(1), "Summer", "user-1", claimed_user_id="user-2"))

    assert asyncio.run(store.list_by_owner(JOB_TABLE, "user-1")) == []


class PausingScanStore(InMemoryJobStore):
    """Holds the second queued-job scan open after it has read the table."""

    def __init__(self):
        super().__init__()
        self.scans = 0
        self.paused = asyncio.Event()
        self.release = asyncio.Event()

    async def next_with_status(self, table, status):
        row = await super().next_with_status(table, status)
        self.scans += 1
        if self.scans == 2:
            self.paused.set()
            await self.release.wait()
        return row


def test_drain_requested_during_final_scan_is_not_lost(file_store):
    store = PausingScanStore()
    queue = PhotobookQueue(store, file_store, _source(2))

    async def scenario():
        await queue.enqueue(_images(1), "First", "user-1")
        drain_a = asyncio.create_task(queue.process_queue())
        await store.paused.wait()
        second = await queue.enqueue(_images(2)[1:], "Second", "user-1")
        drained_b = await queue.process_queue()
        store.release.set()
        drained_a = await drain_a
        status = await queue.get_status(second.id, "user-1")
        return drained_a, drained_b, status

    drained_a, drained_b, status = asyncio.run(scenario())

    assert drained_b == 0
    assert drained_a == 2
    assert status.status == JobStatus.COMPLETED
