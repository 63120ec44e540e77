import asyncio

import pytest

from coloringbook.errors import PersistenceError


def test_local_upload_writes_file_and_builds_public_url(file_store):
    path = asyncio.run(file_store.upload("coloring-pages/page.png", b"png", "image/png"))

    assert path == "coloring-pages/page.png"
    with open(file_store.get_local_path(path), "rb") as stored:
        assert stored.read() == b"png"
    assert file_store.get_public_url(path) == "http://testserver/files/coloring-pages/page.png"


def test_local_upload_never_overwrites(file_store):
    asyncio.run(file_store.upload("a.pdf", b"first", "application/pdf"))

    with pytest.raises(PersistenceError):
        asyncio.run(file_store.upload("a.pdf", b"second", "application/pdf"))

    with open(file_store.get_local_path("a.pdf"), "rb") as stored:
        assert stored.read() == b"first"


def test_local_upload_refuses_paths_outside_the_root(file_store):
    with pytest.raises(PersistenceError):
        asyncio.run(file_store.upload("../escape.pdf", b"x", "application/pdf"))
    assert not file_store.file_exists("../escape.pdf")
