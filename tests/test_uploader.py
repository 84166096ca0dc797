"""Tests for upload orchestration."""

import hashlib
import os

import pytest

from fakes import FakeObjectStore, aiter_chunks
from streamvault.storage.exceptions import MultipartConsistencyError, ObjectStoreError
from streamvault.storage.progress import JobStatus, ProgressStore
from streamvault.storage.uploader import UploadOrchestrator, UploadSession, spill_to_file


@pytest.fixture
def progress():
    return ProgressStore()


def make_uploader(store, progress=None, **overrides):
    options = dict(max_in_memory_bytes=64, part_size=32, concurrency=2, progress_store=progress)
    options.update(overrides)
    return UploadOrchestrator(store, **options)


class TestUploadSession:
    """Tests for multipart session bookkeeping."""

    def test_ordered_hashes(self):
        session = UploadSession(key="a.mp4", session_id="s", part_size=4)
        session.record(2, "h2")
        session.record(1, "h1")

        assert session.ordered_hashes(2) == ["h1", "h2"]

    def test_missing_part_is_reported(self):
        session = UploadSession(key="a.mp4", session_id="s", part_size=4)
        session.record(1, "h1")
        session.record(3, "h3")

        with pytest.raises(MultipartConsistencyError) as exc_info:
            session.ordered_hashes(3)
        assert "[2]" in str(exc_info.value)


@pytest.mark.asyncio
async def test_spill_to_file_hashes_head_and_stream(tmp_path):
    path = tmp_path / "spill.bin"
    size, sha1 = await spill_to_file(aiter_chunks(b"world"), path, head=b"hello ")

    assert path.read_bytes() == b"hello world"
    assert size == 11
    assert sha1 == hashlib.sha1(b"hello world").hexdigest()


@pytest.mark.asyncio
async def test_small_declared_upload_is_buffered(store):
    data = b"x" * 40
    obj = await make_uploader(store).upload_stream("a.mp4", aiter_chunks(data), "video/mp4", declared_size=40)

    assert store.uploads == [("bytes", "a.mp4")]
    assert store.blobs["a.mp4"] == data
    assert obj.size == 40


@pytest.mark.asyncio
async def test_unknown_size_small_upload_goes_through_disk(store):
    data = b"y" * 50
    await make_uploader(store).upload_stream("a.mp4", aiter_chunks(data), "video/mp4")

    assert store.uploads == [("file", "a.mp4")]
    assert store.blobs["a.mp4"] == data


@pytest.mark.asyncio
async def test_large_upload_uses_multipart(store):
    data = os.urandom(100)
    obj = await make_uploader(store).upload_stream("big.mp4", aiter_chunks(data, 9), "video/mp4")

    assert store.uploads == [("multipart", "big.mp4")]
    assert store.blobs["big.mp4"] == data
    session = next(iter(store.sessions.values()))
    assert sorted(session["parts"]) == [1, 2, 3, 4]
    assert session["sha1"] == hashlib.sha1(data).hexdigest()
    assert obj.size == 100


@pytest.mark.asyncio
async def test_understated_size_spills_and_keeps_all_bytes(store):
    data = os.urandom(150)
    await make_uploader(store).upload_stream("big.mp4", aiter_chunks(data, 16), "video/mp4", declared_size=10)

    assert store.uploads == [("multipart", "big.mp4")]
    assert store.blobs["big.mp4"] == data


@pytest.mark.asyncio
async def test_multipart_respects_concurrency(store):
    store.part_delay = 0.01
    data = os.urandom(32 * 6)
    await make_uploader(store, concurrency=2).upload_stream("big.mp4", aiter_chunks(data, 32), "video/mp4")

    assert store.blobs["big.mp4"] == data
    assert 1 <= store.max_in_flight <= 2


@pytest.mark.asyncio
async def test_failed_part_aborts_upload(store, progress):
    store.fail_part = 2
    data = os.urandom(32 * 4)

    with pytest.raises(ObjectStoreError):
        await make_uploader(store, progress).upload_stream(
            "big.mp4", aiter_chunks(data, 32), "video/mp4", job_id="job-1"
        )

    assert "big.mp4" not in store.objects
    assert progress.get("job-1").status == JobStatus.ERROR


@pytest.mark.asyncio
async def test_progress_is_finished(store, progress):
    data = b"z" * 60
    await make_uploader(store, progress).upload_stream(
        "a.mp4", aiter_chunks(data), "video/mp4", declared_size=60, job_id="job-1"
    )

    snapshot = progress.get("job-1")
    assert snapshot.status == JobStatus.DONE
    assert snapshot.percent == 100
    assert snapshot.bytes_transferred == 60


@pytest.mark.asyncio
async def test_upload_file_picks_strategy_by_size(tmp_path):
    store = FakeObjectStore()
    small = tmp_path / "small.mp4"
    small.write_bytes(b"s" * 10)
    large = tmp_path / "large.mp4"
    large.write_bytes(os.urandom(100))

    uploader = make_uploader(store)
    await uploader.upload_file("small.mp4", small, "video/mp4")
    await uploader.upload_file("large.mp4", large, "video/mp4")

    assert store.uploads == [("file", "small.mp4"), ("multipart", "large.mp4")]
    assert store.blobs["large.mp4"] == large.read_bytes()


@pytest.mark.asyncio
async def test_spool_directory_is_cleaned_up(store, tmp_path):
    spool = tmp_path / "spool"
    spool.mkdir()
    await make_uploader(store, spool_dir=str(spool)).upload_stream(
        "a.mp4", aiter_chunks(b"q" * 100), "video/mp4"
    )

    assert list(spool.iterdir()) == []
