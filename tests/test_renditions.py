"""Tests for background rendition jobs."""

import asyncio

import pytest

from fakes import FakeEncoder, aiter_chunks
from streamvault.services.encoder import Rendition
from streamvault.services.renditions import RenditionJobRunner
from streamvault.storage.progress import JobStatus, ProgressStore
from streamvault.storage.uploader import UploadOrchestrator

LADDER = (Rendition(1280, 720), Rendition(640, 360))


@pytest.fixture
def progress():
    return ProgressStore()


def make_runner(store, catalog, progress, encoder=None, spool_dir=None):
    uploader = UploadOrchestrator(store, max_in_memory_bytes=1024, progress_store=progress)
    return RenditionJobRunner(
        encoder or FakeEncoder(), uploader, catalog, progress, ladder=LADDER, spool_dir=spool_dir
    )


async def wait_for_jobs(runner):
    await asyncio.gather(*list(runner._tasks))


@pytest.mark.asyncio
async def test_job_encodes_uploads_and_catalogs_every_rendition(store, catalog, progress):
    runner = make_runner(store, catalog, progress)

    job_id = await runner.submit(aiter_chunks(b"raw video bytes"), "My Clip.mov", "videos/2024")
    assert progress.get(job_id) is not None
    await wait_for_jobs(runner)

    snapshot = progress.get(job_id)
    assert snapshot.status == JobStatus.DONE
    assert snapshot.done == snapshot.total == 2
    assert snapshot.percent == 100
    assert [f["id"] for f in snapshot.files] == [
        "videos/2024/My Clip_720p.mp4",
        "videos/2024/My Clip_360p.mp4",
    ]
    assert store.objects["videos/2024/My Clip_720p.mp4"].content_type == "video/mp4"
    assert catalog.get_file("videos/2024/My Clip_360p.mp4") is not None


@pytest.mark.asyncio
async def test_encoder_failure_marks_job_as_error(store, catalog, progress):
    runner = make_runner(store, catalog, progress, encoder=FakeEncoder(fail_on="360p"))

    job_id = await runner.submit(aiter_chunks(b"raw"), "clip.mp4")
    await wait_for_jobs(runner)

    snapshot = progress.get(job_id)
    assert snapshot.status == JobStatus.ERROR
    assert "360p" in snapshot.error
    assert "clip_720p.mp4" in store.objects
    assert "clip_360p.mp4" not in store.objects


@pytest.mark.asyncio
async def test_unavailable_encoder(store, catalog, progress):
    encoder = FakeEncoder()

    async def unavailable():
        return False

    encoder.check_available = unavailable
    runner = make_runner(store, catalog, progress, encoder=encoder)

    job_id = await runner.submit(aiter_chunks(b"raw"), "clip.mp4")
    await wait_for_jobs(runner)

    assert progress.get(job_id).status == JobStatus.ERROR
    assert encoder.calls == []


@pytest.mark.asyncio
async def test_workdir_is_removed(store, catalog, progress, tmp_path):
    runner = make_runner(store, catalog, progress, spool_dir=str(tmp_path))

    await runner.submit(aiter_chunks(b"raw"), "clip.mp4")
    await wait_for_jobs(runner)

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_shutdown_cancels_running_jobs(store, catalog, progress):
    class SlowEncoder(FakeEncoder):
        async def encode(self, input_path, rendition, output_path):
            await asyncio.sleep(10)
            yield  # pragma: no cover

    runner = make_runner(store, catalog, progress, encoder=SlowEncoder())
    job_id = await runner.submit(aiter_chunks(b"raw"), "clip.mp4")
    await asyncio.sleep(0)

    await runner.shutdown()

    assert progress.get(job_id).status == JobStatus.ERROR
    assert not runner._tasks
