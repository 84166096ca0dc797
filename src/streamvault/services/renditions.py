"""Background jobs that encode an uploaded video into a rendition ladder."""

import asyncio
import logging
import shutil
import tempfile
import uuid
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Optional, Sequence

from streamvault.catalog.paths import join_key
from streamvault.catalog.repository import CatalogStore
from streamvault.services.encoder import DEFAULT_LADDER, Rendition, RenditionEncoder
from streamvault.storage.exceptions import EncodingError
from streamvault.storage.progress import JobStatus, ProgressStore
from streamvault.storage.uploader import UploadOrchestrator, spill_to_file

logger = logging.getLogger(__name__)

RENDITION_CONTENT_TYPE = "video/mp4"


def new_job_id() -> str:
    return uuid.uuid4().hex[:16]


class RenditionJobRunner:
    """Stages uploads on disk and encodes them in background tasks."""

    def __init__(
        self,
        encoder: RenditionEncoder,
        uploader: UploadOrchestrator,
        catalog: CatalogStore,
        progress_store: ProgressStore,
        ladder: Sequence[Rendition] = DEFAULT_LADDER,
        spool_dir: Optional[str] = None,
    ):
        self.encoder = encoder
        self.uploader = uploader
        self.catalog = catalog
        self.progress_store = progress_store
        self.ladder = tuple(ladder)
        self.spool_dir = spool_dir or None
        self._tasks: set[asyncio.Task] = set()

    async def submit(
        self, chunks: AsyncIterator[bytes], file_name: str, prefix: str = ""
    ) -> str:
        """
        Stage the input and start encoding it in the background.

        The input is fully written to disk before this returns, so the
        request body can be released.

        Returns:
            Job id to poll in the progress store
        """
        job_id = new_job_id()
        self.progress_store.update(
            job_id, status=JobStatus.PREPARING, label=file_name, done=0,
            total=len(self.ladder), percent=0,
        )

        workdir = Path(tempfile.mkdtemp(prefix="streamvault-encode-", dir=self.spool_dir))
        suffix = PurePosixPath(file_name).suffix or ".dat"
        input_path = workdir / f"input{suffix}"
        try:
            await spill_to_file(chunks, input_path)
        except BaseException as e:
            shutil.rmtree(workdir, ignore_errors=True)
            self.progress_store.update(job_id, status=JobStatus.ERROR, error=str(e) or "Upload failed")
            raise

        task = asyncio.create_task(self.run(job_id, workdir, input_path, file_name, prefix))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job_id

    async def run(
        self, job_id: str, workdir: Path, input_path: Path, file_name: str, prefix: str
    ) -> None:
        """Encode every rendition, upload it and record it in the catalog."""
        base_name = PurePosixPath(file_name).stem or "video"
        total = len(self.ladder)
        created: list[dict[str, str]] = []

        try:
            if not await self.encoder.check_available():
                raise EncodingError("Encoder is not available")

            for index, rendition in enumerate(self.ladder):
                out_name = f"{base_name}_{rendition.label}.mp4"
                out_path = workdir / out_name
                self.progress_store.update(
                    job_id, status=JobStatus.ENCODING, current=rendition.label,
                    done=index, total=total, percent=round(index / total * 100),
                )

                async for event in self.encoder.encode(input_path, rendition, out_path):
                    overall = (index + event.fraction) / total * 100
                    self.progress_store.update(
                        job_id, status=JobStatus.ENCODING, current=rendition.label,
                        done=index, total=total, percent=max(0, min(99, round(overall))),
                    )

                self.progress_store.update(
                    job_id, status=JobStatus.UPLOADING, current=rendition.label,
                    done=index, total=total,
                )
                key = join_key(prefix, out_name)
                stored = await self.uploader.upload_file(key, out_path, RENDITION_CONTENT_TYPE)
                await asyncio.to_thread(self.catalog.record_object, stored)
                out_path.unlink(missing_ok=True)
                created.append({"id": stored.key, "name": out_name})

                self.progress_store.update(
                    job_id, status=JobStatus.PROGRESS, current=rendition.label,
                    done=index + 1, total=total, percent=round((index + 1) / total * 100),
                )

            self.progress_store.update(
                job_id, status=JobStatus.DONE, done=total, total=total, files=created, percent=100,
            )
            logger.info("Rendition job finished", extra={"job_id": job_id, "files": len(created)})
        except asyncio.CancelledError:
            self.progress_store.update(job_id, status=JobStatus.ERROR, error="Encoding cancelled")
            raise
        except Exception as e:
            logger.error("Rendition job failed", exc_info=True, extra={"job_id": job_id})
            self.progress_store.update(job_id, status=JobStatus.ERROR, error=str(e) or "Encoding failed")
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for them to stop."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
