"""Upload orchestration: strategy selection, spilling, hashing and multipart transfer."""

import asyncio
import hashlib
import logging
import math
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional

from streamvault.storage.base import ObjectStore, PartUploadTarget, StoredObject
from streamvault.storage.exceptions import MultipartConsistencyError
from streamvault.storage.progress import ProgressStore, TransferProgress

logger = logging.getLogger(__name__)


@dataclass
class UploadSession:
    """State of one multipart transfer, kept only for its duration."""

    key: str
    session_id: str
    part_size: int
    part_hashes: dict[int, str] = field(default_factory=dict)
    finished: bool = False

    def record(self, part_number: int, sha1: str) -> None:
        self.part_hashes[part_number] = sha1

    def ordered_hashes(self, part_count: int) -> list[str]:
        """Return part hashes in ascending part order.

        Raises:
            MultipartConsistencyError: If any part between 1 and part_count has no hash
        """
        missing = [n for n in range(1, part_count + 1) if n not in self.part_hashes]
        if missing:
            raise MultipartConsistencyError(
                f"Multipart session {self.session_id} for {self.key} is missing parts {missing}"
            )
        return [self.part_hashes[n] for n in range(1, part_count + 1)]


def _sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


async def spill_to_file(
    chunks: AsyncIterator[bytes],
    path: Path,
    progress: Optional[TransferProgress] = None,
    head: bytes = b"",
) -> tuple[int, str]:
    """Write a byte stream to disk while hashing it.

    Args:
        chunks: Input byte stream
        path: Destination file
        progress: Reporter advanced by every chunk read from the stream
        head: Bytes already consumed from the stream, written first and not counted again

    Returns:
        Tuple of (size in bytes, hex SHA-1 of the whole content)
    """
    hasher = hashlib.sha1()
    size = 0
    with open(path, "wb") as fh:
        if head:
            hasher.update(head)
            size += len(head)
            await asyncio.to_thread(fh.write, head)
        async for chunk in chunks:
            if not chunk:
                continue
            hasher.update(chunk)
            size += len(chunk)
            await asyncio.to_thread(fh.write, chunk)
            if progress is not None:
                progress.advance(len(chunk))
    return size, hasher.hexdigest()


class UploadOrchestrator:
    """Moves byte streams into an object store.

    Small uploads with a known size are buffered in memory. Everything else is
    spilled to a temporary directory first, then sent in one request when it
    fits under the in-memory cap, or as a multipart session otherwise.
    """

    def __init__(
        self,
        store: ObjectStore,
        max_in_memory_bytes: int = 50 * 1024 * 1024,
        part_size: int = 50 * 1024 * 1024,
        concurrency: int = 3,
        spool_dir: Optional[str] = None,
        progress_store: Optional[ProgressStore] = None,
        progress_interval: float = 3.0,
        percent_step: int = 5,
    ):
        self.store = store
        self.max_in_memory_bytes = max_in_memory_bytes
        self.part_size = max(1, part_size)
        self.concurrency = max(1, concurrency)
        self.spool_dir = spool_dir or None
        self.progress_store = progress_store
        self.progress_interval = progress_interval
        self.percent_step = percent_step

    @classmethod
    def from_settings(
        cls, store: ObjectStore, settings, progress_store: Optional[ProgressStore] = None
    ) -> "UploadOrchestrator":
        return cls(
            store,
            max_in_memory_bytes=settings.max_in_memory_bytes,
            part_size=settings.part_size_bytes,
            concurrency=settings.UPLOAD_CONCURRENCY,
            spool_dir=settings.UPLOAD_SPOOL_DIR,
            progress_store=progress_store,
            progress_interval=settings.UPLOAD_PROGRESS_INTERVAL_SECONDS,
            percent_step=settings.UPLOAD_PROGRESS_PERCENT_STEP,
        )

    def new_progress(
        self, label: str, total_bytes: Optional[int], job_id: Optional[str]
    ) -> TransferProgress:
        return TransferProgress(
            label=label,
            total_bytes=total_bytes,
            job_id=job_id,
            store=self.progress_store,
            interval_seconds=self.progress_interval,
            percent_step=self.percent_step,
        )

    async def upload_stream(
        self,
        key: str,
        chunks: AsyncIterator[bytes],
        content_type: str,
        declared_size: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> StoredObject:
        """Upload a byte stream under key.

        Args:
            key: Target object key
            chunks: Input byte stream
            content_type: MIME type recorded with the object
            declared_size: Size announced by the client, if any
            job_id: Progress store key for snapshots of this transfer

        Returns:
            The object as reported by the store
        """
        progress = self.new_progress(key, declared_size, job_id)
        try:
            if declared_size is not None and 0 <= declared_size <= self.max_in_memory_bytes:
                result = await self._upload_buffered(key, chunks, content_type, progress)
            else:
                result = await self._upload_spilled(key, chunks, content_type, progress)
        except Exception as e:
            progress.fail(str(e))
            logger.error(
                "Upload failed",
                extra={"key": key, "uploaded_bytes": progress.bytes_transferred, "error": str(e)},
            )
            raise

        progress.finish()
        logger.info(
            "Upload completed",
            extra={"key": key, "size": result.size, "file_id": result.file_id},
        )
        return result

    async def upload_file(
        self, key: str, path: Path, content_type: str, job_id: Optional[str] = None
    ) -> StoredObject:
        """Upload a file that is already on local disk."""
        size = path.stat().st_size
        progress = self.new_progress(key, size, job_id)

        def read_hash() -> str:
            hasher = hashlib.sha1()
            with open(path, "rb") as fh:
                while block := fh.read(1024 * 1024):
                    hasher.update(block)
            return hasher.hexdigest()

        sha1 = await asyncio.to_thread(read_hash)
        progress.advance(size)
        try:
            if size <= self.max_in_memory_bytes:
                result = await self.store.upload_file(key, path, content_type, sha1, size)
            else:
                result = await self._upload_multipart(key, path, size, content_type, sha1)
        except Exception as e:
            progress.fail(str(e))
            raise
        progress.finish()
        return result

    async def _upload_buffered(
        self,
        key: str,
        chunks: AsyncIterator[bytes],
        content_type: str,
        progress: TransferProgress,
    ) -> StoredObject:
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
            progress.advance(len(chunk))
            if len(buffer) > self.max_in_memory_bytes:
                # Declared size was wrong, continue on disk
                logger.warning(
                    "Upload exceeded declared size, spilling to disk",
                    extra={"key": key, "buffered_bytes": len(buffer)},
                )
                return await self._upload_spilled(
                    key, chunks, content_type, progress, head=bytes(buffer)
                )
        return await self.store.upload_bytes(key, bytes(buffer), content_type)

    async def _upload_spilled(
        self,
        key: str,
        chunks: AsyncIterator[bytes],
        content_type: str,
        progress: TransferProgress,
        head: bytes = b"",
    ) -> StoredObject:
        with tempfile.TemporaryDirectory(prefix="streamvault-", dir=self.spool_dir) as tmp:
            path = Path(tmp) / "upload.bin"
            size, sha1 = await spill_to_file(chunks, path, progress=progress, head=head)
            logger.debug(
                "Upload spilled to disk",
                extra={"key": key, "size": size, "sha1": sha1},
            )
            if size <= self.max_in_memory_bytes:
                return await self.store.upload_file(key, path, content_type, sha1, size)
            return await self._upload_multipart(key, path, size, content_type, sha1)

    async def _upload_multipart(
        self, key: str, path: Path, size: int, content_type: str, sha1: str
    ) -> StoredObject:
        part_count = max(1, math.ceil(size / self.part_size))
        session_id = await self.store.start_multipart(key, content_type, content_sha1=sha1)
        session = UploadSession(key=key, session_id=session_id, part_size=self.part_size)
        logger.info(
            "Multipart upload started",
            extra={"key": key, "session_id": session_id, "size": size, "part_count": part_count},
        )

        targets: asyncio.Queue[PartUploadTarget] = asyncio.Queue()
        prefetched = await asyncio.gather(
            *(
                self.store.get_part_upload_target(session_id)
                for _ in range(min(self.concurrency, part_count))
            )
        )
        for target in prefetched:
            targets.put_nowait(target)

        window = asyncio.Semaphore(self.concurrency)
        tasks: list[asyncio.Task] = []

        async def send_part(part_number: int, data: bytes) -> None:
            try:
                part_sha1 = await asyncio.to_thread(_sha1, data)
                target = await targets.get()
                try:
                    recorded = await self.store.upload_part(target, part_number, data, part_sha1)
                finally:
                    targets.put_nowait(target)
                session.record(part_number, recorded)
            finally:
                window.release()

        try:
            with open(path, "rb") as fh:
                for part_number in range(1, part_count + 1):
                    await window.acquire()
                    for task in tasks:
                        if task.done() and not task.cancelled() and task.exception():
                            raise task.exception()
                    data = await asyncio.to_thread(fh.read, self.part_size)
                    tasks.append(asyncio.create_task(send_part(part_number, data)))
            await asyncio.gather(*tasks)
        except BaseException as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.error(
                "Multipart upload abandoned",
                extra={
                    "key": key,
                    "session_id": session_id,
                    "parts_done": len(session.part_hashes),
                    "part_count": part_count,
                    "error": str(e),
                },
            )
            raise

        result = await self.store.finish_multipart(session_id, session.ordered_hashes(part_count))
        session.finished = True
        return result
