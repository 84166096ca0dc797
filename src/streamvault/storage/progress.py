"""Upload and encode job progress tracking."""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Job status enumeration."""

    PREPARING = "preparing"  # Job accepted, input being staged
    UPLOADING = "uploading"  # Bytes moving to the object store
    ENCODING = "encoding"  # Encoder running on a rendition
    PROGRESS = "progress"  # A rendition finished, more to come
    DONE = "done"
    ERROR = "error"


@dataclass
class JobProgress:
    """Progress snapshot of one upload or encode job."""

    job_id: str
    status: JobStatus
    label: Optional[str] = None
    current: Optional[str] = None
    done: int = 0
    total: int = 0
    percent: Optional[int] = None
    bytes_transferred: int = 0
    total_bytes: Optional[int] = None
    elapsed_seconds: float = 0.0
    bytes_per_second: int = 0
    files: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys for API responses."""
        data = asdict(self)
        return {
            "jobId": data["job_id"],
            "status": self.status.value,
            "label": data["label"],
            "current": data["current"],
            "done": data["done"],
            "total": data["total"],
            "percent": data["percent"],
            "bytesTransferred": data["bytes_transferred"],
            "totalBytes": data["total_bytes"],
            "elapsedSeconds": data["elapsed_seconds"],
            "bytesPerSecond": data["bytes_per_second"],
            "files": data["files"],
            "error": data["error"],
            "updatedAt": self.updated_at.isoformat(),
        }


class ProgressStore:
    """In-memory store for job progress snapshots."""

    def __init__(self):
        self._jobs: Dict[str, JobProgress] = {}

    def set(self, progress: JobProgress) -> None:
        """Store or replace the snapshot of a job."""
        progress.updated_at = datetime.now(timezone.utc)
        self._jobs[progress.job_id] = progress

    def update(self, job_id: str, **changes: Any) -> JobProgress:
        """Apply changes to a job snapshot, creating it if needed."""
        current = self._jobs.get(job_id) or JobProgress(job_id=job_id, status=JobStatus.PREPARING)
        for name, value in changes.items():
            setattr(current, name, value)
        self.set(current)
        return current

    def get(self, job_id: str) -> Optional[JobProgress]:
        """Retrieve a job snapshot by id."""
        return self._jobs.get(job_id)


class TransferProgress:
    """Counts bytes of one transfer and emits throttled snapshots.

    A snapshot is emitted when the interval has elapsed since the last one,
    or when the percentage (if the total is known) crosses into a new
    percent_step bucket.
    """

    def __init__(
        self,
        label: str,
        total_bytes: Optional[int] = None,
        job_id: Optional[str] = None,
        store: Optional[ProgressStore] = None,
        interval_seconds: float = 3.0,
        percent_step: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.label = label
        self.total_bytes = total_bytes if total_bytes and total_bytes > 0 else None
        self.job_id = job_id
        self.store = store
        self.interval_seconds = interval_seconds
        self.percent_step = max(1, percent_step)
        self._clock = clock
        self._started_at = clock()
        self._last_emit_at: Optional[float] = None
        self._last_percent: Optional[int] = None
        self._rate_mark = (self._started_at, 0)
        self.bytes_transferred = 0
        self.snapshots_emitted = 0

    def advance(self, count: int) -> None:
        """Record count more bytes and emit a snapshot if due."""
        self.bytes_transferred += count
        now = self._clock()
        percent = self._percent()

        due = self._last_emit_at is None or now - self._last_emit_at >= self.interval_seconds
        crossed = (
            percent is not None
            and self._last_percent is not None
            and percent // self.percent_step > self._last_percent // self.percent_step
        )
        if not (due or crossed):
            return

        self._last_emit_at = now
        if percent is not None:
            self._last_percent = percent
        self._emit(JobStatus.UPLOADING, now)

    def finish(self) -> None:
        """Emit the final snapshot of a completed transfer."""
        self._emit(JobStatus.DONE, self._clock())

    def fail(self, error: str) -> None:
        """Emit a terminal error snapshot."""
        if self.store is not None and self.job_id:
            self.store.update(self.job_id, status=JobStatus.ERROR, error=error, label=self.label)

    def _percent(self) -> Optional[int]:
        if self.total_bytes is None:
            return None
        return min(100, int(self.bytes_transferred * 100 / self.total_bytes))

    def _emit(self, status: JobStatus, now: float) -> None:
        elapsed = max(now - self._started_at, 0.0)
        mark_at, mark_bytes = self._rate_mark
        window = now - mark_at
        rate = int((self.bytes_transferred - mark_bytes) / window) if window > 0 else 0
        self._rate_mark = (now, self.bytes_transferred)
        percent = self._percent()
        self.snapshots_emitted += 1

        logger.info(
            "Upload progress",
            extra={
                "label": self.label,
                "uploaded_bytes": self.bytes_transferred,
                "total_bytes": self.total_bytes,
                "percent": percent,
                "bytes_per_sec": rate,
                "elapsed_sec": round(elapsed, 3),
            },
        )

        if self.store is not None and self.job_id:
            self.store.update(
                self.job_id,
                status=status,
                label=self.label,
                bytes_transferred=self.bytes_transferred,
                total_bytes=self.total_bytes,
                percent=100 if status == JobStatus.DONE else percent,
                elapsed_seconds=elapsed,
                bytes_per_second=rate,
            )


# Singleton instance
progress_store = ProgressStore()
