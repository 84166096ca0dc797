"""Video rendition encoding through an external encoder process."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from streamvault.storage.exceptions import EncodingError

logger = logging.getLogger(__name__)

_TIME_PATTERN = re.compile(r"time=([0-9:.]+)")
_DURATION_PATTERN = re.compile(r"Duration:\s*([0-9:.]+)\s*,")

STDERR_TAIL_CHARS = 4000


@dataclass(frozen=True)
class Rendition:
    """Target resolution box of one encoded output."""

    width: int
    height: int

    @property
    def label(self) -> str:
        return f"{self.height}p"


DEFAULT_LADDER = (
    Rendition(1920, 1080),
    Rendition(1280, 720),
    Rendition(854, 480),
    Rendition(640, 360),
)


@dataclass
class EncodeProgress:
    rendition: str
    fraction: float


def parse_ffmpeg_time(value: str) -> Optional[float]:
    """Convert an ffmpeg timestamp such as 01:02:03.50 into seconds.

    >>> parse_ffmpeg_time("00:01:30.5")
    90.5
    """
    try:
        parts = [float(p) for p in value.strip().split(":")]
    except ValueError:
        return None
    if not parts or len(parts) > 3:
        return None
    seconds = 0.0
    for part in parts:
        seconds = seconds * 60 + part
    return seconds


class RenditionEncoder(ABC):
    """Produces one rendition of an input media file."""

    @abstractmethod
    def encode(
        self, input_path: Path, rendition: Rendition, output_path: Path
    ) -> AsyncIterator[EncodeProgress]:
        """Encode input_path into output_path, yielding progress events.

        Raises:
            EncodingError: If the encoder fails
        """
        pass

    async def check_available(self) -> bool:
        return True


class FfmpegEncoder(RenditionEncoder):
    """Encodes renditions with ffmpeg and reports progress from its stderr."""

    def __init__(
        self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", check_timeout: float = 4.0
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.check_timeout = check_timeout

    @classmethod
    def from_settings(cls, settings) -> "FfmpegEncoder":
        return cls(ffmpeg_path=settings.FFMPEG_PATH, ffprobe_path=settings.FFPROBE_PATH)

    async def check_available(self) -> bool:
        """True when the ffmpeg binary can be executed."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False

        try:
            await asyncio.wait_for(process.wait(), timeout=self.check_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("ffmpeg version check timed out", extra={"ffmpeg_path": self.ffmpeg_path})
            return False
        return process.returncode == 0

    async def probe_duration(self, input_path: Path) -> Optional[float]:
        """Return the media duration in seconds, or None if unknown."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(input_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await process.communicate()
            duration = float(stdout.decode().strip())
            if duration > 0:
                return duration
        except (OSError, ValueError):
            logger.debug("ffprobe unavailable, falling back to ffmpeg", extra={"file_path": str(input_path)})

        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner", "-i", str(input_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError:
            return None

        match = _DURATION_PATTERN.search(stderr.decode(errors="replace"))
        duration = parse_ffmpeg_time(match.group(1)) if match else None
        return duration if duration and duration > 0 else None

    def build_args(self, input_path: Path, rendition: Rendition, output_path: Path) -> list[str]:
        w, h = rendition.width, rendition.height
        vf = f"scale={w}:{h}:force_original_aspect_ratio=decrease,pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black"
        return [
            "-y",
            "-i", str(input_path),
            "-vf", vf,
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
            str(output_path),
        ]

    async def encode(
        self, input_path: Path, rendition: Rendition, output_path: Path
    ) -> AsyncIterator[EncodeProgress]:
        duration = await self.probe_duration(input_path)
        args = self.build_args(input_path, rendition, output_path)

        logger.info(
            "Encoding rendition",
            extra={"file_path": str(input_path), "rendition": rendition.label, "duration": duration},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodingError(f"ffmpeg not found or not executable at {self.ffmpeg_path}: {e}") from e

        tail = ""
        last_fraction = 0.0
        try:
            # ffmpeg rewrites its status line with carriage returns
            while chunk := await process.stderr.read(4096):
                text = chunk.decode(errors="replace")
                tail = (tail + text)[-STDERR_TAIL_CHARS:]
                if not duration:
                    continue
                for match in _TIME_PATTERN.finditer(text):
                    seconds = parse_ffmpeg_time(match.group(1))
                    if seconds is None:
                        continue
                    last_fraction = max(0.0, min(1.0, seconds / duration))
                    yield EncodeProgress(rendition=rendition.label, fraction=last_fraction)
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        if returncode != 0:
            raise EncodingError(f"ffmpeg exited with code {returncode}: {tail}")

        if last_fraction < 1.0:
            yield EncodeProgress(rendition=rendition.label, fraction=1.0)
