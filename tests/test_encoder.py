"""Tests for the ffmpeg rendition encoder."""

import stat
import time
import sys
from pathlib import Path

import pytest

from streamvault.services.encoder import (
    DEFAULT_LADDER,
    FfmpegEncoder,
    Rendition,
    parse_ffmpeg_time,
)
from streamvault.storage.exceptions import EncodingError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses shell script stand-ins")


def write_script(path: Path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


@pytest.mark.parametrize(
    "value,expected",
    [("00:01:30.5", 90.5), ("01:00:00.00", 3600.0), ("12.5", 12.5), ("N/A", None), ("1:2:3:4", None)],
)
def test_parse_ffmpeg_time(value, expected):
    assert parse_ffmpeg_time(value) == expected


def test_ladder_labels():
    assert [r.label for r in DEFAULT_LADDER] == ["1080p", "720p", "480p", "360p"]


def test_build_args_scales_and_pads():
    args = FfmpegEncoder().build_args(Path("in.mov"), Rendition(1280, 720), Path("out.mp4"))

    vf = args[args.index("-vf") + 1]
    assert vf.startswith("scale=1280:720:force_original_aspect_ratio=decrease")
    assert "pad=1280:720" in vf
    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[-1] == "out.mp4"


@posix_only
@pytest.mark.asyncio
async def test_encode_reports_progress(tmp_path):
    ffprobe = write_script(tmp_path / "ffprobe", "echo 10.0\n")
    ffmpeg = write_script(
        tmp_path / "ffmpeg",
        'echo "frame=1 time=00:00:05.00 bitrate=1" >&2\n'
        'echo "frame=2 time=00:00:10.00 bitrate=1" >&2\n'
        "exit 0\n",
    )
    encoder = FfmpegEncoder(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe)

    events = [e async for e in encoder.encode(tmp_path / "in.mp4", Rendition(640, 360), tmp_path / "out.mp4")]

    assert [e.fraction for e in events] == [0.5, 1.0]
    assert {e.rendition for e in events} == {"360p"}


@posix_only
@pytest.mark.asyncio
async def test_encode_without_duration_yields_completion(tmp_path):
    ffprobe = write_script(tmp_path / "ffprobe", "echo N/A\n")
    ffmpeg = write_script(tmp_path / "ffmpeg", 'echo "time=00:00:05.00" >&2\nexit 0\n')
    encoder = FfmpegEncoder(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe)

    events = [e async for e in encoder.encode(tmp_path / "in.mp4", Rendition(640, 360), tmp_path / "out.mp4")]

    assert [e.fraction for e in events] == [1.0]


@posix_only
@pytest.mark.asyncio
async def test_encode_failure_includes_stderr(tmp_path):
    ffprobe = write_script(tmp_path / "ffprobe", "echo 10.0\n")
    ffmpeg = write_script(tmp_path / "ffmpeg", 'echo "Invalid data found" >&2\nexit 1\n')
    encoder = FfmpegEncoder(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe)

    with pytest.raises(EncodingError) as exc_info:
        async for _ in encoder.encode(tmp_path / "in.mp4", Rendition(640, 360), tmp_path / "out.mp4"):
            pass
    assert "Invalid data found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_missing_binary(tmp_path):
    encoder = FfmpegEncoder(ffmpeg_path=str(tmp_path / "missing"), ffprobe_path=str(tmp_path / "missing"))

    assert await encoder.check_available() is False
    with pytest.raises(EncodingError):
        async for _ in encoder.encode(tmp_path / "in.mp4", Rendition(640, 360), tmp_path / "out.mp4"):
            pass


@posix_only
@pytest.mark.asyncio
async def test_check_available(tmp_path):
    ffmpeg = write_script(tmp_path / "ffmpeg", "echo ffmpeg version 6.1\nexit 0\n")

    assert await FfmpegEncoder(ffmpeg_path=ffmpeg).check_available() is True


@posix_only
@pytest.mark.asyncio
async def test_check_available_kills_hanging_binary(tmp_path):
    ffmpeg = write_script(tmp_path / "ffmpeg", "exec sleep 30\n")
    encoder = FfmpegEncoder(ffmpeg_path=ffmpeg, check_timeout=0.2)

    started = time.monotonic()
    assert await encoder.check_available() is False
    assert time.monotonic() - started < 5


@posix_only
@pytest.mark.asyncio
async def test_duration_fallback_only_reads_header(tmp_path):
    args_file = tmp_path / "args.txt"
    ffprobe = write_script(tmp_path / "ffprobe", "exit 1\n")
    ffmpeg = write_script(
        tmp_path / "ffmpeg",
        f'echo "$@" > {args_file}\n'
        'echo "  Duration: 00:00:20.00, start: 0.000000, bitrate: 1 kb/s" >&2\n'
        "exit 1\n",
    )
    encoder = FfmpegEncoder(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe)

    assert await encoder.probe_duration(tmp_path / "in.mp4") == 20.0
    assert args_file.read_text().split() == ["-hide_banner", "-i", str(tmp_path / "in.mp4")]
