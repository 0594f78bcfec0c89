from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from app.core.errors import CommandError

logger = logging.getLogger(__name__)

SEGMENT_SECONDS = 6
MASTER_PLAYLIST = "master.m3u8"
AUDIO_CODEC = "aac"
AUDIO_SAMPLE_RATE = 48000
AUDIO_BITRATE = "128k"
POSTER_OFFSET = "00:00:01"


@dataclass(slots=True, frozen=True)
class Rendition:
    name: str
    width: int
    height: int
    video_kbps: int

    @property
    def maxrate_kbps(self) -> int:
        return int(round(self.video_kbps * 1.07))

    @property
    def bufsize_kbps(self) -> int:
        return int(round(self.video_kbps * 1.5))


HLS_LADDER: tuple[Rendition, ...] = (
    Rendition("1080p", 1920, 1080, 5000),
    Rendition("720p", 1280, 720, 3000),
    Rendition("480p", 854, 480, 1500),
    Rendition("360p", 640, 360, 800),
)


@dataclass(slots=True)
class VideoMetadata:
    width: int | None
    height: int | None
    duration: float | None
    codec: str | None
    bitrate: int | None = None


async def run_command(args: list[str]) -> str:
    """Run an external command and return its stdout.

    Raises CommandError on a non-zero exit. If the awaiting task is
    cancelled (job timeout, shutdown) the child process is killed.
    """
    logger.debug("Running command: %s", " ".join(args))
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace")
        logger.error("%s failed (status=%s): %s", args[0], proc.returncode, err[-2000:])
        raise CommandError(args, proc.returncode, err)
    return stdout.decode("utf-8", errors="replace")


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(data: dict[str, Any]) -> VideoMetadata:
    streams = data.get("streams") or []
    fmt = data.get("format") or {}
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise ValueError("No video stream found")

    duration = _to_float(fmt.get("duration"))
    if duration is None:
        duration = _to_float(video.get("duration"))
    bitrate = _to_int(video.get("bit_rate"))
    if bitrate is None:
        bitrate = _to_int(fmt.get("bit_rate"))

    return VideoMetadata(
        width=_to_int(video.get("width")),
        height=_to_int(video.get("height")),
        duration=duration,
        codec=video.get("codec_name") or None,
        bitrate=bitrate,
    )


def build_hls_command(ffmpeg_bin: str, input_path: Path, output_dir: Path, has_audio: bool) -> list[str]:
    ladder = HLS_LADDER
    args = [ffmpeg_bin, "-i", str(input_path), "-c:v", "libx264", "-preset", "fast"]
    for _ in ladder:
        args += ["-map", "0:v:0"]

    if has_audio:
        args += ["-c:a", AUDIO_CODEC, "-ar", str(AUDIO_SAMPLE_RATE), "-b:a", AUDIO_BITRATE]
        for _ in ladder:
            args += ["-map", "0:a:0?"]

    for idx, rung in enumerate(ladder):
        args += [
            f"-s:v:{idx}", f"{rung.width}x{rung.height}",
            f"-b:v:{idx}", f"{rung.video_kbps}k",
            f"-maxrate:v:{idx}", f"{rung.maxrate_kbps}k",
            f"-bufsize:v:{idx}", f"{rung.bufsize_kbps}k",
        ]

    if has_audio:
        stream_map = " ".join(f"v:{i},a:{i}" for i in range(len(ladder)))
    else:
        stream_map = " ".join(f"v:{i}" for i in range(len(ladder)))

    args += [
        "-var_stream_map", stream_map,
        "-master_pl_name", MASTER_PLAYLIST,
        "-f", "hls",
        "-hls_time", str(SEGMENT_SECONDS),
        "-hls_list_size", "0",
        "-hls_segment_filename", str(output_dir / "v%v" / "seg-%03d.ts"),
        str(output_dir / "v%v" / "playlist.m3u8"),
    ]
    return args


class FFmpegToolkit:
    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe") -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    async def probe(self, input_path: Path) -> VideoMetadata:
        out = await run_command(
            [
                self.ffprobe_bin,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(input_path),
            ]
        )
        try:
            data = json.loads(out or "{}")
        except ValueError as exc:
            raise ValueError(f"ffprobe returned invalid JSON: {exc}") from exc
        return parse_probe_output(data)

    async def has_audio(self, input_path: Path) -> bool:
        try:
            out = await run_command(
                [
                    self.ffprobe_bin,
                    "-v", "error",
                    "-select_streams", "a",
                    "-show_entries", "stream=codec_type",
                    "-of", "csv=p=0",
                    str(input_path),
                ]
            )
        except (CommandError, OSError):
            logger.warning("Failed to check audio streams for %s, assuming none", input_path)
            return False
        return bool(out.strip())

    async def transcode_hls(self, input_path: Path, output_dir: Path) -> bool:
        """Encode the HLS ladder into ``output_dir``. Returns whether audio was muxed."""
        has_audio = await self.has_audio(input_path)
        logger.debug("Detected audio presence has_audio=%s input=%s", has_audio, input_path)
        await run_command(build_hls_command(self.ffmpeg_bin, input_path, output_dir, has_audio))
        return has_audio

    async def generate_poster(self, input_path: Path, output_path: Path) -> None:
        await run_command(
            [
                self.ffmpeg_bin,
                "-i", str(input_path),
                "-ss", POSTER_OFFSET,
                "-vframes", "1",
                "-q:v", "2",
                str(output_path),
            ]
        )
