"""FFmpeg and ffprobe invocation.

The pipeline only talks to external tools through the MediaToolkit protocol,
so stages can be exercised with a fake toolkit that writes files directly.
"""

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from abrpipe.core.config import Settings
from abrpipe.modules.transcoding.abr import get_ffmpeg_args_for_preset
from abrpipe.modules.transcoding.errors import ProbeUnreadableError, ToolInvocationError
from abrpipe.modules.transcoding.models import ProbeResult, QualityPreset
from abrpipe.modules.transcoding.storage import SUB_PLAYLIST_NAME, SEGMENT_PATTERN

logger = logging.getLogger(__name__)

SUPPORTED_VIDEO_CODECS = frozenset({
    "h264", "avc", "h265", "hevc", "vp8", "vp9", "av1", "mpeg4",
})

KILL_WAIT_SECONDS = 5.0


@dataclass(frozen=True)
class ProcessResult:
    """Captured output of a finished process."""
    returncode: int
    stdout: str
    stderr: str


class MediaToolkit(Protocol):
    """Operations the pipeline needs from a media tool suite."""

    async def probe(self, source_path: str, timeout: float) -> ProbeResult:
        ...

    async def encode_rendition(
        self,
        source_path: str,
        preset: QualityPreset,
        output_dir: Path,
        segment_duration: int,
        timeout: float,
    ) -> None:
        ...

    async def extract_frame(
        self,
        source_path: str,
        timestamp_seconds: float,
        width: int,
        height: int,
        output_path: Path,
        timeout: float,
    ) -> None:
        ...


def parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """Parse an ffprobe rate such as "30000/1001" or "25"."""
    if not value:
        return None
    try:
        if "/" in value:
            numerator, denominator = value.split("/", 1)
            denominator_value = float(denominator)
            if denominator_value == 0:
                return None
            return float(numerator) / denominator_value
        return float(value)
    except ValueError:
        return None


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm for -ss."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def is_codec_supported(codec: Optional[str]) -> bool:
    return bool(codec) and codec.lower() in SUPPORTED_VIDEO_CODECS


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(raw: str) -> ProbeResult:
    """Build a ProbeResult from ffprobe JSON output.

    Duration comes from the container, falling back to the video stream. A
    missing duration is reported as 0 so the caller can reject it.

    Raises:
        ProbeUnreadableError: If the output is not JSON or has no video stream
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProbeUnreadableError(f"unreadable probe output: {e}") from e
    if not isinstance(data, dict):
        raise ProbeUnreadableError("unreadable probe output: expected a JSON object")

    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is None:
        raise ProbeUnreadableError("source has no video stream")

    width = _to_int(video.get("width")) or 0
    height = _to_int(video.get("height")) or 0
    if width <= 0 or height <= 0:
        raise ProbeUnreadableError("video stream has no dimensions")

    fmt = data.get("format") or {}
    duration = _to_float(fmt.get("duration"))
    if duration is None:
        duration = _to_float(video.get("duration")) or 0.0

    fps = (
        parse_frame_rate(video.get("avg_frame_rate"))
        or parse_frame_rate(video.get("r_frame_rate"))
        or 30.0
    )

    return ProbeResult(
        width=width,
        height=height,
        duration_seconds=duration,
        has_audio=audio is not None,
        fps=fps,
        video_codec=video.get("codec_name") or "unknown",
        audio_codec=audio.get("codec_name") if audio else None,
        format_name=fmt.get("format_name") or "unknown",
        bitrate=_to_int(fmt.get("bit_rate")),
        file_size=_to_int(fmt.get("size")) or 0,
    )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a process and reap it; it may already have exited."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Process %s did not exit after kill", process.pid)


async def run_process(cmd: list[str], timeout: float) -> ProcessResult:
    """Run a command to completion with a timeout.

    The process is killed if the timeout expires or the caller is cancelled.

    Raises:
        ToolInvocationError: If the process cannot start, exits non-zero or
            times out
    """
    tool = os.path.basename(cmd[0])
    logger.debug("Running %s", " ".join(cmd))
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ToolInvocationError(tool, 127, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        raise ToolInvocationError(tool, None, timed_out=True, timeout=timeout)
    except asyncio.CancelledError:
        await _terminate(process)
        raise

    result = ProcessResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if result.returncode != 0:
        raise ToolInvocationError(tool, result.returncode, result.stderr)
    return result


class FFmpegToolkit:
    """MediaToolkit backed by the ffmpeg and ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        threads: int = 0,
        x264_preset: str = "medium",
        loglevel: str = "error",
        jpeg_quality: int = 2,
    ):
        """Initialize toolkit.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            threads: Encoder threads, 0 lets ffmpeg decide
            x264_preset: libx264 speed/quality preset
            loglevel: ffmpeg -loglevel value
            jpeg_quality: -q:v value for preview frames (2 is best)
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.threads = threads
        self.x264_preset = x264_preset
        self.loglevel = loglevel
        self.jpeg_quality = jpeg_quality

    @classmethod
    def from_settings(cls, config: Settings) -> "FFmpegToolkit":
        return cls(
            ffmpeg_path=config.FFMPEG_PATH,
            ffprobe_path=config.FFPROBE_PATH,
            threads=config.FFMPEG_THREADS,
            x264_preset=config.X264_PRESET,
            loglevel=config.FFMPEG_LOGLEVEL,
            jpeg_quality=config.PREVIEW_JPEG_QUALITY,
        )

    async def verify(self, timeout: float = 10.0) -> dict[str, str]:
        """Check that both binaries run.

        Returns:
            Mapping of binary path to the first line of its -version output

        Raises:
            ToolInvocationError: If either binary is missing or fails
        """
        versions = {}
        for path in (self.ffmpeg_path, self.ffprobe_path):
            if shutil.which(path) is None:
                raise ToolInvocationError(os.path.basename(path), 127, f"{path} not found")
            result = await run_process([path, "-version"], timeout)
            first_line = result.stdout.splitlines()[0] if result.stdout else ""
            versions[path] = first_line
            logger.info("Found %s", first_line or path)
        return versions

    def build_probe_command(self, source_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source_path,
        ]

    def build_encode_command(
        self,
        source_path: str,
        preset: QualityPreset,
        output_dir: Path,
        segment_duration: int,
    ) -> list[str]:
        """Build the ffmpeg command producing one HLS rendition.

        Args:
            source_path: Source video
            preset: Target quality tier
            output_dir: hls/{preset} directory
            segment_duration: Target segment length in seconds

        Returns:
            FFmpeg command as list of arguments
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-y",
            "-i", source_path,
            "-map", "0:v:0",
            "-map", "0:a:0?",
        ]
        cmd.extend(get_ffmpeg_args_for_preset(preset))
        cmd.extend(["-preset", self.x264_preset])
        # Keyframe every segment boundary so segments cut cleanly
        cmd.extend([
            "-force_key_frames", f"expr:gte(t,n_forced*{segment_duration})",
            "-sc_threshold", "0",
        ])
        if self.threads:
            cmd.extend(["-threads", str(self.threads)])
        cmd.extend([
            "-f", "hls",
            "-hls_time", str(segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
            str(output_dir / SUB_PLAYLIST_NAME),
        ])
        return cmd

    def build_frame_command(
        self,
        source_path: str,
        timestamp_seconds: float,
        width: int,
        height: int,
        output_path: Path,
    ) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-ss", format_timestamp(timestamp_seconds),
            "-i", source_path,
            "-vframes", "1",
            "-vf", (
                f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
            ),
            "-q:v", str(self.jpeg_quality),
            "-y",
            str(output_path),
        ]

    async def probe(self, source_path: str, timeout: float) -> ProbeResult:
        try:
            result = await run_process(self.build_probe_command(source_path), timeout)
        except ToolInvocationError as e:
            raise ProbeUnreadableError(f"probe failed: {e}") from e
        return parse_probe_output(result.stdout)

    async def encode_rendition(
        self,
        source_path: str,
        preset: QualityPreset,
        output_dir: Path,
        segment_duration: int,
        timeout: float,
    ) -> None:
        cmd = self.build_encode_command(source_path, preset, output_dir, segment_duration)
        await run_process(cmd, timeout)

    async def extract_frame(
        self,
        source_path: str,
        timestamp_seconds: float,
        width: int,
        height: int,
        output_path: Path,
        timeout: float,
    ) -> None:
        cmd = self.build_frame_command(
            source_path, timestamp_seconds, width, height, output_path
        )
        await run_process(cmd, timeout)
