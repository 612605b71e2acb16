"""In-memory stand-in for ffmpeg/ffprobe used by the transcoding tests.

FakeToolkit writes real playlists, segment files and JPEGs so the
pipeline's own file checks run unchanged.
"""

import asyncio
from pathlib import Path
from typing import Optional

from PIL import Image

from abrpipe.core.config import Settings
from abrpipe.modules.transcoding.errors import ToolInvocationError
from abrpipe.modules.transcoding.models import ProbeResult, QualityPreset


def media_playlist(segment_names: list[str], segment_duration: int = 6) -> str:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{segment_duration}",
        "#EXT-X-MEDIA-SEQUENCE:0",
        "#EXT-X-PLAYLIST-TYPE:VOD",
    ]
    for name in segment_names:
        lines.append(f"#EXTINF:{segment_duration:.6f},")
        lines.append(name)
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class FakeToolkit:
    """In-memory MediaToolkit with scriptable failures."""

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        duration: float = 10.0,
        has_audio: bool = True,
        video_codec: str = "h264",
        segments: int = 3,
    ):
        self.probe_result = ProbeResult(
            width=width,
            height=height,
            duration_seconds=duration,
            has_audio=has_audio,
            video_codec=video_codec,
        )
        self.probe_error: Optional[Exception] = None
        self.probe_delay = 0.0
        self.segments = segments

        # preset name -> failing attempts left; -1 fails forever
        self.encode_failures: dict[str, int] = {}
        self.timeout_presets: set[str] = set()
        self.missing_segment_presets: set[str] = set()
        self.hang_presets: set[str] = set()
        self.encode_delay = 0.0

        # preview file names ("thumbnail.jpg", "poster.jpg")
        self.frame_failures: set[str] = set()
        self.corrupt_frames: set[str] = set()
        self.hang_frames = False

        self.encode_calls: list[str] = []
        self.frame_calls: list[tuple[str, float, int, int]] = []
        self.active_encodes = 0
        self.max_active_encodes = 0
        self.hanging = asyncio.Event()

    async def probe(self, source_path: str, timeout: float) -> ProbeResult:
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if self.probe_error is not None:
            raise self.probe_error
        return self.probe_result

    async def encode_rendition(
        self,
        source_path: str,
        preset: QualityPreset,
        output_dir: Path,
        segment_duration: int,
        timeout: float,
    ) -> None:
        self.encode_calls.append(preset.name)
        self.active_encodes += 1
        self.max_active_encodes = max(self.max_active_encodes, self.active_encodes)
        try:
            # Partial output exists before the encoder finishes
            (output_dir / "segment_000.ts").write_bytes(b"\x47" * 188)

            if preset.name in self.hang_presets:
                self.hanging.set()
                await asyncio.sleep(3600)

            await asyncio.sleep(self.encode_delay)

            failures_left = self.encode_failures.get(preset.name, 0)
            if failures_left != 0:
                if failures_left > 0:
                    self.encode_failures[preset.name] = failures_left - 1
                raise ToolInvocationError("ffmpeg", 1, "simulated encoder failure")

            if preset.name in self.timeout_presets:
                raise ToolInvocationError("ffmpeg", None, timed_out=True, timeout=timeout)

            names = [f"segment_{index:03d}.ts" for index in range(self.segments)]
            for name in names:
                (output_dir / name).write_bytes(b"\x47" * 188)
            if preset.name in self.missing_segment_presets:
                names.append(f"segment_{self.segments:03d}.ts")
            (output_dir / "index.m3u8").write_text(
                media_playlist(names, segment_duration), encoding="utf-8"
            )
        finally:
            self.active_encodes -= 1

    async def extract_frame(
        self,
        source_path: str,
        timestamp_seconds: float,
        width: int,
        height: int,
        output_path: Path,
        timeout: float,
    ) -> None:
        self.frame_calls.append((output_path.name, timestamp_seconds, width, height))
        if self.hang_frames:
            output_path.write_bytes(b"\xff\xd8partial")
            await asyncio.sleep(3600)
        if output_path.name in self.frame_failures:
            raise ToolInvocationError("ffmpeg", 1, "Output file is empty, nothing was encoded")
        if output_path.name in self.corrupt_frames:
            output_path.write_bytes(b"not a jpeg")
            return
        Image.new("RGB", (width, height), color=(16, 16, 16)).save(output_path, "JPEG")


def make_settings(**overrides) -> Settings:
    """Settings with instant, unjittered rendition retries."""
    values = dict(
        WORKER_POOL_SIZE=2,
        RENDITION_MAX_ATTEMPTS=3,
        RENDITION_RETRY_INITIAL_DELAY=0.0,
        RENDITION_RETRY_MAX_DELAY=0.0,
        RENDITION_RETRY_JITTER=False,
        PREVIEWS_DURING_ENCODING=True,
        QUALITY_PRESETS=None,
    )
    values.update(overrides)
    return Settings(**values)
