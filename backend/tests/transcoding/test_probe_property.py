"""Tests for source probing and ffmpeg command construction."""

import json
import sys
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from abrpipe.modules.transcoding.abr import DEFAULT_QUALITY_PRESETS
from abrpipe.modules.transcoding.errors import (
    ProbeUnreadableError,
    ProbeZeroDurationError,
    ToolInvocationError,
)
from abrpipe.modules.transcoding.ffmpeg import (
    FFmpegToolkit,
    format_timestamp,
    is_codec_supported,
    parse_frame_rate,
    parse_probe_output,
    run_process,
)
from abrpipe.modules.transcoding.models import FailureKind, ProbeResult
from abrpipe.modules.transcoding.probe import probe_source

from fakes import FakeToolkit


def ffprobe_json(
    width=1920, height=1080, duration="12.5", audio=True,
    codec="h264", frame_rate="30000/1001",
) -> str:
    streams = [{
        "codec_type": "video",
        "codec_name": codec,
        "width": width,
        "height": height,
        "avg_frame_rate": frame_rate,
        "r_frame_rate": frame_rate,
    }]
    if audio:
        streams.append({"codec_type": "audio", "codec_name": "aac"})
    fmt = {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "bit_rate": "4500000", "size": "7031250"}
    if duration is not None:
        fmt["duration"] = duration
    return json.dumps({"streams": streams, "format": fmt})


class TestParseProbeOutput:
    """Tests for ffprobe JSON parsing."""

    def test_full_output(self) -> None:
        result = parse_probe_output(ffprobe_json())
        assert result.width == 1920
        assert result.height == 1080
        assert result.duration_seconds == 12.5
        assert result.has_audio
        assert result.video_codec == "h264"
        assert result.audio_codec == "aac"
        assert result.bitrate == 4500000
        assert result.file_size == 7031250
        assert abs(result.fps - 29.97) < 0.01

    def test_source_without_audio(self) -> None:
        result = parse_probe_output(ffprobe_json(audio=False))
        assert not result.has_audio
        assert result.audio_codec is None

    def test_missing_duration_reports_zero(self) -> None:
        assert parse_probe_output(ffprobe_json(duration=None)).duration_seconds == 0.0

    def test_no_video_stream_is_unreadable(self) -> None:
        raw = json.dumps({"streams": [{"codec_type": "audio"}], "format": {"duration": "3"}})
        with pytest.raises(ProbeUnreadableError) as exc_info:
            parse_probe_output(raw)
        assert exc_info.value.kind == FailureKind.PROBE_UNREADABLE

    def test_invalid_json_is_unreadable(self) -> None:
        with pytest.raises(ProbeUnreadableError):
            parse_probe_output("Invalid data found when processing input")

    @pytest.mark.parametrize("raw", ["[]", "null", "42", '"streams"'])
    def test_non_object_json_is_unreadable(self, raw: str) -> None:
        with pytest.raises(ProbeUnreadableError) as exc_info:
            parse_probe_output(raw)
        assert exc_info.value.kind == FailureKind.PROBE_UNREADABLE

    @given(width=st.integers(min_value=1, max_value=8192), height=st.integers(min_value=1, max_value=8192))
    @settings(max_examples=50)
    def test_dimensions_round_trip(self, width: int, height: int) -> None:
        result = parse_probe_output(ffprobe_json(width=width, height=height))
        assert (result.width, result.height) == (width, height)


class TestHelpers:
    """Tests for small parsing and formatting helpers."""

    def test_parse_frame_rate(self) -> None:
        assert parse_frame_rate("25/1") == 25.0
        assert parse_frame_rate("24") == 24.0
        assert parse_frame_rate("0/0") is None
        assert parse_frame_rate("") is None
        assert parse_frame_rate("n/a") is None

    @given(seconds=st.floats(min_value=0, max_value=100 * 3600, allow_nan=False))
    @settings(max_examples=100)
    def test_format_timestamp_round_trips(self, seconds: float) -> None:
        hours, minutes, rest = format_timestamp(seconds).split(":")
        total = int(hours) * 3600 + int(minutes) * 60 + float(rest)
        assert abs(total - seconds) <= 0.0005 + 1e-9

    def test_format_timestamp(self) -> None:
        assert format_timestamp(2.5) == "00:00:02.500"
        assert format_timestamp(3725.042) == "01:02:05.042"

    def test_supported_codecs(self) -> None:
        assert is_codec_supported("h264")
        assert is_codec_supported("HEVC")
        assert not is_codec_supported("prores")
        assert not is_codec_supported(None)


class TestProbeSource:
    """Tests for the probing stage."""

    @pytest.mark.asyncio
    async def test_returns_probe_result(self) -> None:
        toolkit = FakeToolkit(width=1280, height=720, duration=42.0)
        result = await probe_source(toolkit, "in.mp4", timeout=5)
        assert (result.width, result.height, result.duration_seconds) == (1280, 720, 42.0)

    @pytest.mark.asyncio
    async def test_zero_duration_is_rejected(self) -> None:
        toolkit = FakeToolkit(duration=0.0)
        with pytest.raises(ProbeZeroDurationError) as exc_info:
            await probe_source(toolkit, "in.mp4", timeout=5)
        assert exc_info.value.kind == FailureKind.PROBE_ZERO_DURATION

    @pytest.mark.asyncio
    async def test_unsupported_codec_only_warns(self, caplog) -> None:
        toolkit = FakeToolkit(video_codec="prores")
        result = await probe_source(toolkit, "in.mov", timeout=5)
        assert result.video_codec == "prores"
        assert any("not in the supported set" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unreadable_propagates(self) -> None:
        toolkit = FakeToolkit()
        toolkit.probe_error = ProbeUnreadableError("probe failed: ffprobe exited with status 1")
        with pytest.raises(ProbeUnreadableError):
            await probe_source(toolkit, "in.mp4", timeout=5)


class TestCommands:
    """Tests for the commands FFmpegToolkit builds."""

    def test_probe_command(self) -> None:
        cmd = FFmpegToolkit(ffprobe_path="/opt/ffprobe").build_probe_command("in.mp4")
        assert cmd == [
            "/opt/ffprobe", "-v", "error", "-print_format", "json",
            "-show_format", "-show_streams", "in.mp4",
        ]

    def test_encode_command_writes_segmented_hls(self, tmp_path: Path) -> None:
        preset = DEFAULT_QUALITY_PRESETS[1]
        cmd = FFmpegToolkit(threads=4).build_encode_command("in.mp4", preset, tmp_path, 6)
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "in.mp4"
        assert cmd[cmd.index("-f") + 1] == "hls"
        assert cmd[cmd.index("-hls_time") + 1] == "6"
        assert cmd[cmd.index("-hls_playlist_type") + 1] == "vod"
        assert cmd[cmd.index("-hls_segment_filename") + 1] == str(tmp_path / "segment_%03d.ts")
        assert cmd[cmd.index("-threads") + 1] == "4"
        assert cmd[cmd.index("-preset") + 1] == "medium"
        assert cmd[-1] == str(tmp_path / "index.m3u8")
        assert "2800k" in cmd

    def test_frame_command_letterboxes(self, tmp_path: Path) -> None:
        cmd = FFmpegToolkit(jpeg_quality=3).build_frame_command(
            "in.mp4", 2.5, 400, 225, tmp_path / "thumbnail.jpg"
        )
        assert cmd[cmd.index("-ss") + 1] == "00:00:02.500"
        assert cmd[cmd.index("-vframes") + 1] == "1"
        assert "pad=400:225" in cmd[cmd.index("-vf") + 1]
        assert cmd[cmd.index("-q:v") + 1] == "3"


class TestRunProcess:
    """Tests for the subprocess runner."""

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        with pytest.raises(ToolInvocationError) as exc_info:
            await run_process(["/nonexistent/ffmpeg", "-version"], timeout=5)
        assert exc_info.value.returncode == 127
        assert exc_info.value.kind == FailureKind.PROCESS_FAILED

    @pytest.mark.asyncio
    async def test_non_zero_exit_keeps_stderr(self) -> None:
        script = "import sys; sys.stderr.write('moov atom not found\\n'); sys.exit(1)"
        with pytest.raises(ToolInvocationError) as exc_info:
            await run_process([sys.executable, "-c", script], timeout=10)
        assert exc_info.value.returncode == 1
        assert "moov atom not found" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        script = "import time; time.sleep(30)"
        with pytest.raises(ToolInvocationError) as exc_info:
            await run_process([sys.executable, "-c", script], timeout=0.5)
        assert exc_info.value.timed_out
        assert exc_info.value.kind == FailureKind.PROCESS_TIMEOUT

    @pytest.mark.asyncio
    async def test_success_captures_stdout(self) -> None:
        result = await run_process([sys.executable, "-c", "print('ok')"], timeout=10)
        assert result.returncode == 0
        assert result.stdout.strip() == "ok"


def test_probe_result_defaults() -> None:
    result = ProbeResult(width=640, height=360, duration_seconds=1.0, has_audio=False)
    assert result.fps == 30.0
    assert result.audio_codec is None


def write_tool(directory: Path, name: str, body: str) -> str:
    path = directory / name
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(0o755)
    return str(path)


@pytest.mark.skipif(sys.platform == "win32", reason="uses shell scripts as stand-in tools")
class TestVerify:
    """Tests for tool verification."""

    @pytest.mark.asyncio
    async def test_reports_version_lines(self, tmp_path) -> None:
        ffmpeg = write_tool(tmp_path, "ffmpeg", 'echo "ffmpeg version 6.1"')
        ffprobe = write_tool(tmp_path, "ffprobe", 'echo "ffprobe version 6.1"')
        versions = await FFmpegToolkit(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe).verify()
        assert versions == {ffmpeg: "ffmpeg version 6.1", ffprobe: "ffprobe version 6.1"}

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path) -> None:
        ffmpeg = write_tool(tmp_path, "ffmpeg", 'echo "ffmpeg version 6.1"')
        toolkit = FFmpegToolkit(ffmpeg_path=ffmpeg, ffprobe_path=str(tmp_path / "ffprobe"))
        with pytest.raises(ToolInvocationError) as exc_info:
            await toolkit.verify()
        assert exc_info.value.returncode == 127

    @pytest.mark.asyncio
    async def test_failing_binary(self, tmp_path) -> None:
        ffmpeg = write_tool(tmp_path, "ffmpeg", 'echo "libavcodec missing" >&2; exit 1')
        ffprobe = write_tool(tmp_path, "ffprobe", 'echo "ffprobe version 6.1"')
        with pytest.raises(ToolInvocationError) as exc_info:
            await FFmpegToolkit(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe).verify()
        assert exc_info.value.returncode == 1
        assert "libavcodec missing" in exc_info.value.reason
