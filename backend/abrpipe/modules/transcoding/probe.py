"""Source inspection stage."""

import logging

from abrpipe.modules.transcoding.errors import ProbeZeroDurationError
from abrpipe.modules.transcoding.ffmpeg import MediaToolkit, is_codec_supported
from abrpipe.modules.transcoding.models import ProbeResult

logger = logging.getLogger(__name__)


async def probe_source(
    toolkit: MediaToolkit,
    source_path: str,
    timeout: float,
) -> ProbeResult:
    """Read resolution, duration and audio presence of a source file.

    Args:
        toolkit: Media tool implementation
        source_path: Source video
        timeout: Seconds allowed for the probe process

    Returns:
        ProbeResult with positive width, height and duration

    Raises:
        ProbeUnreadableError: If the probe fails or finds no video stream
        ProbeZeroDurationError: If the reported duration is not positive
    """
    result = await toolkit.probe(source_path, timeout)

    if result.duration_seconds <= 0:
        raise ProbeZeroDurationError(
            f"source reports non-positive duration ({result.duration_seconds:g}s)"
        )

    if not is_codec_supported(result.video_codec):
        logger.warning(
            "Source video codec %s is not in the supported set; encoding may fail",
            result.video_codec,
        )

    logger.info(
        "Probed source: %dx%d, %.2fs, %.2f fps, codec=%s, audio=%s",
        result.width, result.height, result.duration_seconds, result.fps,
        result.video_codec, result.audio_codec or "none",
    )
    return result
