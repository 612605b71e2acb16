"""Rendition encoding stage.

One preset is encoded into hls/{preset}/ with retries. A failed preset never
affects its siblings; it only ends up Failed with a reason.
"""

import logging
import time

from abrpipe.core.metrics import (
    RENDITION_ATTEMPTS_TOTAL,
    RENDITION_ENCODE_DURATION_SECONDS,
    RENDITION_RESULTS_TOTAL,
)
from abrpipe.modules.transcoding.errors import RetryExhaustedError, TranscodeError
from abrpipe.modules.transcoding.ffmpeg import MediaToolkit
from abrpipe.modules.transcoding.models import FailureKind, QualityPreset, Rendition
from abrpipe.modules.transcoding.playlist import MediaPlaylist, verify_media_playlist
from abrpipe.modules.transcoding.pool import WorkerPool
from abrpipe.modules.transcoding.retry import RetryConfig, retry_async
from abrpipe.modules.transcoding.storage import (
    OutputLayout,
    remove_directory,
    reset_directory,
)

logger = logging.getLogger(__name__)


async def encode_rendition(
    toolkit: MediaToolkit,
    source_path: str,
    preset: QualityPreset,
    layout: OutputLayout,
    *,
    segment_duration: int,
    retry_config: RetryConfig,
    timeout: float,
    pool: WorkerPool,
) -> Rendition:
    """Encode one quality tier, retrying failed attempts.

    Every attempt starts from an empty preset directory and holds a pool slot
    only while the encoder runs. An attempt fails when the encoder exits
    non-zero, times out, or leaves a sub-manifest that is missing or lists
    segments that are not on disk.

    Args:
        toolkit: Media tool implementation
        source_path: Source video
        preset: Quality tier to produce
        layout: Output layout of the job
        segment_duration: HLS segment length in seconds
        retry_config: Attempt cap and backoff
        timeout: Seconds allowed per encoder run
        pool: Shared encode slots

    Returns:
        Rendition in Succeeded or Failed state. A Failed rendition leaves no
        files behind.

    Raises:
        asyncio.CancelledError: Propagated after the preset's partial output
            is removed
    """
    rendition = Rendition(preset=preset)
    output_dir = layout.rendition_dir(preset.name)
    playlist_path = layout.sub_playlist_path(preset.name)
    started = time.monotonic()

    async def attempt(number: int) -> MediaPlaylist:
        rendition.attempts = number
        reset_directory(output_dir)
        async with pool.slot():
            logger.info("Encoding %s (attempt %d/%d)", preset.name, number,
                        retry_config.max_attempts)
            await toolkit.encode_rendition(
                source_path, preset, output_dir, segment_duration, timeout
            )
        playlist = verify_media_playlist(playlist_path)
        RENDITION_ATTEMPTS_TOTAL.labels(preset=preset.name, outcome="succeeded").inc()
        return playlist

    def on_failure(number: int, error: BaseException) -> None:
        kind = getattr(error, "kind", FailureKind.INTERNAL)
        RENDITION_ATTEMPTS_TOTAL.labels(preset=preset.name, outcome=kind.value).inc()

    try:
        playlist = await retry_async(
            attempt,
            retry_config,
            operation_name=f"encode {preset.name}",
            retry_on=(TranscodeError, OSError),
            on_failure=on_failure,
        )
    except RetryExhaustedError as e:
        remove_directory(output_dir)
        rendition.mark_failed(e.reason, e.kind)
        rendition.encode_seconds = time.monotonic() - started
        RENDITION_RESULTS_TOTAL.labels(preset=preset.name, state="failed").inc()
        logger.error("Rendition %s failed: %s", preset.name, e.reason)
        return rendition
    except BaseException:
        remove_directory(output_dir)
        raise

    rendition.mark_succeeded(
        segment_count=len(playlist.segments),
        sub_manifest_path=layout.relative_sub_playlist(preset.name),
    )
    rendition.encode_seconds = time.monotonic() - started
    RENDITION_RESULTS_TOTAL.labels(preset=preset.name, state="succeeded").inc()
    RENDITION_ENCODE_DURATION_SECONDS.labels(preset=preset.name).observe(
        rendition.encode_seconds
    )
    logger.info(
        "Rendition %s succeeded: %d segments in %.1fs after %d attempt(s)",
        preset.name, rendition.segment_count, rendition.encode_seconds,
        rendition.attempts,
    )
    return rendition
