"""Preview image generation.

Extracts a thumbnail and a poster frame from the source. Preview failures
are recorded on the result and never fail the job.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from abrpipe.core.metrics import PREVIEW_FAILURES_TOTAL
from abrpipe.modules.transcoding.errors import PreviewGenerationError, TranscodeError
from abrpipe.modules.transcoding.ffmpeg import MediaToolkit
from abrpipe.modules.transcoding.models import PreviewImage, PreviewResult
from abrpipe.modules.transcoding.storage import OutputLayout, remove_file

logger = logging.getLogger(__name__)

THUMBNAIL_POSITION = 0.25
POSTER_POSITION = 0.50


@dataclass(frozen=True)
class PreviewSpec:
    """Where and how large to capture one preview frame."""
    kind: str
    position: float  # fraction of the source duration
    width: int
    height: int
    path: Path

    def timestamp(self, duration_seconds: float) -> float:
        return duration_seconds * self.position


def default_preview_specs(
    layout: OutputLayout,
    thumbnail_size: tuple[int, int] = (400, 225),
    poster_size: tuple[int, int] = (1280, 720),
) -> list[PreviewSpec]:
    return [
        PreviewSpec("thumbnail", THUMBNAIL_POSITION, *thumbnail_size, layout.thumbnail_path),
        PreviewSpec("poster", POSTER_POSITION, *poster_size, layout.poster_path),
    ]


def verify_image(path: Path) -> tuple[int, int]:
    """Check that path holds a decodable JPEG.

    Returns:
        Tuple of (width, height)

    Raises:
        PreviewGenerationError: If the file is missing or not a JPEG image
    """
    if not path.is_file():
        raise PreviewGenerationError(f"{path.name} was not created")
    try:
        with Image.open(path) as image:
            image.verify()
            if image.format != "JPEG":
                raise PreviewGenerationError(
                    f"{path.name} is {image.format}, expected JPEG"
                )
            return image.size
    except (OSError, SyntaxError, ValueError) as e:
        raise PreviewGenerationError(f"{path.name} is not a valid image: {e}") from e


async def _generate_one(
    toolkit: MediaToolkit,
    source_path: str,
    duration_seconds: float,
    spec: PreviewSpec,
    timeout: float,
) -> PreviewImage:
    timestamp = spec.timestamp(duration_seconds)
    await toolkit.extract_frame(
        source_path, timestamp, spec.width, spec.height, spec.path, timeout
    )
    width, height = verify_image(spec.path)
    return PreviewImage(
        kind=spec.kind,
        path=str(spec.path),
        timestamp_seconds=timestamp,
        width=width,
        height=height,
    )


async def generate_previews(
    toolkit: MediaToolkit,
    source_path: str,
    duration_seconds: float,
    layout: OutputLayout,
    *,
    timeout: float,
    thumbnail_size: tuple[int, int] = (400, 225),
    poster_size: tuple[int, int] = (1280, 720),
) -> PreviewResult:
    """Write thumbnail.jpg and poster.jpg into the output root.

    The thumbnail is taken at 25% of the duration and the poster at 50%,
    each letterboxed into its target box.

    Args:
        toolkit: Media tool implementation
        source_path: Source video
        duration_seconds: Probed source duration
        layout: Output layout of the job
        timeout: Seconds allowed per frame extraction
        thumbnail_size: Thumbnail box (width, height)
        poster_size: Poster box (width, height)

    Returns:
        PreviewResult listing produced images and per-kind errors
    """
    result = PreviewResult()
    layout.output_root.mkdir(parents=True, exist_ok=True)

    for spec in default_preview_specs(layout, thumbnail_size, poster_size):
        try:
            image = await _generate_one(toolkit, source_path, duration_seconds, spec, timeout)
        except asyncio.CancelledError:
            remove_file(spec.path)
            raise
        except (TranscodeError, OSError) as e:
            remove_file(spec.path)
            result.errors[spec.kind] = str(e)
            PREVIEW_FAILURES_TOTAL.labels(kind=spec.kind).inc()
            logger.warning("Failed to generate %s: %s", spec.kind, e)
            continue

        setattr(result, spec.kind, image)
        logger.info("Generated %s at %.2fs (%dx%d)", spec.kind,
                    image.timestamp_seconds, image.width, image.height)

    return result
