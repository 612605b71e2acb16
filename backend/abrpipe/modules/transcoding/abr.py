"""Quality ladder catalog and selection.

The catalog is ordered from the highest to the lowest resolution. A source
only gets the tiers it can fill without upscaling.
"""

from typing import Iterable, Optional, Sequence

from abrpipe.core.config import Settings
from abrpipe.modules.transcoding.errors import NoApplicablePresetError
from abrpipe.modules.transcoding.models import QualityPreset


DEFAULT_QUALITY_PRESETS: tuple[QualityPreset, ...] = (
    QualityPreset(
        name="1080p",
        width=1920,
        height=1080,
        video_bitrate_kbps=5000,
        max_bitrate_kbps=5000,
        buffer_size_kbps=10000,
        audio_bitrate_kbps=128,
        encoder_profile="high",
        encoder_level="4.0",
    ),
    QualityPreset(
        name="720p",
        width=1280,
        height=720,
        video_bitrate_kbps=2800,
        max_bitrate_kbps=2800,
        buffer_size_kbps=5600,
        audio_bitrate_kbps=128,
        encoder_profile="high",
        encoder_level="3.1",
    ),
    QualityPreset(
        name="480p",
        width=854,
        height=480,
        video_bitrate_kbps=1400,
        max_bitrate_kbps=1400,
        buffer_size_kbps=2800,
        audio_bitrate_kbps=96,
        encoder_profile="main",
        encoder_level="3.0",
    ),
    QualityPreset(
        name="360p",
        width=640,
        height=360,
        video_bitrate_kbps=800,
        max_bitrate_kbps=800,
        buffer_size_kbps=1600,
        audio_bitrate_kbps=96,
        encoder_profile="baseline",
        encoder_level="3.0",
    ),
)


def validate_catalog(catalog: Sequence[QualityPreset]) -> tuple[bool, list[str]]:
    """Validate a quality catalog.

    Args:
        catalog: Presets in ladder order

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not catalog:
        errors.append("Quality catalog must have at least one preset")

    names = [preset.name for preset in catalog]
    if len(set(names)) != len(names):
        errors.append("Preset names must be unique")

    previous: Optional[QualityPreset] = None
    for preset in catalog:
        if not preset.name or "/" in preset.name or preset.name in (".", ".."):
            errors.append(f"Preset name {preset.name!r} is not a valid directory name")
        if preset.max_bitrate_kbps < preset.video_bitrate_kbps:
            errors.append(f"Max bitrate must be >= video bitrate for {preset.name}")
        if previous is not None and (
            preset.width >= previous.width or preset.height >= previous.height
        ):
            errors.append(
                "Presets must be ordered by strictly decreasing width and height "
                f"({previous.name} -> {preset.name})"
            )
        previous = preset

    return len(errors) == 0, errors


def load_catalog(config: Settings) -> tuple[QualityPreset, ...]:
    """Build the quality catalog from settings.

    Falls back to DEFAULT_QUALITY_PRESETS when QUALITY_PRESETS is unset.

    Raises:
        ValueError: If the configured catalog breaks the ladder ordering
    """
    if not config.QUALITY_PRESETS:
        return DEFAULT_QUALITY_PRESETS

    catalog = tuple(
        QualityPreset(**entry.model_dump()) for entry in config.QUALITY_PRESETS
    )
    is_valid, errors = validate_catalog(catalog)
    if not is_valid:
        raise ValueError("Invalid QUALITY_PRESETS: " + "; ".join(errors))
    return catalog


def select_qualities(
    source_width: int,
    source_height: int,
    catalog: Iterable[QualityPreset] = DEFAULT_QUALITY_PRESETS,
) -> list[QualityPreset]:
    """Choose the presets a source can fill without upscaling.

    A preset is included iff the source is at least as wide and at least as
    tall as the preset. Catalog order is preserved, so a larger source always
    selects a superset of what a smaller source selects.

    Args:
        source_width: Source width in pixels
        source_height: Source height in pixels
        catalog: Presets ordered from highest to lowest resolution

    Returns:
        Non-empty list of applicable presets in ladder order

    Raises:
        NoApplicablePresetError: If the source is below every preset
    """
    selected = [
        preset
        for preset in catalog
        if source_width >= preset.width and source_height >= preset.height
    ]
    if not selected:
        raise NoApplicablePresetError(source_width, source_height)
    return selected


def get_ffmpeg_args_for_preset(preset: QualityPreset) -> list[str]:
    """Get FFmpeg video/audio arguments for one quality tier.

    The picture is scaled to fit the target box and padded (letterboxed or
    pillarboxed) so the output is exactly width x height.

    Args:
        preset: Quality preset

    Returns:
        List of FFmpeg arguments
    """
    width, height = preset.width, preset.height

    return [
        "-vf", (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
        ),
        "-c:v", "libx264",
        "-profile:v", preset.encoder_profile,
        "-level", preset.encoder_level,
        "-b:v", f"{preset.video_bitrate_kbps}k",
        "-maxrate", f"{preset.max_bitrate_kbps}k",
        "-bufsize", f"{preset.buffer_size_kbps}k",
        "-c:a", "aac",
        "-b:a", f"{preset.audio_bitrate_kbps}k",
        "-ar", "44100",
        "-ac", "2",
    ]
