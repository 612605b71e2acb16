"""Transcoding module: source file to adaptive bitrate HLS package.

Probes the source, selects a quality ladder, encodes each quality into
segmented HLS on a bounded worker pool, extracts preview images and writes
the master playlist.
"""

from abrpipe.modules.transcoding.models import (
    FailureKind,
    JobStatus,
    ProbeResult,
    QualityPreset,
    Rendition,
    RenditionState,
    TranscodeJob,
)
from abrpipe.modules.transcoding.errors import (
    DuplicateJobError,
    JobNotFoundError,
    OutputRootConflictError,
    TranscodeError,
)
from abrpipe.modules.transcoding.abr import DEFAULT_QUALITY_PRESETS, select_qualities
from abrpipe.modules.transcoding.ffmpeg import FFmpegToolkit, MediaToolkit
from abrpipe.modules.transcoding.schemas import JobStatusSnapshot, RenditionStatusInfo
from abrpipe.modules.transcoding.service import TranscodingService

__all__ = [
    # Models
    "FailureKind",
    "JobStatus",
    "ProbeResult",
    "QualityPreset",
    "Rendition",
    "RenditionState",
    "TranscodeJob",
    # Errors
    "DuplicateJobError",
    "JobNotFoundError",
    "OutputRootConflictError",
    "TranscodeError",
    # Ladder
    "DEFAULT_QUALITY_PRESETS",
    "select_qualities",
    # Toolkit
    "FFmpegToolkit",
    "MediaToolkit",
    # Schemas
    "JobStatusSnapshot",
    "RenditionStatusInfo",
    # Service
    "TranscodingService",
]
