"""Domain models for the transcoding pipeline.

TranscodeJob is owned and mutated by exactly one orchestrator task; everything
else observes it through immutable status snapshots (see schemas.py).
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    """Stage of a transcoding job."""
    QUEUED = "queued"
    PROBING = "probing"
    SELECTING_LADDER = "selecting_ladder"
    ENCODING = "encoding"
    GENERATING_PREVIEWS = "generating_previews"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Every non-terminal stage may also fall through to FAILED.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROBING, JobStatus.FAILED}),
    JobStatus.PROBING: frozenset({JobStatus.SELECTING_LADDER, JobStatus.FAILED}),
    JobStatus.SELECTING_LADDER: frozenset({JobStatus.ENCODING, JobStatus.FAILED}),
    JobStatus.ENCODING: frozenset({JobStatus.GENERATING_PREVIEWS, JobStatus.FAILED}),
    JobStatus.GENERATING_PREVIEWS: frozenset({JobStatus.ASSEMBLING, JobStatus.FAILED}),
    JobStatus.ASSEMBLING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class FailureKind(str, Enum):
    """Machine-distinguishable reason a job or rendition failed."""
    PROBE_UNREADABLE = "probe_unreadable"
    PROBE_ZERO_DURATION = "probe_zero_duration"
    NO_APPLICABLE_PRESET = "no_applicable_preset"
    NO_SUCCESSFUL_RENDITIONS = "no_successful_renditions"
    CANCELLED = "cancelled"
    PROCESS_FAILED = "process_failed"
    PROCESS_TIMEOUT = "process_timeout"
    OUTPUT_INVALID = "output_invalid"
    PREVIEW_FAILED = "preview_failed"
    INTERNAL = "internal"


class RenditionState(str, Enum):
    """Outcome of one quality tier."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class QualityPreset:
    """A named resolution/bitrate tier of the quality catalog.

    Bitrates are in kbps, as handed to the encoder.
    """
    name: str
    width: int
    height: int
    video_bitrate_kbps: int
    max_bitrate_kbps: int
    buffer_size_kbps: int
    audio_bitrate_kbps: int
    encoder_profile: str = "main"
    encoder_level: str = "3.1"

    @property
    def bandwidth_bps(self) -> int:
        """Peak bandwidth advertised in the master manifest."""
        return (self.video_bitrate_kbps + self.audio_bitrate_kbps) * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ProbeResult:
    """Media information extracted from the source file."""
    width: int
    height: int
    duration_seconds: float
    has_audio: bool
    fps: float = 30.0
    video_codec: str = "unknown"
    audio_codec: Optional[str] = None
    format_name: str = "unknown"
    bitrate: Optional[int] = None  # bps
    file_size: int = 0  # bytes


@dataclass
class Rendition:
    """One attempted quality tier of a job."""
    preset: QualityPreset
    state: RenditionState = RenditionState.PENDING
    attempts: int = 0
    segment_count: int = 0
    sub_manifest_path: Optional[str] = None  # relative to the hls/ directory
    reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    encode_seconds: float = 0.0

    @property
    def name(self) -> str:
        return self.preset.name

    @property
    def succeeded(self) -> bool:
        return self.state == RenditionState.SUCCEEDED

    def mark_succeeded(self, segment_count: int, sub_manifest_path: str) -> None:
        self.state = RenditionState.SUCCEEDED
        self.segment_count = segment_count
        self.sub_manifest_path = sub_manifest_path
        self.reason = None
        self.failure_kind = None

    def mark_failed(self, reason: str, kind: FailureKind) -> None:
        self.state = RenditionState.FAILED
        self.segment_count = 0
        self.sub_manifest_path = None
        self.reason = reason
        self.failure_kind = kind


@dataclass(frozen=True)
class PreviewImage:
    """A still frame written next to the HLS package."""
    kind: str  # "thumbnail" or "poster"
    path: str
    timestamp_seconds: float
    width: int
    height: int


@dataclass
class PreviewResult:
    """Outcome of preview generation; failures never fail the job."""
    thumbnail: Optional[PreviewImage] = None
    poster: Optional[PreviewImage] = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def images(self) -> list[PreviewImage]:
        return [image for image in (self.thumbnail, self.poster) if image is not None]


@dataclass
class TranscodeJob:
    """A single source-file submission and its pipeline state."""

    source_path: str
    output_root: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    status: JobStatus = JobStatus.QUEUED
    selected_qualities: list[str] = field(default_factory=list)
    renditions: dict[str, Rendition] = field(default_factory=dict)
    progress_percent: int = 0
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    probe: Optional[ProbeResult] = None
    previews: Optional[PreviewResult] = None
    master_manifest_path: Optional[str] = None

    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    def __repr__(self) -> str:
        return f"<TranscodeJob {self.id} - {self.status.value} - {self.progress_percent}%>"

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, status: JobStatus) -> None:
        """Move to the next stage, enforcing the stage order.

        Raises:
            InvalidTransitionError: If the move skips or rewinds a stage
        """
        from abrpipe.modules.transcoding.errors import InvalidTransitionError

        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, status)
        if self.started_at is None and status != JobStatus.QUEUED:
            self.started_at = time.time()
        self.status = status
        self.updated_at = time.time()
        if status in TERMINAL_STATUSES:
            self.completed_at = self.updated_at

    def advance_progress(self, percent: int) -> None:
        """Raise progress to percent; lower values are ignored."""
        percent = max(0, min(100, int(percent)))
        if percent > self.progress_percent:
            self.progress_percent = percent
            self.updated_at = time.time()

    def select_qualities(self, presets: list[QualityPreset]) -> None:
        self.selected_qualities = [preset.name for preset in presets]
        self.renditions = {preset.name: Rendition(preset=preset) for preset in presets}
        self.updated_at = time.time()

    def record_rendition(self, rendition: Rendition) -> None:
        self.renditions[rendition.name] = rendition
        self.updated_at = time.time()

    def successful_renditions(self) -> list[Rendition]:
        """Succeeded renditions in ladder order."""
        return [
            self.renditions[name]
            for name in self.selected_qualities
            if self.renditions[name].succeeded
        ]

    def fail(self, reason: str, kind: FailureKind) -> None:
        self.failure_reason = reason
        self.failure_kind = kind
        self.transition_to(JobStatus.FAILED)

    def get_elapsed_time(self) -> float:
        """Seconds since the job left the queue."""
        if self.started_at is None:
            return 0.0
        end_time = self.completed_at or time.time()
        return end_time - self.started_at
