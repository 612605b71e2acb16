"""Pydantic schemas for the transcoding service.

Snapshots are frozen copies of a job's state; readers never see the mutable
TranscodeJob the orchestrator owns.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from abrpipe.modules.transcoding.models import (
    FailureKind,
    JobStatus,
    PreviewImage,
    Rendition,
    RenditionState,
    TERMINAL_STATUSES,
    TranscodeJob,
)


def _to_datetime(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class TranscodeJobCreate(BaseModel):
    """Schema for submitting a transcoding job."""
    source_path: str = Field(..., min_length=1, description="Path to source video file")
    output_root: str = Field(..., min_length=1, description="Directory receiving the HLS package")
    job_id: Optional[str] = Field(None, min_length=1, description="Caller-supplied job id")


class RenditionStatusInfo(BaseModel):
    """Outcome of one preset within a snapshot."""
    model_config = ConfigDict(frozen=True)

    state: RenditionState
    reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    attempts: int = 0
    segment_count: int = 0
    sub_manifest_path: Optional[str] = None

    @classmethod
    def from_rendition(cls, rendition: Rendition) -> "RenditionStatusInfo":
        return cls(
            state=rendition.state,
            reason=rendition.reason,
            failure_kind=rendition.failure_kind,
            attempts=rendition.attempts,
            segment_count=rendition.segment_count,
            sub_manifest_path=rendition.sub_manifest_path,
        )


class PreviewInfo(BaseModel):
    """A preview image within a snapshot."""
    model_config = ConfigDict(frozen=True)

    path: str
    timestamp_seconds: float
    width: int
    height: int

    @classmethod
    def from_image(cls, image: Optional[PreviewImage]) -> Optional["PreviewInfo"]:
        if image is None:
            return None
        return cls(
            path=image.path,
            timestamp_seconds=image.timestamp_seconds,
            width=image.width,
            height=image.height,
        )


class JobStatusSnapshot(BaseModel):
    """Immutable view of a job at one point in time."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    source_path: str
    output_root: str
    status: JobStatus
    progress_percent: int = Field(..., ge=0, le=100)
    selected_qualities: tuple[str, ...] = ()
    rendition_results: dict[str, RenditionStatusInfo] = Field(default_factory=dict)
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    master_manifest_path: Optional[str] = None
    thumbnail: Optional[PreviewInfo] = None
    poster: Optional[PreviewInfo] = None
    preview_errors: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def failed_qualities(self) -> list[str]:
        return [
            name for name, info in self.rendition_results.items()
            if info.state == RenditionState.FAILED
        ]

    @classmethod
    def from_job(cls, job: TranscodeJob) -> "JobStatusSnapshot":
        previews = job.previews
        return cls(
            job_id=job.id,
            source_path=job.source_path,
            output_root=job.output_root,
            status=job.status,
            progress_percent=job.progress_percent,
            selected_qualities=tuple(job.selected_qualities),
            rendition_results={
                name: RenditionStatusInfo.from_rendition(job.renditions[name])
                for name in job.selected_qualities
            },
            failure_reason=job.failure_reason,
            failure_kind=job.failure_kind,
            master_manifest_path=job.master_manifest_path,
            thumbnail=PreviewInfo.from_image(previews.thumbnail) if previews else None,
            poster=PreviewInfo.from_image(previews.poster) if previews else None,
            preview_errors=dict(previews.errors) if previews else {},
            created_at=_to_datetime(job.created_at),
            started_at=_to_datetime(job.started_at),
            completed_at=_to_datetime(job.completed_at),
        )
