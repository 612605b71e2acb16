"""Exception hierarchy for the transcoding pipeline.

Every pipeline error carries a FailureKind so status snapshots can report a
machine-distinguishable reason next to the human-readable message.
"""

from typing import Optional

from abrpipe.modules.transcoding.models import FailureKind, JobStatus


class TranscodeError(Exception):
    """Base exception for transcoding pipeline errors."""

    kind: FailureKind = FailureKind.INTERNAL

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def reason(self) -> str:
        return str(self)


class ProbeError(TranscodeError):
    """The source file could not be inspected."""
    pass


class ProbeUnreadableError(ProbeError):
    """Probe tool failed or reported no usable video stream."""
    kind = FailureKind.PROBE_UNREADABLE


class ProbeZeroDurationError(ProbeError):
    """Source reports a duration of zero or less."""
    kind = FailureKind.PROBE_ZERO_DURATION


class NoApplicablePresetError(TranscodeError):
    """Source is smaller than every preset of the catalog."""
    kind = FailureKind.NO_APPLICABLE_PRESET

    def __init__(self, width: int, height: int):
        super().__init__(
            f"no applicable preset: source resolution {width}x{height} "
            f"is below the smallest quality preset"
        )
        self.width = width
        self.height = height


class NoSuccessfulRenditionsError(TranscodeError):
    """Every selected rendition exhausted its retries."""
    kind = FailureKind.NO_SUCCESSFUL_RENDITIONS

    def __init__(self, message: str = "all renditions failed: no successful renditions"):
        super().__init__(message)


class JobCancelledError(TranscodeError):
    """The job was cancelled by its submitter."""
    kind = FailureKind.CANCELLED

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class ToolInvocationError(TranscodeError):
    """An external process exited non-zero, timed out or could not start."""
    kind = FailureKind.PROCESS_FAILED

    STDERR_LIMIT = 2000

    def __init__(
        self,
        tool: str,
        returncode: Optional[int],
        stderr: str = "",
        timed_out: bool = False,
        timeout: Optional[float] = None,
    ):
        self.tool = tool
        self.returncode = returncode
        self.stderr = (stderr or "").strip()[-self.STDERR_LIMIT:]
        self.timed_out = timed_out
        if timed_out:
            message = f"{tool} timed out after {timeout or 0:g}s"
            kind = FailureKind.PROCESS_TIMEOUT
        else:
            message = f"{tool} exited with status {returncode}"
            if self.stderr:
                message = f"{message}: {self.stderr.splitlines()[-1]}"
            kind = FailureKind.PROCESS_FAILED
        super().__init__(message, kind)


class RenditionOutputError(TranscodeError):
    """Encoder finished but the sub-manifest is missing or inconsistent."""
    kind = FailureKind.OUTPUT_INVALID


class PreviewGenerationError(TranscodeError):
    """A preview frame could not be extracted or decoded."""
    kind = FailureKind.PREVIEW_FAILED


class RetryExhaustedError(TranscodeError):
    """An operation failed on every attempt allowed by its retry policy."""

    def __init__(self, operation_name: str, attempts: int, last_error: BaseException):
        kind = getattr(last_error, "kind", FailureKind.INTERNAL)
        super().__init__(
            f"{operation_name} failed after {attempts} attempt(s): {last_error}",
            kind,
        )
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error


class InvalidTransitionError(TranscodeError):
    """A job was asked to skip, rewind or leave a terminal stage."""

    def __init__(self, current: JobStatus, requested: JobStatus):
        super().__init__(f"cannot move job from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class JobNotFoundError(TranscodeError):
    """No job with the given id was submitted."""

    def __init__(self, job_id: str):
        super().__init__(f"transcode job {job_id} not found")
        self.job_id = job_id


class DuplicateJobError(TranscodeError):
    """A job with the given id already exists."""

    def __init__(self, job_id: str):
        super().__init__(f"transcode job {job_id} already exists")
        self.job_id = job_id


class OutputRootConflictError(TranscodeError):
    """Another job already writes to the requested output directory."""

    def __init__(self, output_root: str, owner_job_id: str):
        super().__init__(f"output root {output_root} is already used by job {owner_job_id}")
        self.output_root = output_root
        self.owner_job_id = owner_job_id
