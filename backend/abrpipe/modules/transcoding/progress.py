"""Job progress accounting.

Each stage owns a fixed share of 100 percent. Encoding's share is split
evenly across the selected presets and credited as each one resolves,
whether it succeeded or failed.
"""

from abrpipe.modules.transcoding.models import JobStatus

STAGE_WEIGHTS: dict[JobStatus, int] = {
    JobStatus.PROBING: 5,
    JobStatus.SELECTING_LADDER: 5,
    JobStatus.ENCODING: 70,
    JobStatus.GENERATING_PREVIEWS: 10,
    JobStatus.ASSEMBLING: 10,
}

_STAGE_ORDER = (
    JobStatus.PROBING,
    JobStatus.SELECTING_LADDER,
    JobStatus.ENCODING,
    JobStatus.GENERATING_PREVIEWS,
    JobStatus.ASSEMBLING,
)


def progress_before(stage: JobStatus) -> int:
    """Percentage accumulated by every stage that precedes stage."""
    total = 0
    for candidate in _STAGE_ORDER:
        if candidate == stage:
            return total
        total += STAGE_WEIGHTS[candidate]
    return 100


def progress_after(stage: JobStatus) -> int:
    """Percentage once stage has fully completed."""
    return progress_before(stage) + STAGE_WEIGHTS.get(stage, 0)


def encoding_progress(resolved: int, total: int) -> int:
    """Percentage once resolved of total renditions have finished.

    Args:
        resolved: Renditions that reached Succeeded or Failed
        total: Renditions selected for the job

    Returns:
        Integer percentage within the encoding band
    """
    base = progress_before(JobStatus.ENCODING)
    if total <= 0:
        return base
    resolved = max(0, min(resolved, total))
    return base + (STAGE_WEIGHTS[JobStatus.ENCODING] * resolved) // total
