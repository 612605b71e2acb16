"""Service layer for transcoding operations.

TranscodingService is the entry point an embedding application uses: it
accepts submissions, runs each job on its own asyncio task, and serves
status snapshots. Finished jobs are forgotten once they are older than
JOB_RETENTION_SECONDS, which also frees their output root.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Iterable, Optional

from abrpipe.core.config import Settings, settings as default_settings
from abrpipe.core.metrics import set_app_info
from abrpipe.modules.transcoding.abr import load_catalog, validate_catalog
from abrpipe.modules.transcoding.errors import (
    DuplicateJobError,
    JobNotFoundError,
    OutputRootConflictError,
)
from abrpipe.modules.transcoding.ffmpeg import FFmpegToolkit, MediaToolkit
from abrpipe.modules.transcoding.models import QualityPreset, TranscodeJob
from abrpipe.modules.transcoding.orchestrator import JobOrchestrator
from abrpipe.modules.transcoding.pool import WorkerPool
from abrpipe.modules.transcoding.schemas import JobStatusSnapshot, TranscodeJobCreate
from abrpipe.modules.transcoding.storage import normalize_root

logger = logging.getLogger(__name__)


class TranscodingService:
    """Service for managing transcoding jobs within one process."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        toolkit: Optional[MediaToolkit] = None,
        catalog: Optional[Iterable[QualityPreset]] = None,
        pool: Optional[WorkerPool] = None,
    ):
        """Initialize service.

        Args:
            config: Settings, defaults to the environment-loaded settings
            toolkit: Media tool implementation, defaults to ffmpeg/ffprobe
            catalog: Quality catalog, defaults to the configured catalog
            pool: Encode slots, defaults to WORKER_POOL_SIZE slots

        Raises:
            ValueError: If the catalog violates the ladder ordering
        """
        self.config = config or default_settings
        self.toolkit = toolkit or FFmpegToolkit.from_settings(self.config)
        if catalog is None:
            self.catalog = load_catalog(self.config)
        else:
            self.catalog = tuple(catalog)
            is_valid, errors = validate_catalog(self.catalog)
            if not is_valid:
                raise ValueError("Invalid quality catalog: " + "; ".join(errors))
        self.pool = pool or WorkerPool(self.config.WORKER_POOL_SIZE)

        self._jobs: dict[str, TranscodeJob] = {}
        self._orchestrators: dict[str, JobOrchestrator] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._snapshots: dict[str, JobStatusSnapshot] = {}
        self._history: dict[str, deque] = {}
        self._roots: dict[str, str] = {}

        set_app_info(self.config.VERSION, self.config.ENVIRONMENT)

    async def submit(
        self,
        source_path: str,
        output_root: str,
        job_id: Optional[str] = None,
    ) -> str:
        """Submit a source file and start transcoding it.

        Args:
            source_path: Source video
            output_root: Directory that receives the package
            job_id: Optional caller-supplied id

        Returns:
            The job id

        Raises:
            DuplicateJobError: If job_id was already submitted
            OutputRootConflictError: If another job owns output_root
        """
        request = TranscodeJobCreate(
            source_path=source_path, output_root=output_root, job_id=job_id
        )
        self._evict_expired()
        if request.job_id is not None and request.job_id in self._jobs:
            raise DuplicateJobError(request.job_id)

        root = normalize_root(request.output_root)
        owner = self._roots.get(root)
        if owner is not None:
            raise OutputRootConflictError(request.output_root, owner)

        job = TranscodeJob(source_path=request.source_path, output_root=root)
        if request.job_id is not None:
            job.id = request.job_id

        self._jobs[job.id] = job
        self._roots[root] = job.id
        self._history[job.id] = deque(maxlen=self.config.STATUS_HISTORY_LIMIT)
        self._store_snapshot(JobStatusSnapshot.from_job(job))

        orchestrator = JobOrchestrator(
            job,
            toolkit=self.toolkit,
            catalog=self.catalog,
            pool=self.pool,
            config=self.config,
            on_update=self._store_snapshot,
        )
        self._orchestrators[job.id] = orchestrator
        task = asyncio.create_task(orchestrator.run(), name=f"transcode-{job.id}")
        task.add_done_callback(lambda _task, job_id=job.id: self._release(job_id))
        self._tasks[job.id] = task
        logger.info("Submitted job %s: %s -> %s", job.id, job.source_path, root)
        return job.id

    def get_status(self, job_id: str) -> JobStatusSnapshot:
        """Latest snapshot of a job.

        Raises:
            JobNotFoundError: If the job was never submitted or was evicted
        """
        snapshot = self._snapshots.get(job_id)
        if snapshot is None:
            raise JobNotFoundError(job_id)
        return snapshot

    def get_history(self, job_id: str) -> list[JobStatusSnapshot]:
        """Recent snapshots of a job, oldest first."""
        if job_id not in self._history:
            raise JobNotFoundError(job_id)
        return list(self._history[job_id])

    def list_jobs(self) -> list[JobStatusSnapshot]:
        self._evict_expired()
        return [self._snapshots[job_id] for job_id in self._jobs]

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a job.

        Returns:
            False if the job had already finished, True otherwise

        Raises:
            JobNotFoundError: If the job was never submitted
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.is_terminal():
            return False
        self._orchestrators[job_id].request_cancel()
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatusSnapshot:
        """Wait until a job reaches a terminal status.

        Raises:
            JobNotFoundError: If the job was never submitted
            asyncio.TimeoutError: If timeout expires first; the job keeps running
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_status(job_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for them to stop."""
        active = [job_id for job_id, job in self._jobs.items() if not job.is_terminal()]
        for job_id in active:
            self._orchestrators[job_id].request_cancel()
        if active:
            logger.info("Shutting down, cancelling %d job(s)", len(active))
        await asyncio.gather(*(self._tasks[job_id] for job_id in active),
                             return_exceptions=True)

    def _store_snapshot(self, snapshot: JobStatusSnapshot) -> None:
        self._snapshots[snapshot.job_id] = snapshot
        self._history[snapshot.job_id].append(snapshot)

    def _release(self, job_id: str) -> None:
        self._orchestrators.pop(job_id, None)
        self._tasks.pop(job_id, None)

    def _evict_expired(self) -> None:
        """Forget terminal jobs that finished more than JOB_RETENTION_SECONDS ago."""
        cutoff = time.time() - self.config.JOB_RETENTION_SECONDS
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal() and job.completed_at is not None and job.completed_at <= cutoff
        ]
        for job_id in expired:
            job = self._jobs.pop(job_id)
            self._snapshots.pop(job_id, None)
            self._history.pop(job_id, None)
            if self._roots.get(job.output_root) == job_id:
                del self._roots[job.output_root]
        if expired:
            logger.debug("Evicted %d finished job(s)", len(expired))
