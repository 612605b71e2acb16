"""Job state machine.

A JobOrchestrator drives one TranscodeJob through

    queued -> probing -> selecting_ladder -> encoding
           -> generating_previews -> assembling -> completed | failed

It is the only writer of the job. Encoding workers report finished
renditions back over a queue, and every change is published as an immutable
JobStatusSnapshot.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from abrpipe.core.config import Settings
from abrpipe.core.logging import log_error, log_info, log_warning, set_job_id
from abrpipe.core.metrics import (
    STAGE_DURATION_SECONDS,
    TRANSCODE_JOB_DURATION_SECONDS,
    TRANSCODE_JOBS_ACTIVE,
    TRANSCODE_JOBS_TOTAL,
)
from abrpipe.modules.transcoding.abr import select_qualities
from abrpipe.modules.transcoding.errors import JobCancelledError, TranscodeError
from abrpipe.modules.transcoding.ffmpeg import MediaToolkit
from abrpipe.modules.transcoding.models import (
    FailureKind,
    JobStatus,
    PreviewResult,
    QualityPreset,
    Rendition,
    RenditionState,
    TranscodeJob,
)
from abrpipe.modules.transcoding.playlist import assemble_master_playlist
from abrpipe.modules.transcoding.pool import WorkerPool
from abrpipe.modules.transcoding.preview import generate_previews
from abrpipe.modules.transcoding.probe import probe_source
from abrpipe.modules.transcoding.progress import encoding_progress, progress_after
from abrpipe.modules.transcoding.rendition import encode_rendition
from abrpipe.modules.transcoding.retry import RetryConfig
from abrpipe.modules.transcoding.schemas import JobStatusSnapshot
from abrpipe.modules.transcoding.storage import OutputLayout, remove_directory

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_REASON = "cancelled"


class JobOrchestrator:
    """Runs one job to a terminal status."""

    def __init__(
        self,
        job: TranscodeJob,
        *,
        toolkit: MediaToolkit,
        catalog: Sequence[QualityPreset],
        pool: WorkerPool,
        config: Settings,
        on_update: Optional[Callable[[JobStatusSnapshot], None]] = None,
    ):
        self.job = job
        self.toolkit = toolkit
        self.catalog = tuple(catalog)
        self.pool = pool
        self.config = config
        self.layout = OutputLayout.for_root(job.output_root)
        self.retry_config = RetryConfig.for_renditions(config)
        self._on_update = on_update
        self._cancel_event = asyncio.Event()
        self._stage_started = time.monotonic()

    def __repr__(self) -> str:
        return f"<JobOrchestrator {self.job.id} - {self.job.status.value}>"

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def request_cancel(self) -> None:
        """Ask the job to stop at its next suspension point."""
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested for job %s", self.job.id)
            self._cancel_event.set()

    async def run(self) -> TranscodeJob:
        """Drive the job until it is completed or failed.

        Pipeline errors never escape; they end up as failure_reason and
        failure_kind on the job.
        """
        set_job_id(self.job.id)
        TRANSCODE_JOBS_ACTIVE.inc()
        self._publish()
        try:
            await self._run_pipeline()
        except TranscodeError as e:
            self._fail(e.reason, e.kind)
        except asyncio.CancelledError:
            self._fail(CANCELLED_REASON, FailureKind.CANCELLED)
            raise
        except Exception as e:
            log_error(logger, f"Job {self.job.id} crashed", exception=e)
            self._fail(f"internal error: {e}", FailureKind.INTERNAL)
        finally:
            TRANSCODE_JOBS_ACTIVE.dec()
            self._record_job_metrics()
        return self.job

    async def _run_pipeline(self) -> None:
        job = self.job

        self._enter(JobStatus.PROBING)
        job.probe = await self._guard(probe_source(
            self.toolkit, job.source_path, self.config.PROBE_TIMEOUT_SECONDS
        ))
        self._advance(progress_after(JobStatus.PROBING))

        self._enter(JobStatus.SELECTING_LADDER)
        presets = select_qualities(job.probe.width, job.probe.height, self.catalog)
        job.select_qualities(presets)
        logger.info("Selected qualities: %s", ", ".join(job.selected_qualities))
        self._advance(progress_after(JobStatus.SELECTING_LADDER))

        self._enter(JobStatus.ENCODING)
        self.layout.prepare()
        preview_task: Optional[asyncio.Task] = None
        if self.config.PREVIEWS_DURING_ENCODING:
            preview_task = asyncio.create_task(self._generate_previews())
        try:
            await self._encode_all(presets)
        except BaseException:
            if preview_task is not None:
                preview_task.cancel()
                await asyncio.gather(preview_task, return_exceptions=True)
            raise

        self._enter(JobStatus.GENERATING_PREVIEWS)
        if preview_task is None:
            preview_task = asyncio.create_task(self._generate_previews())
        job.previews = await self._guard(preview_task)
        self._advance(progress_after(JobStatus.GENERATING_PREVIEWS))

        self._enter(JobStatus.ASSEMBLING)
        if self.cancel_requested:
            raise JobCancelledError()
        assemble_master_playlist(self.layout, job.successful_renditions())
        job.master_manifest_path = str(self.layout.master_playlist_path)

        job.advance_progress(100)
        self._enter(JobStatus.COMPLETED)
        failed = [r.name for r in job.renditions.values() if not r.succeeded]
        if failed:
            log_warning(logger, "Job completed without some renditions", failed_qualities=failed)
        log_info(logger, f"Job completed in {job.get_elapsed_time():.1f}s",
                 qualities=len(job.selected_qualities) - len(failed))

    async def _guard(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable, abandoning it if the job is cancelled first.

        Raises:
            JobCancelledError: If cancellation wins the race
        """
        task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.create_task(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            cancel_wait.cancel()

        if task in done and not self.cancel_requested:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise JobCancelledError()

    async def _encode_all(self, presets: Sequence[QualityPreset]) -> None:
        """Encode every preset on a bounded set of workers.

        Returns once every rendition has resolved. On cancellation in-flight
        encodes are stopped and every unresolved preset is marked failed.
        """
        pending: asyncio.Queue = asyncio.Queue()
        for preset in presets:
            pending.put_nowait(preset)
        finished: asyncio.Queue = asyncio.Queue()

        worker_count = min(self.pool.size, len(presets))
        workers = [
            asyncio.create_task(
                self._encode_worker(pending, finished),
                name=f"encode-{self.job.id}-{index}",
            )
            for index in range(worker_count)
        ]
        cancel_wait = asyncio.create_task(self._cancel_event.wait())
        resolved = 0

        try:
            while resolved < len(presets):
                next_result = asyncio.create_task(finished.get())
                done, _ = await asyncio.wait(
                    {next_result, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_result in done:
                    resolved += 1
                    self._record_rendition(next_result.result(), resolved, len(presets))
                else:
                    next_result.cancel()
                if cancel_wait in done:
                    raise JobCancelledError()
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            while not finished.empty():
                rendition = finished.get_nowait()
                resolved += 1
                self._record_rendition(rendition, resolved, len(presets))
            self._abandon_pending_renditions()
            raise
        finally:
            cancel_wait.cancel()

        await asyncio.gather(*workers)

    async def _encode_worker(self, pending: asyncio.Queue, finished: asyncio.Queue) -> None:
        while True:
            try:
                preset = pending.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                rendition = await encode_rendition(
                    self.toolkit,
                    self.job.source_path,
                    preset,
                    self.layout,
                    segment_duration=self.config.SEGMENT_DURATION_SECONDS,
                    retry_config=self.retry_config,
                    timeout=self.config.ENCODE_TIMEOUT_SECONDS,
                    pool=self.pool,
                )
            except Exception as e:
                log_error(logger, f"Encoding {preset.name} crashed", exception=e,
                          preset=preset.name)
                remove_directory(self.layout.rendition_dir(preset.name))
                rendition = Rendition(preset=preset)
                rendition.mark_failed(f"internal error: {e}", FailureKind.INTERNAL)

            finished.put_nowait(rendition)

    def _record_rendition(self, rendition: Rendition, resolved: int, total: int) -> None:
        self.job.record_rendition(rendition)
        self._advance(encoding_progress(resolved, total))

    def _abandon_pending_renditions(self) -> None:
        for name in self.job.selected_qualities:
            rendition = self.job.renditions[name]
            if rendition.state == RenditionState.PENDING:
                remove_directory(self.layout.rendition_dir(name))
                rendition.mark_failed(CANCELLED_REASON, FailureKind.CANCELLED)
        self._publish()

    async def _generate_previews(self) -> PreviewResult:
        try:
            return await generate_previews(
                self.toolkit,
                self.job.source_path,
                self.job.probe.duration_seconds,
                self.layout,
                timeout=self.config.FRAME_TIMEOUT_SECONDS,
                thumbnail_size=(self.config.THUMBNAIL_WIDTH, self.config.THUMBNAIL_HEIGHT),
                poster_size=(self.config.POSTER_WIDTH, self.config.POSTER_HEIGHT),
            )
        except Exception as e:
            log_error(logger, "Preview generation crashed", exception=e)
            return PreviewResult(errors={"previews": str(e)})

    def _enter(self, status: JobStatus) -> None:
        now = time.monotonic()
        if self.job.status != JobStatus.QUEUED:
            STAGE_DURATION_SECONDS.labels(stage=self.job.status.value).observe(
                now - self._stage_started
            )
        self._stage_started = now
        self.job.transition_to(status)
        logger.info("Job %s entered %s", self.job.id, status.value)
        self._publish()

    def _advance(self, percent: int) -> None:
        self.job.advance_progress(percent)
        self._publish()

    def _fail(self, reason: str, kind: FailureKind) -> None:
        if self.job.is_terminal():
            return
        STAGE_DURATION_SECONDS.labels(stage=self.job.status.value).observe(
            time.monotonic() - self._stage_started
        )
        self.job.fail(reason, kind)
        logger.error("Job %s failed (%s): %s", self.job.id, kind.value, reason)
        self._publish()

    def _publish(self) -> None:
        if self._on_update is not None:
            self._on_update(JobStatusSnapshot.from_job(self.job))

    def _record_job_metrics(self) -> None:
        status = self.job.status.value
        kind = self.job.failure_kind.value if self.job.failure_kind else "none"
        TRANSCODE_JOBS_TOTAL.labels(status=status, failure_kind=kind).inc()
        TRANSCODE_JOB_DURATION_SECONDS.labels(status=status).observe(
            self.job.get_elapsed_time()
        )
