from __future__ import annotations

import asyncio
import logging
import uuid
from typing import assert_never

from app.core.errors import PoisonMessageError, QueueError
from app.models.job import JobType
from app.services.assets import AssetRepository
from app.services.jobs import JobQueue, QueuedJob
from app.services.processor import Processor

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed number of queue pollers sharing one queue client and one processor.

    Each loop pops with a bounded wait so that ``stop()`` is observed within
    one pop interval. A popped job runs under ``job_timeout`` seconds; on
    shutdown, running jobs are cancelled.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        *,
        concurrency: int = 2,
        job_timeout: float = 30 * 60,
        pop_timeout: float = 5,
        error_backoff: float = 5,
        tracker: AssetRepository | None = None,
    ) -> None:
        self.queue = queue
        self.processor = processor
        self.concurrency = max(int(concurrency), 1)
        self.job_timeout = job_timeout
        self.pop_timeout = pop_timeout
        self.error_backoff = error_backoff
        self.tracker = tracker
        self._stop = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._running: dict[int, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stop.is_set()

    def start(self) -> None:
        if self._workers:
            raise RuntimeError("Worker pool already started")
        self._stop.clear()
        for worker_id in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._worker(worker_id), name=f"media-worker-{worker_id}"))
        logger.info("Worker pool started concurrency=%s", self.concurrency)

    async def stop(self) -> None:
        self._stop.set()
        for task in list(self._running.values()):
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Worker pool stopped")

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.error_backoff)
        except asyncio.TimeoutError:
            pass

    async def _worker(self, worker_id: int) -> None:
        logger.info("Worker started worker_id=%s", worker_id)
        while not self._stop.is_set():
            try:
                if not await self._poll(worker_id):
                    break
            except Exception:
                # nothing a single payload does may end the loop
                logger.exception("Unexpected error in worker loop worker_id=%s", worker_id)
                await self._backoff()
        logger.info("Worker stopping worker_id=%s", worker_id)

    async def _poll(self, worker_id: int) -> bool:
        """Pop and run at most one job. Returns False once the loop should exit."""
        try:
            payload = await self.queue.pop(timeout=self.pop_timeout)
        except PoisonMessageError as exc:
            logger.error("Discarding undecodable job worker_id=%s error=%s", worker_id, exc)
            return True
        except QueueError:
            logger.exception("Failed to pop job from queue worker_id=%s", worker_id)
            await self._backoff()
            return True

        if payload is None:
            return True

        if self._stop.is_set():
            try:
                await self.queue.requeue(payload)
            except QueueError:
                logger.exception("Failed to requeue job during shutdown payload=%r", payload[:500])
            return False

        try:
            job = QueuedJob.from_json(payload)
        except PoisonMessageError as exc:
            logger.error("Discarding malformed job worker_id=%s error=%s payload=%r", worker_id, exc, payload[:500])
            return True

        await self._run(worker_id, job)
        return True

    async def _run(self, worker_id: int, job: QueuedJob) -> None:
        logger.info(
            "Processing job worker_id=%s job_id=%s asset_id=%s type=%s",
            worker_id,
            job.id,
            job.asset_id,
            job.type,
        )
        await self._track(job, started=True)

        task = asyncio.create_task(self.dispatch(job))
        self._running[worker_id] = task
        if self._stop.is_set():
            task.cancel()
        error: str | None = None
        try:
            await asyncio.wait_for(task, timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error = f"Job timed out after {self.job_timeout}s"
            logger.error("Job timed out worker_id=%s job_id=%s asset_id=%s", worker_id, job.id, job.asset_id)
        except asyncio.CancelledError:
            if not self._stop.is_set():
                raise
            error = "Job cancelled by shutdown"
            logger.warning("Job cancelled by shutdown worker_id=%s job_id=%s", worker_id, job.id)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception(
                "Job failed worker_id=%s job_id=%s asset_id=%s",
                worker_id,
                job.id,
                job.asset_id,
            )
        else:
            logger.info("Job completed successfully worker_id=%s job_id=%s asset_id=%s", worker_id, job.id, job.asset_id)
        finally:
            self._running.pop(worker_id, None)

        await self._track(job, started=False, error=error)

    async def dispatch(self, job: QueuedJob) -> None:
        asset_id = uuid.UUID(job.asset_id)
        try:
            job_type = JobType(job.type)
        except ValueError:
            logger.warning("Unknown job type type=%s job_id=%s, dropping", job.type, job.id)
            return

        if job_type is JobType.TRANSCODE:
            await self.processor.transcode_video(asset_id)
        elif job_type is JobType.THUMBNAIL:
            await self.processor.generate_thumbnail(asset_id)
        elif job_type is JobType.EXTRACT_META:
            await self.processor.extract_metadata(asset_id)
        else:
            assert_never(job_type)

    async def _track(self, job: QueuedJob, *, started: bool, error: str | None = None) -> None:
        if self.tracker is None:
            return
        try:
            job_id = uuid.UUID(job.id)
        except ValueError:
            return
        try:
            if started:
                await self.tracker.mark_job_started(job_id)
            else:
                await self.tracker.mark_job_finished(job_id, error)
        except Exception:
            logger.exception("Failed to update job record job_id=%s", job.id)
