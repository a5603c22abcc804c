"""
Background driver that keeps unpolled jobs moving.
"""
import asyncio
import logging
from typing import Optional

from voicedesc.config import DRIVER_INTERVAL_SECONDS
from voicedesc.errors import JobNotFound
from voicedesc.services.orchestrator import JobOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)


class PipelineDriver:
    """
    Background loop using asyncio.Queue.

    Newly created jobs are enqueued and advanced until terminal. When the queue
    stays empty for ``interval_seconds`` every active job is advanced once, so
    jobs nobody polls still finish. Advancing goes through the orchestrator and
    its per-job locks, so the driver and polling clients never double-process
    a step.
    """

    def __init__(self, orchestrator: JobOrchestrator, interval_seconds: float = DRIVER_INTERVAL_SECONDS):
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self):
        """Start the background driver."""
        self._running = True
        self._task = asyncio.create_task(self._drive_loop())
        logger.info('Pipeline driver started (interval %.1fs)', self._interval)

    async def stop(self):
        """Stop the background driver gracefully."""
        self._running = False
        if self._task:
            # Put a sentinel to wake up the queue if waiting
            await self._queue.put('')
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info('Pipeline driver stopped')

    async def enqueue(self, job_id: str):
        """Wake the driver for a newly created job."""
        await self._queue.put(job_id)

    async def _drive_loop(self):
        while self._running:
            try:
                try:
                    job_id = await asyncio.wait_for(self._queue.get(), timeout=self._interval)
                except asyncio.TimeoutError:
                    await self._orchestrator.advance_active()
                    continue

                # Sentinel from stop()
                if not job_id:
                    continue

                await self._drive_job(job_id)
                self._queue.task_done()

            except Exception:
                # Log but don't crash the loop
                logger.exception('Error in pipeline driver loop')

    async def _drive_job(self, job_id: str):
        """Advance one job until it is terminal or the driver stops."""
        while self._running:
            try:
                job = await self._orchestrator.advance(job_id)
            except JobNotFound:
                logger.warning('Job %s not found', job_id)
                return
            if job.is_terminal:
                return
            # Let HTTP handlers in between steps
            await asyncio.sleep(0)


# Singleton instance
_driver: Optional[PipelineDriver] = None


def get_pipeline_driver() -> PipelineDriver:
    """Get the pipeline driver singleton instance."""
    global _driver
    if _driver is None:
        _driver = PipelineDriver(get_orchestrator())
    return _driver


def reset_pipeline_driver():
    """Reset the pipeline driver singleton (for testing)."""
    global _driver
    _driver = None


def get_running_driver() -> Optional[PipelineDriver]:
    """The driver singleton if it has been started, without creating one."""
    if _driver is not None and _driver.is_running:
        return _driver
    return None
