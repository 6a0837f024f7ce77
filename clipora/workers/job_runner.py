"""Background job runner using asyncio."""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class JobProgress:
    """In-memory progress of a running or finished job."""
    job_type: str
    status: str = "running"
    progress: float = 0.0
    message: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    result: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "job_type": self.job_type,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": self.result,
        }


class JobRunner:
    """Async background job runner.

    One asyncio task per job, keyed by a caller-chosen id (the video id for
    processing jobs). Durable state lives on the entities the handlers
    update; progress here is informational and lost on restart. Only the
    most recent max_finished finished jobs keep their progress.
    """

    def __init__(self, max_finished: int = 100):
        self.max_finished = max_finished
        self._running_jobs: Dict[str, asyncio.Task] = {}
        self._job_handlers: Dict[str, Callable] = {}
        self._progress: Dict[str, JobProgress] = {}

    def register_handler(self, job_type: str, handler: Callable):
        """Register a handler for a job type."""
        self._job_handlers[job_type] = handler

    async def start_job(
        self,
        job_id: str,
        job_type: str,
        **kwargs
    ) -> bool:
        """
        Start a background job.

        Args:
            job_id: Key of the job, unique among running jobs
            job_type: Type of job to run
            **kwargs: Arguments to pass to the job handler

        Returns:
            True if job started successfully
        """
        if job_id in self._running_jobs:
            logger.warning(f"Job {job_id} is already running")
            return False

        handler = self._job_handlers.get(job_type)
        if not handler:
            logger.error(f"No handler registered for job type: {job_type}")
            return False

        self._progress.pop(job_id, None)
        self._progress[job_id] = JobProgress(job_type=job_type, message="Starting...")
        task = asyncio.create_task(
            self._run_job(job_id, handler, **kwargs)
        )
        self._running_jobs[job_id] = task

        return True

    async def _run_job(
        self,
        job_id: str,
        handler: Callable,
        **kwargs
    ):
        """Run a job with error handling and progress bookkeeping."""
        state = self._progress[job_id]

        async def update_progress(progress: float, message: str = None):
            state.progress = min(100, max(0, progress))
            if message:
                state.message = message
                logger.info(f"Job {job_id}: {message} ({state.progress:.0f}%)")

        try:
            result = await handler(
                job_id=job_id,
                progress_callback=update_progress,
                **kwargs
            )
            state.status = "completed"
            state.progress = 100
            state.message = "Completed successfully"
            state.result = result if isinstance(result, dict) else None
            logger.info(f"Job {job_id} completed successfully")

        except asyncio.CancelledError:
            state.status = "cancelled"
            state.message = "Job cancelled"
            logger.info(f"Job {job_id} was cancelled")

        except Exception as e:
            state.status = "failed"
            state.message = f"Failed: {e}"
            logger.exception(f"Job {job_id} failed: {e}")

        finally:
            state.completed_at = datetime.utcnow()
            self._running_jobs.pop(job_id, None)
            self._evict_finished()

    def _evict_finished(self):
        """Drop the oldest finished progress entries beyond max_finished."""
        finished = [job_id for job_id in self._progress if job_id not in self._running_jobs]
        for job_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._progress[job_id]

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a running job."""
        task = self._running_jobs.get(job_id)
        if task:
            task.cancel()
            return True
        return False

    def is_job_running(self, job_id: str) -> bool:
        """Check if a job is currently running."""
        return job_id in self._running_jobs

    def get_progress(self, job_id: str) -> Optional[JobProgress]:
        return self._progress.get(job_id)

    async def wait(self, job_id: str) -> None:
        """Wait for a running job to finish."""
        task = self._running_jobs.get(job_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self):
        """Cancel all running jobs."""
        for job_id, task in self._running_jobs.items():
            task.cancel()

        if self._running_jobs:
            await asyncio.gather(
                *self._running_jobs.values(),
                return_exceptions=True
            )

        self._running_jobs.clear()


# Global job runner instance
job_runner = JobRunner()
