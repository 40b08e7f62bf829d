"""Background execution of lottery jobs on the application event loop."""

from __future__ import annotations

import asyncio
import inspect
import sqlite3
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from core.constants import GradeOrder, JobStatus, LotteryDefaults
from core.exceptions import LotteryStateError, ResultCommitError
from core.logger import get_job_logger, get_logger
from database.models import LotteryJob, PositionDetails
from database.repositories import JobRepository
from services.cache import ReportCache, get_cache
from services.engine import AssignmentEngine, AssignmentOutcome, LotterySnapshot
from utils.performance import monitor

logger = get_logger(__name__)

CompletionListener = Callable[[LotteryJob], Union[Awaitable[None], None]]

_STOP = object()


@dataclass(frozen=True)
class LotteryRun:
    """Everything a job needs once its snapshot has been taken."""
    job_id: int
    seed: int
    grade_order: GradeOrder
    snapshot: LotterySnapshot
    details: Mapping[int, PositionDetails]


class LotteryWorker:
    """Runs lottery jobs as asyncio tasks.

    The engine itself runs in the default executor. Its progress callbacks
    cross back onto the loop as ``(job_id, percent)`` messages, and a single
    status writer task drains them into ``lottery_jobs.progress``.
    """

    def __init__(
        self,
        attempts: int = LotteryDefaults.ATTEMPTS,
        progress_batch: int = LotteryDefaults.PROGRESS_BATCH,
        commit_timeout: float = LotteryDefaults.COMMIT_TIMEOUT,
        commit_retries: int = LotteryDefaults.COMMIT_RETRIES,
        retry_delay: float = LotteryDefaults.COMMIT_RETRY_DELAY,
        cache: Optional[ReportCache] = None,
    ) -> None:
        self.attempts = attempts
        self.progress_batch = progress_batch
        self.commit_timeout = commit_timeout
        self.commit_retries = commit_retries
        self.retry_delay = retry_delay
        self.cache = cache
        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[CompletionListener] = []
        self._last_progress: Dict[int, int] = {}

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a callback invoked with the job after its results are committed."""
        self._listeners.append(listener)

    def start(self) -> None:
        if self._writer is not None and not self._writer.done():
            return
        self._queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._status_writer(), name="lottery-status-writer")

    async def stop(self) -> None:
        """Wait for running jobs, then drain and stop the status writer."""
        await self.wait_idle()
        if self._writer is None:
            return
        await self._queue.put(_STOP)
        await self._writer
        self._writer = None

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._queue is not None:
            await self._queue.join()

    def submit(self, run: LotteryRun) -> asyncio.Task:
        """Schedule a job; must be called from the event loop."""
        self.start()
        task = asyncio.create_task(self._execute(run), name=f"lottery-job-{run.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, run: LotteryRun) -> None:
        job_logger = get_job_logger(__name__, run.job_id)
        loop = asyncio.get_running_loop()
        engine = AssignmentEngine(
            grade_order=run.grade_order,
            attempts=self.attempts,
            progress_batch=self.progress_batch,
        )

        def on_progress(processed: int, total: int) -> None:
            # Called from the executor thread
            loop.call_soon_threadsafe(self._queue.put_nowait, progress_message(run.job_id, processed, total))

        job_logger.info(
            "Starting lottery for event %s: %d students, %d positions, seed %s",
            run.snapshot.event_id,
            len(run.snapshot.students),
            len(run.snapshot.positions),
            run.seed,
        )
        try:
            with monitor.track_engine():
                outcome = await loop.run_in_executor(None, engine.run, run.snapshot, run.seed, on_progress)
            await self._commit(run, outcome)
        except LotteryStateError as exc:
            # The job was failed elsewhere (restart recovery) while the engine ran
            job_logger.warning("Discarding outcome: %s", exc)
            monitor.record_job(JobStatus.FAILED.value)
            return
        except Exception as exc:
            job_logger.exception("Lottery failed")
            await JobRepository.mark_failed(run.job_id, f"Lottery failed: {exc}")
            monitor.record_job(JobStatus.FAILED.value)
            return
        finally:
            self._last_progress.pop(run.job_id, None)

        monitor.record_job(JobStatus.COMPLETED.value)
        monitor.record_placements(outcome.origin_counts())
        (self.cache or get_cache()).invalidate(run.job_id)
        job_logger.info("Lottery committed: %d placed", outcome.placed_count)
        await self._notify(run.job_id)

    async def _commit(self, run: LotteryRun, outcome: AssignmentOutcome) -> None:
        """Persist the outcome, retrying while the database is locked."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.commit_retries + 1):
            try:
                await asyncio.wait_for(
                    JobRepository.commit_outcome(run.job_id, outcome, run.details),
                    timeout=self.commit_timeout,
                )
                return
            except sqlite3.OperationalError as exc:
                last_error = exc
                if attempt == self.commit_retries:
                    break
                delay = self.retry_delay * 2 ** (attempt - 1)
                logger.warning(
                    "Commit of job %s failed (%s), retry %d/%d in %.1fs",
                    run.job_id, exc, attempt, self.commit_retries - 1, delay,
                )
                monitor.record_commit_retry()
                await asyncio.sleep(delay)
            except asyncio.TimeoutError as exc:
                raise ResultCommitError(
                    f"commit timed out after {self.commit_timeout}s"
                ) from exc
        raise ResultCommitError(f"commit failed: {last_error}") from last_error

    async def _notify(self, job_id: int) -> None:
        if not self._listeners:
            return
        job = await JobRepository.get(job_id)
        for listener in self._listeners:
            try:
                result = listener(job)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Completion listener %r failed for job %s", listener, job_id)

    async def _status_writer(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if message is _STOP:
                    return
                job_id, percent = message
                if self._last_progress.get(job_id) == percent:
                    continue
                self._last_progress[job_id] = percent
                await JobRepository.update_progress(job_id, percent)
            except Exception:
                logger.exception("Failed to write lottery progress")
            finally:
                self._queue.task_done()


def progress_message(job_id: int, processed: int, total: int) -> Tuple[int, int]:
    """Translate an engine progress callback into a queue message."""
    percent = min(99, processed * 100 // total) if total else 99
    return job_id, percent
