"""Client-side observation of research jobs.

A poll sequence:
1. start() fetches the job immediately; a terminal job fires its callback
   once and no loop is started
2. Otherwise the job is re-read every poll_interval seconds until it is
   terminal, the store reports NotFound/Forbidden, or the handle is cancelled
3. A terminal observation is final: the loop stops and never reads again

Polling is read-only. Cancelling a handle stops local observation and discards
its callbacks; the job itself keeps executing and a later resume() finds it.
"""

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger

from narrative_research.config.settings import settings
from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.schemas import JobStatus, ResearchJob
from narrative_research.errors import ForbiddenError, JobNotFoundError

JobCallback = Callable[[ResearchJob], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[str], Union[None, Awaitable[None]]]


def format_elapsed(seconds: float) -> str:
    """Render elapsed seconds as "1m 5s" or "42s"."""
    total = max(int(seconds), 0)
    minutes, secs = divmod(total, 60)
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class PollHandle:
    """
    One poll sequence for one job.

    Attributes:
        job_id: Job being observed
        owner_id: Caller identity used for every read
        job: Last observed job record (None until the first successful read)
        error: Access error that stopped polling, if any
        cancelled: True once cancel() was called
        polls: Number of successful reads
    """

    def __init__(self, job_id: str, owner_id: str, clock: Callable[[], float]):
        self.job_id = job_id
        self.owner_id = owner_id
        self.job: Optional[ResearchJob] = None
        self.error: Optional[Exception] = None
        self.cancelled = False
        self.polls = 0
        self._clock = clock
        self._started_at = clock()
        self._stopped_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    @property
    def status(self) -> Optional[JobStatus]:
        return self.job.status if self.job else None

    @property
    def elapsed(self) -> float:
        """Seconds since this sequence started; frozen once polling stops."""
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return end - self._started_at

    @property
    def formatted_elapsed(self) -> str:
        return format_elapsed(self.elapsed)

    @property
    def is_active(self) -> bool:
        return not self._done.is_set()

    async def wait(self) -> Optional[ResearchJob]:
        """Wait until polling stops; returns the last observed job."""
        await self._done.wait()
        return self.job

    def _stop_clock(self) -> None:
        if self._stopped_at is None:
            self._stopped_at = self._clock()

    def _finish(self) -> None:
        self._stop_clock()
        self._done.set()

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"PollHandle(job_id={self.job_id!r}, status={status!r}, elapsed={self.formatted_elapsed!r})"


class JobPoller:
    """
    Polls the JobStore until a job reaches a terminal status.

    Callbacks may be plain functions or coroutines. on_complete receives the
    completed job; on_error receives a message (the job's error for a failed
    job, or the access error). on_update sees every observation. A callback
    that raises is logged and does not stop the poll sequence.
    """

    def __init__(
        self,
        store: JobStore,
        poll_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            store: Job store to read from
            poll_interval: Seconds between reads (defaults to settings)
            clock: Monotonic time source for elapsed time
            sleep: Awaitable delay used between reads
        """
        self.store = store
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self._clock = clock
        self._sleep = sleep
        self.logger = logger.bind(component="JobPoller")

    async def start(
        self,
        job_id: str,
        owner_id: str,
        on_complete: Optional[JobCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[JobCallback] = None,
    ) -> PollHandle:
        """
        Begin a poll sequence.

        The first read happens before this returns. If it already shows a
        terminal job (or an access error), the callback has fired and the
        returned handle is finished.
        """
        handle = PollHandle(job_id, owner_id, self._clock)
        callbacks = (on_complete, on_error, on_update)

        if await self._observe(handle, *callbacks):
            handle._finish()
            return handle

        handle._task = asyncio.create_task(
            self._poll_loop(handle, *callbacks), name=f"poll-job-{job_id}"
        )
        self.logger.debug("Polling job {job_id}", job_id=job_id, interval=self.poll_interval)
        return handle

    def cancel(self, handle: PollHandle) -> None:
        """Stop local observation. The remote job is not affected."""
        if handle.cancelled or not handle.is_active:
            return
        handle.cancelled = True
        if handle._task is not None and not handle._task.done():
            handle._task.cancel()
        handle._finish()
        self.logger.info(
            "Polling cancelled for job {job_id}",
            job_id=handle.job_id,
            elapsed=handle.formatted_elapsed,
        )

    async def resume_incomplete_job(self, owner_id: str) -> Optional[ResearchJob]:
        """Return the owner's newest pending or processing job, if any."""
        return await self.store.find_latest_incomplete(owner_id)

    async def resume(
        self,
        owner_id: str,
        on_complete: Optional[JobCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[JobCallback] = None,
    ) -> Optional[PollHandle]:
        """Attach a poller to the owner's incomplete job, as if just submitted."""
        job = await self.resume_incomplete_job(owner_id)
        if job is None:
            return None
        self.logger.info("Resuming job {job_id}", job_id=job.id, status=job.status.value)
        return await self.start(job.id, owner_id, on_complete, on_error, on_update)

    async def _poll_loop(
        self,
        handle: PollHandle,
        on_complete: Optional[JobCallback],
        on_error: Optional[ErrorCallback],
        on_update: Optional[JobCallback],
    ) -> None:
        try:
            while not handle.cancelled:
                await self._sleep(self.poll_interval)
                if handle.cancelled:
                    break
                if await self._observe(handle, on_complete, on_error, on_update):
                    break
        finally:
            handle._finish()

    async def _observe(
        self,
        handle: PollHandle,
        on_complete: Optional[JobCallback],
        on_error: Optional[ErrorCallback],
        on_update: Optional[JobCallback],
    ) -> bool:
        """Read the job once. Returns True when polling should stop."""
        try:
            job = await self.store.get(handle.job_id, handle.owner_id)
        except (JobNotFoundError, ForbiddenError) as e:
            handle.error = e
            self.logger.warning(
                "Stopped polling job {job_id}: {err}", job_id=handle.job_id, err=str(e)
            )
            if not handle.cancelled:
                await self._dispatch(handle, on_error, str(e))
            return True
        except Exception as e:
            self.logger.warning(
                "Transient error polling job {job_id}: {err}",
                job_id=handle.job_id,
                err=str(e),
            )
            return False

        handle.job = job
        handle.polls += 1
        if handle.cancelled:
            return True

        await self._dispatch(handle, on_update, job)
        if not job.is_terminal:
            return False

        handle._stop_clock()
        self.logger.info(
            "Job {job_id} reached {status}",
            job_id=job.id,
            status=job.status.value,
            elapsed=handle.formatted_elapsed,
        )
        if job.status == JobStatus.COMPLETED:
            await self._dispatch(handle, on_complete, job)
        else:
            await self._dispatch(handle, on_error, job.error or "Research failed")
        return True

    async def _dispatch(
        self, handle: PollHandle, callback: Optional[Callable[..., Any]], *args: Any
    ) -> None:
        if callback is None or handle.cancelled:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.opt(exception=e).error(
                "Poll callback failed for job {job_id}", job_id=handle.job_id
            )
