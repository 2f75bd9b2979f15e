"""Research job execution: the pending -> processing -> completed | failed state machine.

Only the execution trigger moves a job forward; pollers never write. Execution:
1. Reads the job; anything other than PENDING means another execution owns it (no-op)
2. Marks PROCESSING with started_at (exactly once per job, enforced by the store)
3. Calls the research worker under a deadline
4. Parses the output (ResultAggregator) and marks COMPLETED, or marks FAILED
   with the error message; completed_at is set either way, never before
   started_at. A terminal write the store rejects falls back to FAILED
5. Saves completed results to the research history, best-effort

There is no job-level retry: a failed job is terminal and the caller
resubmits. Claim verification retries instead; the asymmetry is intentional.
"""

import asyncio
from datetime import datetime
from typing import Optional

from loguru import logger

from narrative_research.data_management.history_store import ResearchHistoryStore
from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.schemas import (
    JobStatus,
    ResearchDepth,
    ResearchJob,
    ResearchResult,
    utc_now,
)
from narrative_research.errors import (
    ForbiddenError,
    InvalidTransitionError,
    JobNotFoundError,
    JobTerminalError,
)
from narrative_research.research.research_client import ResearchWorker
from narrative_research.research.result_aggregator import ResultAggregator


class JobExecutor:
    """
    Runs research jobs and records their outcome in the JobStore.

    Attributes:
        store: Job store the execution reads and writes
        worker: Research worker
        aggregator: Parser for raw worker output
        history_store: Optional research history
        timeout_seconds: Deadline per worker call (None disables)
    """

    def __init__(
        self,
        store: JobStore,
        worker: ResearchWorker,
        aggregator: Optional[ResultAggregator] = None,
        history_store: Optional[ResearchHistoryStore] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.store = store
        self.worker = worker
        self.aggregator = aggregator if aggregator is not None else ResultAggregator()
        self.history_store = history_store
        self.timeout_seconds = timeout_seconds
        self._tasks: set[asyncio.Task] = set()
        self.logger = logger.bind(component="JobExecutor")

    def trigger(self, job_id: str, owner_id: str) -> asyncio.Task:
        """
        Hand a job to background execution (fire-and-forget).

        The returned task is also tracked internally until it finishes.
        """
        task = asyncio.create_task(
            self._execute_in_background(job_id, owner_id),
            name=f"research-job-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.logger.debug("Execution triggered", job_id=job_id)
        return task

    async def drain(self) -> None:
        """Wait for every triggered execution to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def execute(self, job_id: str, owner_id: str) -> ResearchJob:
        """
        Execute a pending job to completion.

        Returns:
            The job as stored after execution (unchanged if it was not pending)

        Raises:
            JobNotFoundError / ForbiddenError: The job cannot be accessed
        """
        job = await self.store.get(job_id, owner_id)
        if job.status != JobStatus.PENDING:
            self.logger.info(
                "Job {job_id} already {status}, skipping execution",
                job_id=job_id,
                status=job.status.value,
            )
            return job

        try:
            job = await self.store.update(
                job_id,
                owner_id,
                {"status": JobStatus.PROCESSING, "started_at": utc_now()},
            )
        except (JobTerminalError, InvalidTransitionError) as e:
            self.logger.info("Job {job_id} claimed elsewhere: {err}", job_id=job_id, err=str(e))
            return await self.store.get(job_id, owner_id)

        started_at = job.started_at
        try:
            result = await self.run_research(job.query, job.depth)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            patch = {
                "status": JobStatus.FAILED,
                "error": self.describe_failure(e),
                "completed_at": self._completion_time(started_at),
            }
            self.logger.warning(
                "Job {job_id} failed: {err}", job_id=job_id, err=patch["error"]
            )
        else:
            patch = {
                "status": JobStatus.COMPLETED,
                "result": result,
                "completed_at": self._completion_time(started_at),
            }

        try:
            job = await self.store.update(job_id, owner_id, patch)
        except JobTerminalError:
            self.logger.warning("Job {job_id} finished elsewhere, result discarded", job_id=job_id)
            return await self.store.get(job_id, owner_id)
        except Exception as e:
            return await self._fail_rejected_write(job_id, owner_id, started_at, e)

        if job.status == JobStatus.COMPLETED:
            await self.record_history(owner_id, job)
        return job

    async def _fail_rejected_write(
        self, job_id: str, owner_id: str, started_at: Optional[datetime], error: Exception
    ) -> ResearchJob:
        """Mark FAILED when the store rejected the terminal write."""
        self.logger.error(
            "Terminal write for job {job_id} rejected: {err}", job_id=job_id, err=str(error)
        )
        patch = {
            "status": JobStatus.FAILED,
            "error": f"Research result could not be saved: {error}",
            "completed_at": self._completion_time(started_at),
        }
        try:
            return await self.store.update(job_id, owner_id, patch)
        except JobTerminalError:
            return await self.store.get(job_id, owner_id)

    @staticmethod
    def _completion_time(started_at: Optional[datetime]) -> datetime:
        # wall clock may step back while the worker runs
        now = utc_now()
        return max(now, started_at) if started_at is not None else now

    async def run_research(self, query: str, depth: ResearchDepth) -> ResearchResult:
        """
        Call the research worker under the deadline and parse its output.

        Raises:
            asyncio.TimeoutError: The deadline expired
            UpstreamError: The worker failed
        """
        call = self.worker.research(query, depth)
        if self.timeout_seconds:
            raw = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        else:
            raw = await call
        return self.aggregator.parse(raw.content, raw.citations)

    def describe_failure(self, error: BaseException) -> str:
        """Error message stored on a failed job."""
        if isinstance(error, asyncio.TimeoutError) and self.timeout_seconds:
            return f"Research timed out after {self.timeout_seconds:g}s"
        return str(error).strip() or type(error).__name__

    async def record_history(self, owner_id: str, job: ResearchJob) -> None:
        """Save a completed job to history; failures are logged, never raised."""
        if self.history_store is None or job.result is None:
            return
        try:
            await self.history_store.save_entry(owner_id, job)
        except Exception as e:
            self.logger.warning(
                "History save failed for job {job_id}: {err}", job_id=job.id, err=str(e)
            )

    async def _execute_in_background(self, job_id: str, owner_id: str) -> Optional[ResearchJob]:
        try:
            return await self.execute(job_id, owner_id)
        except (JobNotFoundError, ForbiddenError) as e:
            self.logger.error("Cannot execute job {job_id}: {err}", job_id=job_id, err=str(e))
        except asyncio.CancelledError:
            self.logger.warning("Execution of job {job_id} cancelled", job_id=job_id)
            raise
        except Exception as e:
            self.logger.opt(exception=e).error(
                "Unexpected error executing job {job_id}", job_id=job_id
            )
        return None
