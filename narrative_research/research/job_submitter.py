"""Research request validation and submission.

Two paths by depth:
- QUICK: the worker runs inline and the job record is written once, already
  terminal; a failure comes back as a FAILED job rather than an exception
- DEEP: a PENDING job is created and returned at once, execution is handed to
  the background trigger, and the caller tracks it with a JobPoller

Rejections (InvalidQueryError, AuthRequiredError) happen before any record exists.
"""

from typing import Any, Mapping, Optional, Union

from loguru import logger

from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.schemas import (
    METADATA_FIELDS,
    JobStatus,
    ResearchDepth,
    ResearchJob,
    utc_now,
)
from narrative_research.errors import AuthRequiredError, InvalidQueryError
from narrative_research.research.job_executor import JobExecutor


class JobSubmitter:
    """Validates research requests and starts them on the right path."""

    def __init__(self, store: JobStore, executor: JobExecutor):
        self.store = store
        self.executor = executor
        self.logger = logger.bind(component="JobSubmitter")

    async def submit(
        self,
        query: str,
        depth: Union[ResearchDepth, str] = ResearchDepth.DEEP,
        metadata: Optional[Mapping[str, Any]] = None,
        owner_id: Optional[str] = None,
    ) -> ResearchJob:
        """
        Submit a research request.

        Args:
            query: Finalized research query
            depth: quick (inline) or deep (background job)
            metadata: Optional subject / decision_type / audience
            owner_id: Authenticated requester; required for deep research

        Returns:
            QUICK: a COMPLETED or FAILED job. DEEP: the PENDING job.

        Raises:
            InvalidQueryError: Empty query, unknown depth or metadata keys
            AuthRequiredError: Deep research without an owner
        """
        query, depth, extra = self._validate(query, depth, metadata)

        if depth == ResearchDepth.QUICK:
            return await self._run_quick(query, extra, owner_id)

        if not owner_id:
            raise AuthRequiredError("You must be logged in to start deep research")

        job = await self.store.create(owner_id, query, depth, extra)
        self.executor.trigger(job.id, owner_id)
        self.logger.info("Deep research submitted", job_id=job.id, owner_id=owner_id)
        return job

    async def _run_quick(
        self, query: str, extra: dict[str, str], owner_id: Optional[str]
    ) -> ResearchJob:
        """Run inline, then write the terminal record in one step."""
        created_at = utc_now()
        try:
            result = await self.executor.run_research(query, ResearchDepth.QUICK)
        except Exception as e:
            job = ResearchJob(
                owner_id=owner_id,
                query=query,
                depth=ResearchDepth.QUICK,
                status=JobStatus.FAILED,
                error=self.executor.describe_failure(e),
                created_at=created_at,
                started_at=created_at,
                completed_at=max(utc_now(), created_at),
                **extra,
            )
            self.logger.warning("Quick research failed: {err}", err=job.error)
        else:
            job = ResearchJob(
                owner_id=owner_id,
                query=query,
                depth=ResearchDepth.QUICK,
                status=JobStatus.COMPLETED,
                result=result,
                created_at=created_at,
                started_at=created_at,
                completed_at=max(utc_now(), created_at),
                **extra,
            )

        if owner_id:
            job = await self.store.insert(job)
            if job.status == JobStatus.COMPLETED:
                await self.executor.record_history(owner_id, job)

        self.logger.info(
            "Quick research finished", job_id=job.id, status=job.status.value
        )
        return job

    def _validate(
        self,
        query: Any,
        depth: Union[ResearchDepth, str],
        metadata: Optional[Mapping[str, Any]],
    ) -> tuple[str, ResearchDepth, dict[str, str]]:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Research query must not be empty")

        try:
            depth = ResearchDepth(depth)
        except ValueError as e:
            raise InvalidQueryError(f"Unknown research depth: {depth!r}") from e

        extra: dict[str, str] = {}
        for key, value in (metadata or {}).items():
            if key not in METADATA_FIELDS:
                raise InvalidQueryError(f"Unknown metadata field: {key}")
            if value is not None and str(value).strip():
                extra[key] = str(value).strip()

        return query.strip(), depth, extra
