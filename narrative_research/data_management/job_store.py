"""Research job storage with owner-scoped access and state-machine enforcement.

Features:
- In-memory storage with optional JSON persistence
- Owner scoping: every read and write names the caller, foreign jobs are Forbidden
- Status transitions validated on update (no regression, terminal jobs frozen)
- Patches re-validated against ResearchJob so invalid records are never stored
- Thread-safe operations with asyncio locks

Usage:
    from narrative_research.data_management.job_store import JobStore

    store = JobStore()
    job = await store.create("user-1", "Acme Corp market position", ResearchDepth.DEEP)
    job = await store.update(job.id, "user-1", {"status": JobStatus.PROCESSING})
    resumable = await store.find_latest_incomplete("user-1")
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from narrative_research.data_management.schemas import (
    INCOMPLETE_STATUSES,
    METADATA_FIELDS,
    JobStatus,
    ResearchDepth,
    ResearchJob,
)
from narrative_research.errors import (
    ForbiddenError,
    InvalidTransitionError,
    JobNotFoundError,
    JobStoreError,
    JobTerminalError,
)

# Fields an update() patch may touch; identity and request fields are immutable
MUTABLE_FIELDS = frozenset({"status", "result", "error", "started_at", "completed_at"})


class JobStore:
    """
    Storage adapter for research jobs keyed by job id.

    Stands in for the relational research_jobs table: records are scoped by
    owner_id the way row-level security scopes rows by the authenticated user.

    Data structure:
    {
        job_id: ResearchJob,
        ...
    }

    Callers always receive copies; the stored record changes only via update().
    """

    def __init__(self, persistence_path: Optional[str] = None):
        """
        Initialize job store.

        Args:
            persistence_path: Optional path to JSON file for persistence.
                            If None, storage is memory-only.
        """
        self._jobs: Dict[str, ResearchJob] = {}
        self._lock = asyncio.Lock()
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.logger = logger.bind(component="JobStore")

        if self.persistence_path and self.persistence_path.exists():
            self._load_from_file()

        self.logger.info(
            "JobStore initialized",
            persistence_enabled=self.persistence_path is not None,
            jobs_loaded=len(self._jobs),
        )

    async def create(
        self,
        owner_id: str,
        query: str,
        depth: ResearchDepth,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ResearchJob:
        """
        Create a pending job for an owner.

        Args:
            owner_id: Authenticated requester
            query: Finalized research query
            depth: Research profile
            metadata: Optional subject / decision_type / audience

        Returns:
            The new job (status=pending)
        """
        extra = {k: v for k, v in (metadata or {}).items() if k in METADATA_FIELDS}
        job = ResearchJob(owner_id=owner_id, query=query, depth=depth, **extra)
        return await self.insert(job)

    async def insert(self, job: ResearchJob) -> ResearchJob:
        """
        Persist a fully formed job record in one step.

        Used for quick research, whose record is written already terminal.

        Raises:
            JobStoreError: If the job has no owner or the id already exists
        """
        if not job.owner_id:
            raise JobStoreError("Cannot store a job without an owner")

        async with self._lock:
            if job.id in self._jobs:
                raise JobStoreError(f"Job {job.id} already exists")

            self._jobs[job.id] = job.model_copy(deep=True)
            self._persist()

        self.logger.info(
            "Job stored: {job_id}",
            job_id=job.id,
            owner_id=job.owner_id,
            depth=job.depth.value,
            status=job.status.value,
        )
        return job.model_copy(deep=True)

    async def get(self, job_id: str, owner_id: str) -> ResearchJob:
        """
        Read a job owned by the caller.

        Raises:
            JobNotFoundError: Unknown job id
            ForbiddenError: Job belongs to another owner
        """
        async with self._lock:
            job = self._get_owned(job_id, owner_id)
            return job.model_copy(deep=True)

    async def find_latest_incomplete(self, owner_id: str) -> Optional[ResearchJob]:
        """
        Find the owner's most recent pending or processing job.

        Ordered by created_at; insertion order breaks ties. Terminal jobs are
        never returned, so a job once observed complete cannot reappear here.

        Returns:
            The newest incomplete job, or None
        """
        async with self._lock:
            latest: Optional[ResearchJob] = None
            for job in self._jobs.values():
                if job.owner_id != owner_id or job.status not in INCOMPLETE_STATUSES:
                    continue
                if latest is None or job.created_at >= latest.created_at:
                    latest = job
            return latest.model_copy(deep=True) if latest else None

    async def list_jobs(
        self, owner_id: str, status: Optional[JobStatus] = None
    ) -> List[ResearchJob]:
        """List an owner's jobs newest first, optionally filtered by status."""
        async with self._lock:
            jobs = [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.owner_id == owner_id and (status is None or job.status == status)
            ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def update(
        self, job_id: str, owner_id: str, patch: Mapping[str, Any]
    ) -> ResearchJob:
        """
        Apply a patch to a job owned by the caller.

        Args:
            job_id: Job to update
            owner_id: Caller identity
            patch: Field -> value; only status, result, error, started_at,
                   completed_at may change

        Returns:
            The updated job

        Raises:
            JobNotFoundError / ForbiddenError: Access violations
            JobTerminalError: The job is already completed or failed
            InvalidTransitionError: Status regression, immutable field, or a
                                    patch that breaks record invariants
        """
        illegal = set(patch) - MUTABLE_FIELDS
        if illegal:
            raise InvalidTransitionError(
                f"Immutable job fields cannot be patched: {', '.join(sorted(illegal))}"
            )

        async with self._lock:
            current = self._get_owned(job_id, owner_id)

            if current.is_terminal:
                raise JobTerminalError(
                    f"Job {job_id} is already {current.status.value}"
                )

            new_status = JobStatus(patch.get("status", current.status))
            if not current.can_transition_to(new_status):
                raise InvalidTransitionError(
                    f"Job {job_id} cannot move from {current.status.value} to {new_status.value}"
                )
            if "started_at" in patch and current.started_at is not None:
                raise InvalidTransitionError(f"Job {job_id} has already started")

            merged = current.model_dump()
            merged.update(patch)
            try:
                updated = ResearchJob.model_validate(merged)
            except ValidationError as e:
                raise InvalidTransitionError(
                    f"Patch violates job invariants for {job_id}: {e.errors()[0]['msg']}"
                ) from e

            self._jobs[job_id] = updated
            self._persist()

        if updated.status != current.status:
            self.logger.info(
                "Job {job_id} {old} -> {new}",
                job_id=job_id,
                old=current.status.value,
                new=updated.status.value,
                owner_id=owner_id,
            )
        return updated.model_copy(deep=True)

    async def get_stats(self) -> Dict[str, Any]:
        """Job counts, overall and by status."""
        async with self._lock:
            by_status = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                by_status[job.status.value] += 1
            return {"total_jobs": len(self._jobs), "by_status": by_status}

    def _get_owned(self, job_id: str, owner_id: str) -> ResearchJob:
        """Lookup with ownership check. Caller must hold the lock."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.owner_id != owner_id:
            self.logger.warning(
                "Forbidden access to job {job_id}", job_id=job_id, caller=owner_id
            )
            raise ForbiddenError(f"Job {job_id} is not owned by caller")
        return job

    def _persist(self) -> None:
        if self.persistence_path:
            self._save_to_file()

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        if not self.persistence_path:
            return
        try:
            self.persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                job_id: job.model_dump(mode="json") for job_id, job in self._jobs.items()
            }
            with open(self.persistence_path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to persist jobs: {e}")

    def _load_from_file(self) -> None:
        """Load jobs from JSON file, skipping records that fail validation."""
        try:
            with open(self.persistence_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load jobs: {e}")
            return

        for job_id, raw in data.items():
            try:
                self._jobs[job_id] = ResearchJob.model_validate(raw)
            except ValidationError as e:
                self.logger.warning(f"Skipping invalid job record {job_id}: {e}")
