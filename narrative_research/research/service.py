"""Entry points exposed to the rest of the product.

ResearchService wires the job store, executor, submitter, poller, query formulator and
verification scheduler together, from settings unless components are
injected:

    service = ResearchService()
    draft = await service.formulate_query("Acme Corp", audience="Board")
    job = await service.submit_research("Acme Corp market position", owner_id="user-1")
    handle = await service.poll_job(job.id, "user-1", on_complete=show_result)
    stats = await service.verify_claims(claims)
    await service.aclose()
"""

from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger

from narrative_research.config.settings import settings
from narrative_research.data_management.history_store import ResearchHistoryStore
from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.schemas import (
    Claim,
    FormulatedQuery,
    JobStatus,
    ResearchDepth,
    ResearchJob,
)
from narrative_research.data_management.verification_cache import VerificationCache
from narrative_research.research.job_executor import JobExecutor
from narrative_research.research.job_poller import (
    ErrorCallback,
    JobCallback,
    JobPoller,
    PollHandle,
)
from narrative_research.research.job_submitter import JobSubmitter
from narrative_research.research.query_formulator import QueryFormulator
from narrative_research.research.research_client import (
    PerplexityResearchClient,
    ResearchWorker,
)
from narrative_research.verification.claim_verifier import (
    ClaimVerifier,
    GeminiClaimVerifier,
)
from narrative_research.verification.scheduler import VerificationScheduler


class ResearchService:
    """Facade over research jobs and claim verification."""

    def __init__(
        self,
        worker: Optional[ResearchWorker] = None,
        verifier: Optional[ClaimVerifier] = None,
        store: Optional[JobStore] = None,
        history_store: Optional[ResearchHistoryStore] = None,
        cache: Optional[VerificationCache] = None,
        poller: Optional[JobPoller] = None,
        scheduler: Optional[VerificationScheduler] = None,
        formulator: Optional[QueryFormulator] = None,
    ):
        if worker is None:
            worker = PerplexityResearchClient(timeout=settings.research_timeout_seconds or 600.0)
        if store is None:
            store = JobStore(persistence_path=settings.job_store_path)
        if history_store is None:
            history_store = ResearchHistoryStore(persistence_path=settings.history_store_path)
        self.worker = worker
        self.store = store
        self.history_store = history_store
        self.executor = JobExecutor(
            self.store,
            self.worker,
            history_store=self.history_store,
            timeout_seconds=settings.research_timeout_seconds,
        )
        self.submitter = JobSubmitter(self.store, self.executor)
        self.poller = poller if poller is not None else JobPoller(self.store)

        if scheduler is None:
            if cache is None:
                cache = VerificationCache(
                    ttl_days=settings.verification_cache_ttl_days,
                    persistence_path=settings.verification_cache_path,
                )
            scheduler = VerificationScheduler(
                verifier if verifier is not None else GeminiClaimVerifier(),
                cache=cache,
                attempt_timeout=settings.verification_timeout_seconds,
            )
        self.scheduler = scheduler
        self.formulator = formulator if formulator is not None else QueryFormulator()
        self.logger = logger.bind(component="ResearchService")

    async def formulate_query(
        self,
        topic: str,
        context: Optional[str] = None,
        audience: Optional[str] = None,
        specific_questions: Optional[Iterable[str]] = None,
    ) -> FormulatedQuery:
        """Suggest a research query and refinement questions for a topic."""
        return await self.formulator.formulate(topic, context, audience, specific_questions)

    async def submit_research(
        self,
        query: str,
        depth: Union[ResearchDepth, str] = ResearchDepth.DEEP,
        metadata: Optional[Mapping[str, Any]] = None,
        owner_id: Optional[str] = None,
    ) -> ResearchJob:
        return await self.submitter.submit(query, depth, metadata, owner_id)

    async def poll_job(
        self,
        job_id: str,
        owner_id: str,
        on_complete: Optional[JobCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[JobCallback] = None,
    ) -> PollHandle:
        return await self.poller.start(job_id, owner_id, on_complete, on_error, on_update)

    async def list_jobs(
        self, owner_id: str, status: Optional[JobStatus] = None
    ) -> list[ResearchJob]:
        return await self.store.list_jobs(owner_id, status)

    async def storage_stats(self) -> dict[str, Any]:
        """Job counts and verification cache stats, after purging expired verdicts."""
        stats: dict[str, Any] = {"jobs": await self.store.get_stats(), "cache": None}
        cache = self.scheduler.cache
        if cache is not None:
            purged = await cache.purge_expired()
            stats["cache"] = {**await cache.get_stats(), "purged": purged}
        return stats

    def cancel_poll(self, handle: PollHandle) -> None:
        self.poller.cancel(handle)

    async def resume_incomplete_job(self, owner_id: str) -> Optional[ResearchJob]:
        return await self.poller.resume_incomplete_job(owner_id)

    async def verify_claims(self, claims: Iterable[Claim]) -> dict[str, Any]:
        """Verify claims in place; returns counts by verification status."""
        return await self.scheduler.verify_claims(claims)

    def retry_claim(self, claim: Claim):
        """Manual retry of one claim; None when it is still in flight."""
        return self.scheduler.retry(claim)

    async def aclose(self) -> None:
        """Stop verification pipelines, wait for running jobs, close clients."""
        await self.scheduler.shutdown()
        await self.executor.drain()
        close = getattr(self.worker, "close", None)
        if close is not None:
            await close()
        self.logger.info("Research service closed")
