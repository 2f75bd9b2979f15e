"""Tests for JobSubmitter.

Tests cover:
- Request validation (empty query, depth, metadata keys)
- Quick path: inline, one terminal write, failures returned as failed jobs
- Deep path: auth required, pending job returned, execution triggered
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from narrative_research.data_management.history_store import ResearchHistoryStore
from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.schemas import (
    JobStatus,
    RawResearch,
    ResearchDepth,
)
from narrative_research.errors import (
    AuthRequiredError,
    InvalidQueryError,
    UpstreamRateLimitedError,
)
from narrative_research.research.job_executor import JobExecutor
from narrative_research.research.job_submitter import JobSubmitter
from narrative_research.research.research_client import RATE_LIMIT_MESSAGE

REPORT = (
    "Summary\n"
    "Acme Corp holds a leading position in the regional widget market today.\n"
    "Key Findings\n"
    "- Revenue grew 12%\n"
)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def history() -> ResearchHistoryStore:
    return ResearchHistoryStore()


@pytest.fixture
def worker() -> MagicMock:
    worker = MagicMock()
    worker.research = AsyncMock(return_value=RawResearch(content=REPORT))
    return worker


@pytest.fixture
def executor(store: JobStore, worker: MagicMock, history: ResearchHistoryStore) -> JobExecutor:
    return JobExecutor(store, worker, history_store=history)


@pytest.fixture
def submitter(store: JobStore, executor: JobExecutor) -> JobSubmitter:
    return JobSubmitter(store, executor)


# ── Validation Tests ──────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    async def test_empty_query_rejected(
        self, submitter: JobSubmitter, store: JobStore, query: str
    ) -> None:
        with pytest.raises(InvalidQueryError):
            await submitter.submit(query, ResearchDepth.DEEP, owner_id="u1")
        assert (await store.get_stats())["total_jobs"] == 0

    @pytest.mark.asyncio
    async def test_unknown_depth_rejected(self, submitter: JobSubmitter) -> None:
        with pytest.raises(InvalidQueryError):
            await submitter.submit("q", "thorough", owner_id="u1")

    @pytest.mark.asyncio
    async def test_unknown_metadata_rejected(
        self, submitter: JobSubmitter, store: JobStore
    ) -> None:
        with pytest.raises(InvalidQueryError):
            await submitter.submit("q", ResearchDepth.DEEP, {"budget": "1M"}, owner_id="u1")
        assert (await store.get_stats())["total_jobs"] == 0

    @pytest.mark.asyncio
    async def test_depth_accepts_string(self, submitter: JobSubmitter) -> None:
        job = await submitter.submit("q", "quick", owner_id="u1")
        assert job.depth == ResearchDepth.QUICK

    @pytest.mark.asyncio
    async def test_query_is_trimmed(self, submitter: JobSubmitter) -> None:
        job = await submitter.submit("  Acme Corp  ", ResearchDepth.QUICK)
        assert job.query == "Acme Corp"


# ── Quick Path Tests ──────────────────────────────────────────────────────


class TestQuickResearch:
    @pytest.mark.asyncio
    async def test_completed_in_one_write(
        self, submitter: JobSubmitter, store: JobStore
    ) -> None:
        job = await submitter.submit(
            "Acme Corp market position", ResearchDepth.QUICK, {"subject": "Acme"}, owner_id="u1"
        )
        assert job.status == JobStatus.COMPLETED
        assert job.result.key_findings == ["Revenue grew 12%"]
        assert job.subject == "Acme"

        stored = await store.get(job.id, "u1")
        assert stored.status == JobStatus.COMPLETED
        assert await store.find_latest_incomplete("u1") is None

    @pytest.mark.asyncio
    async def test_rate_limited_returns_failed_job(
        self, submitter: JobSubmitter, worker: MagicMock
    ) -> None:
        worker.research.side_effect = UpstreamRateLimitedError(RATE_LIMIT_MESSAGE)
        job = await submitter.submit("Acme Corp market position", ResearchDepth.QUICK, owner_id="u1")

        assert job.status == JobStatus.FAILED
        assert "Rate limit" in job.error
        assert job.result is None
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_anonymous_quick_not_persisted(
        self, submitter: JobSubmitter, store: JobStore, history: ResearchHistoryStore
    ) -> None:
        job = await submitter.submit("q", ResearchDepth.QUICK)
        assert job.status == JobStatus.COMPLETED
        assert job.owner_id is None
        assert (await store.get_stats())["total_jobs"] == 0

    @pytest.mark.asyncio
    async def test_quick_saved_to_history(
        self, submitter: JobSubmitter, history: ResearchHistoryStore
    ) -> None:
        job = await submitter.submit("q", ResearchDepth.QUICK, owner_id="u1")
        entries = await history.list_entries("u1")
        assert [e.job_id for e in entries] == [job.id]

    @pytest.mark.asyncio
    async def test_failed_quick_not_saved_to_history(
        self, submitter: JobSubmitter, worker: MagicMock, history: ResearchHistoryStore
    ) -> None:
        worker.research.side_effect = UpstreamRateLimitedError(RATE_LIMIT_MESSAGE)
        await submitter.submit("q", ResearchDepth.QUICK, owner_id="u1")
        assert await history.list_entries("u1") == []


# ── Deep Path Tests ───────────────────────────────────────────────────────


class TestDeepResearch:
    @pytest.mark.asyncio
    async def test_requires_owner(self, submitter: JobSubmitter, store: JobStore) -> None:
        with pytest.raises(AuthRequiredError):
            await submitter.submit("q", ResearchDepth.DEEP)
        assert (await store.get_stats())["total_jobs"] == 0

    @pytest.mark.asyncio
    async def test_returns_pending_and_triggers(
        self, submitter: JobSubmitter, executor: JobExecutor, store: JobStore
    ) -> None:
        job = await submitter.submit("Acme Corp market position", ResearchDepth.DEEP, owner_id="u1")
        assert job.status == JobStatus.PENDING
        assert executor.active_count == 1

        await executor.drain()
        stored = await store.get(job.id, "u1")
        assert stored.status == JobStatus.COMPLETED
        assert stored.result.summary
