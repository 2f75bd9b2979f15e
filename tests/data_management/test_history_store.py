"""Tests for ResearchHistoryStore."""

import pytest

from narrative_research.data_management.history_store import ResearchHistoryStore
from narrative_research.data_management.schemas import (
    JobStatus,
    ResearchJob,
    ResearchResult,
    utc_now,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> ResearchHistoryStore:
    return ResearchHistoryStore()


def _completed_job(query: str = "Acme Corp market position", subject: str = "Acme") -> ResearchJob:
    now = utc_now()
    return ResearchJob(
        owner_id="u1",
        query=query,
        subject=subject,
        status=JobStatus.COMPLETED,
        result=ResearchResult(summary=f"Summary for {query}"),
        created_at=now,
        started_at=now,
        completed_at=now,
    )


# ── Tests ─────────────────────────────────────────────────────────────────


class TestHistoryStore:
    @pytest.mark.asyncio
    async def test_save_and_list(self, store: ResearchHistoryStore) -> None:
        job = _completed_job()
        entry = await store.save_entry("u1", job)
        entries = await store.list_entries("u1")
        assert [e.id for e in entries] == [entry.id]
        assert entries[0].job_id == job.id
        assert entries[0].result.summary == job.result.summary

    @pytest.mark.asyncio
    async def test_job_without_result_rejected(self, store: ResearchHistoryStore) -> None:
        with pytest.raises(ValueError):
            await store.save_entry("u1", ResearchJob(owner_id="u1", query="q"))

    @pytest.mark.asyncio
    async def test_filter_by_subject(self, store: ResearchHistoryStore) -> None:
        await store.save_entry("u1", _completed_job("q1", subject="Acme"))
        await store.save_entry("u1", _completed_job("q2", subject="Globex"))
        entries = await store.list_entries("u1", subject="Globex")
        assert [e.query for e in entries] == ["q2"]

    @pytest.mark.asyncio
    async def test_scoped_to_owner(self, store: ResearchHistoryStore) -> None:
        await store.save_entry("u1", _completed_job())
        assert await store.list_entries("u2") == []

    @pytest.mark.asyncio
    async def test_delete_entry(self, store: ResearchHistoryStore) -> None:
        entry = await store.save_entry("u1", _completed_job())
        assert await store.delete_entry("u2", entry.id) is False
        assert await store.delete_entry("u1", entry.id) is True
        assert await store.list_entries("u1") == []

    @pytest.mark.asyncio
    async def test_persistence(self, tmp_path) -> None:
        path = str(tmp_path / "history.json")
        await ResearchHistoryStore(persistence_path=path).save_entry("u1", _completed_job())
        reloaded = ResearchHistoryStore(persistence_path=path)
        entries = await reloaded.list_entries("u1")
        assert len(entries) == 1
        assert entries[0].subject == "Acme"
