"""Research history storage: completed research kept per owner for later reuse.

Writes are best-effort from the caller's point of view: the submitter and
executor log and swallow history failures so they never fail a research request.
"""

import asyncio
import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from narrative_research.data_management.schemas import ResearchJob, ResearchResult, utc_now


class ResearchHistoryEntry(BaseModel):
    """A saved research result."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    job_id: Optional[str] = None
    query: str
    subject: Optional[str] = None
    decision_type: Optional[str] = None
    audience: Optional[str] = None
    result: ResearchResult
    created_at: datetime = Field(default_factory=utc_now)


class ResearchHistoryStore:
    """
    Owner-scoped research history with optional JSON persistence.

    Data structure:
    {
        owner_id: {
            entry_id: ResearchHistoryEntry,
            ...
        },
        ...
    }
    """

    def __init__(self, persistence_path: Optional[str] = None):
        self._entries: Dict[str, Dict[str, ResearchHistoryEntry]] = {}
        self._lock = asyncio.Lock()
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.logger = logger.bind(component="ResearchHistoryStore")

        if self.persistence_path and self.persistence_path.exists():
            self._load_from_file()

    async def save_entry(self, owner_id: str, job: ResearchJob) -> ResearchHistoryEntry:
        """
        Save a completed job's result to the owner's history.

        Raises:
            ValueError: If the job has no result
        """
        if job.result is None:
            raise ValueError(f"Job {job.id} has no result to save")

        entry = ResearchHistoryEntry(
            owner_id=owner_id,
            job_id=job.id,
            query=job.query,
            subject=job.subject,
            decision_type=job.decision_type,
            audience=job.audience,
            result=job.result,
        )

        async with self._lock:
            self._entries.setdefault(owner_id, {})[entry.id] = entry
            if self.persistence_path:
                self._save_to_file()

        self.logger.debug("History entry saved", owner_id=owner_id, job_id=job.id)
        return entry

    async def list_entries(
        self, owner_id: str, subject: Optional[str] = None
    ) -> List[ResearchHistoryEntry]:
        """List an owner's entries newest first, optionally for one subject."""
        async with self._lock:
            entries = [
                e
                for e in self._entries.get(owner_id, {}).values()
                if subject is None or e.subject == subject
            ]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        """Delete an owner's entry. Returns False if it does not exist."""
        async with self._lock:
            removed = self._entries.get(owner_id, {}).pop(entry_id, None)
            if removed is not None and self.persistence_path:
                self._save_to_file()
        return removed is not None

    def _save_to_file(self) -> None:
        try:
            self.persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                owner: {eid: e.model_dump(mode="json") for eid, e in entries.items()}
                for owner, entries in self._entries.items()
            }
            with open(self.persistence_path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to persist history: {e}")

    def _load_from_file(self) -> None:
        try:
            with open(self.persistence_path) as f:
                data = json.load(f)
            for owner, entries in data.items():
                self._entries[owner] = {
                    eid: ResearchHistoryEntry.model_validate(raw)
                    for eid, raw in entries.items()
                }
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logger.error(f"Failed to load history: {e}")
