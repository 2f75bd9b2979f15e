"""Research job schemas: status state machine, depth profiles, normalized results.

A ResearchJob moves pending -> processing -> completed | failed and never
leaves a terminal state. The record itself enforces the invariants every
persisted copy must satisfy:
- completed jobs carry a result and no error, failed jobs an error and no result
- non-terminal jobs carry neither
- created_at <= started_at <= completed_at whenever those are set

The JSON produced by ``model_dump(mode="json")`` is the canonical persisted shape.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class JobStatus(str, Enum):
    """Lifecycle status of a research job.

    PENDING: Created, waiting for the execution trigger.
    PROCESSING: Execution started, the research worker is running.
    COMPLETED: Research succeeded, result stored (terminal).
    FAILED: Research failed, error message stored (terminal).
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


INCOMPLETE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})

# Status -> statuses a stored job may move to via update()
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.FAILED}
    ),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class ResearchDepth(str, Enum):
    """Research profile.

    QUICK runs inline within the request; DEEP runs as a tracked background job.
    """

    QUICK = "quick"
    DEEP = "deep"


# Optional request metadata stored alongside the query
METADATA_FIELDS = ("subject", "decision_type", "audience")

MAX_KEY_FINDINGS = 8


class Citation(BaseModel):
    """A source URL returned by the research worker with a display title."""

    url: str = Field(..., description="Source identifier, typically a URL")
    title: str = Field(default="Source", description="Human-readable title")


class ResearchResult(BaseModel):
    """Normalized research output produced by the ResultAggregator."""

    summary: str = Field(default="", description="Short executive summary")
    key_findings: list[str] = Field(
        default_factory=list,
        description="Bullet findings extracted from the raw text",
    )
    citations: list[Citation] = Field(default_factory=list)
    raw_content: str = Field(default="", description="Unmodified worker output")


class RawResearch(BaseModel):
    """Unparsed research worker output."""

    content: str = ""
    citations: list[str] = Field(default_factory=list)


class FollowUpQuestion(BaseModel):
    """A refinement question offered before research starts."""

    id: str
    question: str
    options: list[str] = Field(default_factory=list)


class FormulatedQuery(BaseModel):
    """Research query synthesized from a topic, plus refinement questions."""

    suggested_query: str = Field(..., min_length=1)
    follow_up_questions: list[FollowUpQuestion] = Field(default_factory=list)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResearchJob(BaseModel):
    """Durable record of one research request."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: Optional[str] = Field(
        default=None,
        description="Requester identity; None only for unpersisted anonymous quick jobs",
    )
    query: str = Field(..., min_length=1)
    depth: ResearchDepth = ResearchDepth.DEEP
    status: JobStatus = JobStatus.PENDING
    subject: Optional[str] = None
    decision_type: Optional[str] = None
    audience: Optional[str] = None
    result: Optional[ResearchResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "ResearchJob":
        if self.status == JobStatus.COMPLETED:
            if self.result is None or self.error is not None:
                raise ValueError("completed job must have a result and no error")
        elif self.status == JobStatus.FAILED:
            if self.error is None or self.result is not None:
                raise ValueError("failed job must have an error and no result")
        elif self.result is not None or self.error is not None:
            raise ValueError(f"{self.status.value} job cannot carry a result or error")

        if self.started_at is not None and self.started_at < self.created_at:
            raise ValueError("started_at precedes created_at")
        if self.completed_at is not None:
            floor = self.started_at or self.created_at
            if self.completed_at < floor:
                raise ValueError("completed_at precedes started_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, status: JobStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "6f1c1f5e-2a4b-4c43-9a55-0d2f0c7f3b11",
                    "owner_id": "user-42",
                    "query": "Acme Corp market position",
                    "depth": "deep",
                    "status": "completed",
                    "subject": "Acme Corp",
                    "decision_type": None,
                    "audience": "exec",
                    "result": {
                        "summary": "Acme Corp holds a leading share of the regional widget market.",
                        "key_findings": ["Revenue grew 12% year over year"],
                        "citations": [
                            {
                                "url": "https://example.com/acme-market-share",
                                "title": "acme market share",
                            }
                        ],
                        "raw_content": "...",
                    },
                    "error": None,
                    "created_at": "2026-01-10T12:00:00Z",
                    "started_at": "2026-01-10T12:00:01Z",
                    "completed_at": "2026-01-10T12:03:30Z",
                }
            ]
        }
    }
