"""Schema package for research jobs, claims and claim verification.

Primary exports:
- ResearchJob: durable record of a research request and its lifecycle
- ResearchResult: normalized research output (summary, findings, citations)
- Claim / ClaimVerification: user claims and their verification state

Usage:
    from narrative_research.data_management.schemas import ResearchJob, ResearchDepth
    job = ResearchJob(owner_id="user-1", query="Acme Corp market position")

    from narrative_research.data_management.schemas import Claim
    claim = Claim(id="c1", title="Growth", text="Revenue grew 40% in 2024")
"""

from narrative_research.data_management.schemas.job_schema import (
    ALLOWED_TRANSITIONS,
    INCOMPLETE_STATUSES,
    MAX_KEY_FINDINGS,
    METADATA_FIELDS,
    Citation,
    FollowUpQuestion,
    FormulatedQuery,
    JobStatus,
    RawResearch,
    ResearchDepth,
    ResearchJob,
    ResearchResult,
    utc_now,
)
from narrative_research.data_management.schemas.claim_schema import (
    Claim,
    ClaimAlignment,
    ClaimVerdict,
    ClaimVerification,
    Freshness,
    VerificationSource,
    VerificationStatus,
)

__all__ = [
    # Jobs
    "ALLOWED_TRANSITIONS",
    "INCOMPLETE_STATUSES",
    "MAX_KEY_FINDINGS",
    "METADATA_FIELDS",
    "Citation",
    "FollowUpQuestion",
    "FormulatedQuery",
    "JobStatus",
    "RawResearch",
    "ResearchDepth",
    "ResearchJob",
    "ResearchResult",
    "utc_now",
    # Claims
    "Claim",
    "ClaimAlignment",
    "ClaimVerdict",
    "ClaimVerification",
    "Freshness",
    "VerificationSource",
    "VerificationStatus",
]
