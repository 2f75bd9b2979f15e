"""Data management package for the research core.

Provides storage adapters and schemas for:
- Research jobs (ResearchJob) - owner-scoped, state-machine enforced
- Research history - completed results kept per owner
- Verification cache - conclusive claim verdicts keyed by claim hash

Storage adapters:
- JobStore: Owner-scoped job persistence
- ResearchHistoryStore: Owner-scoped history persistence
- VerificationCache: TTL cache of claim verifications
"""

from narrative_research.data_management.job_store import JobStore
from narrative_research.data_management.history_store import (
    ResearchHistoryEntry,
    ResearchHistoryStore,
)
from narrative_research.data_management.verification_cache import (
    VerificationCache,
    hash_claim,
)

__all__ = [
    "JobStore",
    "ResearchHistoryEntry",
    "ResearchHistoryStore",
    "VerificationCache",
    "hash_claim",
]
