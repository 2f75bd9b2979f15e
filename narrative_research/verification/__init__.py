"""Claim verification: staggered, retried, cached verification of key claims.

Components:
- ClaimVerifier: Protocol for the external claim checker
- GeminiClaimVerifier: Gemini-backed verifier
- VerificationScheduler: Per-claim pipelines with stagger, backoff and cache
"""

from narrative_research.verification.claim_verifier import (
    ClaimVerifier,
    GeminiClaimVerifier,
    parse_verdict,
)
from narrative_research.verification.scheduler import VerificationScheduler

__all__ = [
    "ClaimVerifier",
    "GeminiClaimVerifier",
    "VerificationScheduler",
    "parse_verdict",
]
