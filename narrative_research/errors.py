"""Error taxonomy for research jobs and claim verification.

Request-level errors (InvalidQueryError, AuthRequiredError) are raised before
any job record exists. Upstream errors describe RemoteWorker/VerificationWorker
failures: terminal for research jobs, retryable for claim verification.
Store errors describe JobStore access and state-machine violations.
"""


class ResearchError(Exception):
    """Base exception for the research core."""
    pass


# ── Request validation ────────────────────────────────────────────────────


class InvalidQueryError(ResearchError):
    """Raised when a research request is empty or malformed."""
    pass


class AuthRequiredError(ResearchError):
    """Raised when an operation needs an authenticated owner."""
    pass


# ── Upstream workers ──────────────────────────────────────────────────────


class UpstreamError(ResearchError):
    """Raised when a research or verification worker call fails."""
    pass


class UpstreamRateLimitedError(UpstreamError):
    """Raised when an upstream API signals throttling (HTTP 429)."""
    pass


# ── Job store ─────────────────────────────────────────────────────────────


class JobStoreError(ResearchError):
    """Base exception for job store access errors."""
    pass


class JobNotFoundError(JobStoreError):
    """Raised when a job id does not exist."""
    pass


class ForbiddenError(JobStoreError):
    """Raised when a caller touches a job owned by someone else."""
    pass


class JobTerminalError(JobStoreError):
    """Raised when a patch targets a completed or failed job."""
    pass


class InvalidTransitionError(JobStoreError):
    """Raised when a patch would regress status or break record invariants."""
    pass


__all__ = [
    "ResearchError",
    "InvalidQueryError",
    "AuthRequiredError",
    "UpstreamError",
    "UpstreamRateLimitedError",
    "JobStoreError",
    "JobNotFoundError",
    "ForbiddenError",
    "JobTerminalError",
    "InvalidTransitionError",
]
