"""Claim and claim-verification schemas.

Claims are extracted from business text and edited/approved by the user.
Verification runs per claim and writes a ClaimVerification:
- PENDING / CHECKING are placeholders owned by the in-flight pipeline
- VERIFIED / RELIABLE / UNRELIABLE / UNABLE_TO_VERIFY are terminal verdicts
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class VerificationStatus(str, Enum):
    """Verification state of a single claim."""

    PENDING = "pending"
    CHECKING = "checking"
    VERIFIED = "verified"
    RELIABLE = "reliable"
    UNRELIABLE = "unreliable"
    UNABLE_TO_VERIFY = "unable_to_verify"

    @property
    def is_terminal(self) -> bool:
        return self not in (VerificationStatus.PENDING, VerificationStatus.CHECKING)


class Freshness(str, Enum):
    """How current the data behind a claim is."""

    FRESH = "fresh"
    DATED = "dated"
    STALE = "stale"


class ClaimAlignment(str, Enum):
    """Relation of a claim to the captured narrative goal."""

    SUPPORTS = "supports"
    POTENTIAL_OBJECTION = "potential_objection"
    UNDERMINES = "undermines"
    NEUTRAL = "neutral"


class VerificationSource(BaseModel):
    """A source cited by the verification worker."""

    title: str = "Source"
    url: str


class ClaimVerdict(BaseModel):
    """Verdict returned by one successful VerificationWorker call."""

    status: VerificationStatus
    confidence: int = Field(default=50, ge=0, le=100)
    summary: str = ""
    freshness: Optional[Freshness] = None
    freshness_reason: Optional[str] = None
    data_date: Optional[str] = None
    sources: list[VerificationSource] = Field(default_factory=list)

    @field_validator("status")
    @classmethod
    def status_must_be_terminal(cls, value: VerificationStatus) -> VerificationStatus:
        if not value.is_terminal:
            raise ValueError(f"verdict status must be terminal, got {value.value}")
        return value


class ClaimVerification(BaseModel):
    """Verification state attached to a claim."""

    status: VerificationStatus
    confidence: int = Field(default=0, ge=0, le=100)
    summary: str = ""
    sources: list[VerificationSource] = Field(default_factory=list)
    freshness: Optional[Freshness] = None
    freshness_reason: Optional[str] = None
    data_date: Optional[str] = None
    attempts: int = Field(default=0, ge=0, description="Upstream attempts used")
    checked_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def placeholder(
        cls, status: VerificationStatus, attempts: int = 0
    ) -> "ClaimVerification":
        """In-flight marker shown while the pipeline waits or checks."""
        return cls(status=status, attempts=attempts)

    @classmethod
    def from_verdict(cls, verdict: ClaimVerdict, attempts: int) -> "ClaimVerification":
        return cls(
            status=verdict.status,
            confidence=verdict.confidence,
            summary=verdict.summary,
            sources=list(verdict.sources),
            freshness=verdict.freshness,
            freshness_reason=verdict.freshness_reason,
            data_date=verdict.data_date,
            attempts=attempts,
            checked_at=datetime.now(timezone.utc),
        )

    @classmethod
    def unable_to_verify(cls, reason: str, attempts: int) -> "ClaimVerification":
        """Terminal record written once retries are exhausted."""
        return cls(
            status=VerificationStatus.UNABLE_TO_VERIFY,
            confidence=0,
            summary=reason,
            attempts=attempts,
            checked_at=datetime.now(timezone.utc),
        )


class Claim(BaseModel):
    """A key claim extracted from the user's business text."""

    id: str
    title: str
    text: str
    source: Optional[str] = None
    approved: Optional[bool] = None
    edited: bool = False
    original_title: Optional[str] = None
    original_text: Optional[str] = None
    verification: Optional[ClaimVerification] = None
    alignment: Optional[ClaimAlignment] = None

    def edit(self, title: Optional[str] = None, text: Optional[str] = None) -> None:
        """Apply a user edit, keeping the extracted wording from the first edit."""
        if title is None and text is None:
            return
        if not self.edited:
            self.original_title = self.title
            self.original_text = self.text
            self.edited = True
        if title is not None:
            self.title = title
        if text is not None:
            self.text = text
