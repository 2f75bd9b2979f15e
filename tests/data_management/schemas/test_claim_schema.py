"""Tests for claim and verification schemas."""

import pytest
from pydantic import ValidationError

from narrative_research.data_management.schemas import (
    Claim,
    ClaimVerdict,
    ClaimVerification,
    VerificationStatus,
)


class TestVerificationStatus:
    @pytest.mark.parametrize(
        "status,terminal",
        [
            (VerificationStatus.PENDING, False),
            (VerificationStatus.CHECKING, False),
            (VerificationStatus.VERIFIED, True),
            (VerificationStatus.UNABLE_TO_VERIFY, True),
        ],
    )
    def test_is_terminal(self, status: VerificationStatus, terminal: bool) -> None:
        assert status.is_terminal is terminal


class TestClaimVerdict:
    def test_placeholder_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClaimVerdict(status=VerificationStatus.CHECKING)

    def test_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ClaimVerdict(status=VerificationStatus.VERIFIED, confidence=101)


class TestClaimVerification:
    def test_from_verdict_copies_fields(self) -> None:
        verdict = ClaimVerdict(status=VerificationStatus.RELIABLE, confidence=70, summary="ok")
        verification = ClaimVerification.from_verdict(verdict, attempts=2)

        assert verification.status == VerificationStatus.RELIABLE
        assert verification.confidence == 70
        assert verification.attempts == 2
        assert verification.checked_at is not None

    def test_unable_to_verify_is_terminal(self) -> None:
        verification = ClaimVerification.unable_to_verify("gave up", attempts=3)
        assert verification.is_terminal
        assert verification.confidence == 0

    def test_placeholder_not_terminal(self) -> None:
        placeholder = ClaimVerification.placeholder(VerificationStatus.PENDING)
        assert not placeholder.is_terminal
        assert placeholder.checked_at is None


class TestClaimEdit:
    def test_first_edit_keeps_extracted_wording(self) -> None:
        claim = Claim(id="c1", title="Revenue", text="Revenue grew 12%")
        claim.edit(text="Revenue grew 14%")
        claim.edit(title="Growth")

        assert claim.edited
        assert claim.original_text == "Revenue grew 12%"
        assert claim.original_title == "Revenue"
        assert claim.title == "Growth"
        assert claim.text == "Revenue grew 14%"

    def test_empty_edit_is_noop(self) -> None:
        claim = Claim(id="c1", title="Revenue", text="Revenue grew 12%")
        claim.edit()
        assert not claim.edited

    def test_approval_is_tristate(self) -> None:
        claim = Claim(id="c1", title="Revenue", text="Revenue grew 12%")
        assert claim.approved is None
        claim.approved = False
        assert claim.approved is False
