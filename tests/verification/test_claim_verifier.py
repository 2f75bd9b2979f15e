"""Tests for GeminiClaimVerifier and verdict parsing.

Tests cover:
- JSON extraction from fenced and bare model output
- Status mapping, checkable override, confidence clamping
- Upstream failure mapping (rate limit, API errors, empty responses)
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from narrative_research.data_management.schemas import Freshness, VerificationStatus
from narrative_research.errors import UpstreamError, UpstreamRateLimitedError
from narrative_research.verification.claim_verifier import (
    NOT_CHECKABLE_SUMMARY,
    GeminiClaimVerifier,
    parse_verdict,
)


def _payload(**overrides) -> str:
    data = {
        "status": "verified",
        "confidence": 85,
        "summary": "Matches the 2024 annual report.",
        "freshness": "fresh",
        "freshnessReason": "Published this year",
        "dataDate": "2024-03",
        "sources": [{"title": "Annual report", "url": "https://example.com/ar"}],
        "checkable": True,
    }
    data.update(overrides)
    return json.dumps(data)


def _model(text: str | None = None, side_effect: Exception | None = None) -> MagicMock:
    model = MagicMock()
    model.generate_content_async = AsyncMock(
        return_value=SimpleNamespace(text=text), side_effect=side_effect
    )
    return model


# ── Parsing Tests ─────────────────────────────────────────────────────────


class TestParseVerdict:
    def test_fenced_json(self) -> None:
        content = f"Here is my assessment:\n```json\n{_payload()}\n```\nHope this helps."
        verdict = parse_verdict(content)

        assert verdict.status == VerificationStatus.VERIFIED
        assert verdict.confidence == 85
        assert verdict.freshness == Freshness.FRESH
        assert verdict.freshness_reason == "Published this year"
        assert verdict.data_date == "2024-03"
        assert [s.url for s in verdict.sources] == ["https://example.com/ar"]

    def test_bare_object_with_prose(self) -> None:
        verdict = parse_verdict(f"Result: {_payload(status='reliable')} -- end")
        assert verdict.status == VerificationStatus.RELIABLE

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("uncertain", VerificationStatus.UNABLE_TO_VERIFY),
            ("unverified", VerificationStatus.UNRELIABLE),
            ("UNRELIABLE", VerificationStatus.UNRELIABLE),
            ("something else", VerificationStatus.UNABLE_TO_VERIFY),
        ],
    )
    def test_status_mapping(self, raw: str, expected: VerificationStatus) -> None:
        assert parse_verdict(_payload(status=raw)).status == expected

    def test_not_checkable_overrides_status(self) -> None:
        verdict = parse_verdict(_payload(status="verified", checkable=False))
        assert verdict.status == VerificationStatus.UNABLE_TO_VERIFY
        assert verdict.summary == NOT_CHECKABLE_SUMMARY

    @pytest.mark.parametrize(
        "raw,expected",
        [(150, 100), (-5, 0), ("72", 72), (None, 50), ("high", 50), (66.6, 67)],
    )
    def test_confidence_clamped(self, raw, expected: int) -> None:
        assert parse_verdict(_payload(confidence=raw)).confidence == expected

    def test_invalid_freshness_and_sources_dropped(self) -> None:
        verdict = parse_verdict(
            _payload(
                freshness="ancient",
                sources=[{"title": "no url"}, "junk", {"url": "https://example.com/x"}],
            )
        )
        assert verdict.freshness is None
        assert len(verdict.sources) == 1
        assert verdict.sources[0].title == "Source"

    @pytest.mark.parametrize("content", ["I could not check this.", "[1, 2, 3]", "{not json}"])
    def test_unparseable_raises(self, content: str) -> None:
        with pytest.raises(UpstreamError):
            parse_verdict(content)


# ── Verifier Tests ────────────────────────────────────────────────────────


class TestGeminiClaimVerifier:
    @pytest.mark.asyncio
    async def test_verify_returns_verdict(self) -> None:
        model = _model(text=_payload(status="reliable", confidence=70))
        verifier = GeminiClaimVerifier(model=model)

        verdict = await verifier.verify("Revenue grew 12% in 2024", "Revenue growth")

        assert verdict.status == VerificationStatus.RELIABLE
        assert verdict.confidence == 70
        prompt = model.generate_content_async.await_args.args[0]
        assert "Revenue grew 12% in 2024" in prompt
        assert "Revenue growth" in prompt

    @pytest.mark.asyncio
    async def test_resource_exhausted_is_rate_limit(self) -> None:
        verifier = GeminiClaimVerifier(
            model=_model(side_effect=google_exceptions.ResourceExhausted("quota"))
        )
        with pytest.raises(UpstreamRateLimitedError):
            await verifier.verify("claim", "title")

    @pytest.mark.asyncio
    async def test_api_error_is_upstream_error(self) -> None:
        verifier = GeminiClaimVerifier(
            model=_model(side_effect=google_exceptions.InternalServerError("boom"))
        )
        with pytest.raises(UpstreamError) as exc_info:
            await verifier.verify("claim", "title")
        assert not isinstance(exc_info.value, UpstreamRateLimitedError)

    @pytest.mark.asyncio
    async def test_empty_response_is_upstream_error(self) -> None:
        verifier = GeminiClaimVerifier(model=_model(text=""))
        with pytest.raises(UpstreamError):
            await verifier.verify("claim", "title")

    @pytest.mark.asyncio
    async def test_prose_response_is_upstream_error(self) -> None:
        verifier = GeminiClaimVerifier(model=_model(text="Looks right to me."))
        with pytest.raises(UpstreamError):
            await verifier.verify("claim", "title")

    def test_missing_key_fails_on_model_access(self) -> None:
        verifier = GeminiClaimVerifier(api_key="")
        with pytest.raises(UpstreamError):
            _ = verifier.model
