"""Claim verification worker interface and the Gemini-backed implementation.

The scheduler depends only on ClaimVerifier.verify(text, title) -> ClaimVerdict.
Any exception from verify() counts as a failed attempt and is retried by the
scheduler; this module never retries on its own.

Model output handling:
- JSON is taken from a ```json fenced block, else the first {...} object
- "uncertain" maps to UNABLE_TO_VERIFY, "unverified" to UNRELIABLE
- checkable == false overrides the status with UNABLE_TO_VERIFY
- confidence is clamped to 0-100 (missing -> 50)
"""

from typing import Any, Optional, Protocol

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions

from narrative_research.config.settings import settings
from narrative_research.data_management.schemas import (
    ClaimVerdict,
    Freshness,
    VerificationSource,
    VerificationStatus,
)
from narrative_research.errors import UpstreamError, UpstreamRateLimitedError
from narrative_research.utils.model_output import extract_json_object

VERIFICATION_SYSTEM_PROMPT = """You are a fact-checking assistant for business narratives.
You judge whether a single claim is supported by real, verifiable information.
Be conservative: if you are unsure, answer "uncertain". Only answer "verified"
when you have high confidence the claim is accurate."""

VERIFICATION_USER_PROMPT = """CLAIM TO VERIFY:
Title: {title}
"{text}"

Consider:
- Is this a factual claim that can be verified?
- Are there specific numbers, dates, or statistics that can be checked?
- How current is the data behind it?

Return a JSON object with this structure:
{{
  "status": "verified" | "reliable" | "unreliable" | "uncertain",
  "confidence": <number 0-100>,
  "summary": "<1-2 sentence explanation>",
  "freshness": "fresh" | "dated" | "stale",
  "freshnessReason": "<why the data is or is not current>",
  "dataDate": "<date of the underlying data, if known>",
  "sources": [{{"title": "<title>", "url": "<url>"}}],
  "checkable": <boolean - whether this claim contains verifiable facts>
}}"""

NOT_CHECKABLE_SUMMARY = "This claim doesn't contain easily verifiable facts."

_STATUS_ALIASES = {
    "verified": VerificationStatus.VERIFIED,
    "reliable": VerificationStatus.RELIABLE,
    "unreliable": VerificationStatus.UNRELIABLE,
    "unverified": VerificationStatus.UNRELIABLE,
    "uncertain": VerificationStatus.UNABLE_TO_VERIFY,
    "unable_to_verify": VerificationStatus.UNABLE_TO_VERIFY,
}

class ClaimVerifier(Protocol):
    """Checks one claim against external sources."""

    async def verify(self, text: str, title: str) -> ClaimVerdict:
        ...


class GeminiClaimVerifier:
    """
    Claim verifier backed by a Gemini generative model.

    The model is created lazily so constructing the verifier never touches
    the network or requires a key; tests inject a model object exposing
    generate_content_async().
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        model: Optional[Any] = None,
    ) -> None:
        """Initialize GeminiClaimVerifier.

        Args:
            model_name: Gemini model (defaults to settings.verification_model).
            api_key: Overrides GOOGLE_AI_API_KEY from settings.
            temperature: Sampling temperature; low for consistent verdicts.
            model: Pre-built model object.
        """
        self.model_name = model_name or settings.verification_model
        self.api_key = api_key if api_key is not None else settings.google_ai_api_key
        self.temperature = temperature
        self._model = model
        self._logger = structlog.get_logger().bind(component="GeminiClaimVerifier")

    @property
    def model(self) -> Any:
        """Lazy-load the Gemini model on first access."""
        if self._model is None:
            if not self.api_key:
                raise UpstreamError("GOOGLE_AI_API_KEY is not configured")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                self.model_name,
                system_instruction=VERIFICATION_SYSTEM_PROMPT,
            )
        return self._model

    async def verify(self, text: str, title: str) -> ClaimVerdict:
        """Verify one claim.

        Raises:
            UpstreamRateLimitedError: The model API throttled the request.
            UpstreamError: Any other API failure or an unusable response.
        """
        prompt = VERIFICATION_USER_PROMPT.format(title=title, text=text)
        self._logger.debug("verify_request", claim=text[:100])

        try:
            response = await self.model.generate_content_async(
                prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=self.temperature,
                ),
            )
        except google_exceptions.ResourceExhausted as e:
            self._logger.warning("verify_rate_limited", error=str(e))
            raise UpstreamRateLimitedError("Rate limit exceeded") from e
        except google_exceptions.GoogleAPICallError as e:
            raise UpstreamError(f"Verification request failed: {e}") from e

        try:
            content = response.text
        except (ValueError, AttributeError) as e:
            raise UpstreamError("No content in verification response") from e
        if not content:
            raise UpstreamError("No content in verification response")

        verdict = parse_verdict(content)
        self._logger.info(
            "verify_result",
            status=verdict.status.value,
            confidence=verdict.confidence,
        )
        return verdict


def parse_verdict(content: str) -> ClaimVerdict:
    """
    Build a ClaimVerdict from raw model output.

    Raises:
        UpstreamError: No JSON object could be extracted
    """
    data = extract_json_object(content)
    if data is None:
        raise UpstreamError("Verification response was not valid JSON")
    return verdict_from_payload(data)


def verdict_from_payload(data: Any) -> ClaimVerdict:
    """Build a ClaimVerdict from a decoded verdict object (camelCase keys)."""
    if isinstance(data, ClaimVerdict):
        return data
    if not isinstance(data, dict):
        raise UpstreamError(
            f"Unexpected verification result type: {type(data).__name__}"
        )

    status = _STATUS_ALIASES.get(
        str(data.get("status", "")).strip().lower(),
        VerificationStatus.UNABLE_TO_VERIFY,
    )
    summary = str(data.get("summary") or "")
    if data.get("checkable") is False:
        status = VerificationStatus.UNABLE_TO_VERIFY
        summary = NOT_CHECKABLE_SUMMARY

    return ClaimVerdict(
        status=status,
        confidence=_clamp_confidence(data.get("confidence")),
        summary=summary,
        freshness=_parse_freshness(data.get("freshness")),
        freshness_reason=_optional_str(data.get("freshnessReason")),
        data_date=_optional_str(data.get("dataDate")),
        sources=_parse_sources(data.get("sources")),
    )


def _clamp_confidence(value: Any) -> int:
    try:
        confidence = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 50
    return max(0, min(100, confidence))


def _parse_freshness(value: Any) -> Optional[Freshness]:
    try:
        return Freshness(str(value).strip().lower())
    except ValueError:
        return None


def _parse_sources(value: Any) -> list[VerificationSource]:
    sources = []
    for item in value or []:
        if isinstance(item, dict) and isinstance(item.get("url"), str) and item["url"]:
            sources.append(
                VerificationSource(url=item["url"], title=_optional_str(item.get("title")) or "Source")
            )
    return sources


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
