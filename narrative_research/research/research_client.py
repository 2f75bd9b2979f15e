"""Research worker interface and the Perplexity-backed implementation.

The core depends only on ResearchWorker.research(query, depth) -> RawResearch.
PerplexityResearchClient maps depth onto a model profile:
- deep  -> sonar-deep-research (minutes)
- quick -> sonar-pro (seconds)

HTTP failures are translated into the error taxonomy:
- 429                 -> UpstreamRateLimitedError
- other non-2xx, I/O  -> UpstreamError
No retry happens here: a failed research call fails the job.
"""

from typing import Optional, Protocol

import httpx
from loguru import logger

from narrative_research.config.settings import settings
from narrative_research.data_management.schemas import RawResearch, ResearchDepth
from narrative_research.errors import UpstreamError, UpstreamRateLimitedError

RESEARCH_SYSTEM_PROMPT = """You are a business research analyst. Provide comprehensive, factual research with citations.
Structure your response as:
1. Executive Summary (2-3 sentences)
2. Key Findings (bullet points)
3. Detailed Analysis
4. Sources and Citations

Be specific, data-driven, and actionable."""

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."


class ResearchWorker(Protocol):
    """Executes a research query out of process."""

    async def research(self, query: str, depth: ResearchDepth) -> RawResearch:
        ...


class PerplexityResearchClient:
    """
    Research worker backed by the Perplexity chat completions API.

    Attributes:
        api_key: Perplexity API key (checked at call time)
        base_url: API base URL
        timeout: HTTP timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 600.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Overrides PERPLEXITY_API_KEY from settings
            base_url: Overrides the configured base URL
            timeout: HTTP timeout; deep research can take minutes
            http_client: Pre-built client (tests inject a MockTransport)
        """
        self.api_key = api_key if api_key is not None else settings.perplexity_api_key
        self.base_url = (base_url or settings.perplexity_base_url).rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self.logger = logger.bind(component="PerplexityResearchClient")

    def model_for(self, depth: ResearchDepth) -> str:
        if depth == ResearchDepth.DEEP:
            return settings.research_model_deep
        return settings.research_model_quick

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def research(self, query: str, depth: ResearchDepth) -> RawResearch:
        """
        Run one research query.

        Returns:
            RawResearch with the model's text and citation URLs

        Raises:
            UpstreamRateLimitedError: HTTP 429
            UpstreamError: Missing key, transport failure, bad status or payload
        """
        if not self.api_key:
            raise UpstreamError("PERPLEXITY_API_KEY not configured")

        model = self.model_for(depth)
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "search_recency_filter": "month",
        }

        self.logger.info("Starting research", model=model, depth=depth.value)
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.RequestError as e:
            raise UpstreamError(f"Research request failed: {e}") from e

        if response.status_code == 429:
            self.logger.warning("Research rate limited", model=model)
            raise UpstreamRateLimitedError(RATE_LIMIT_MESSAGE)
        if response.is_error:
            self.logger.error(
                "Research error",
                status=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(f"Research failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Research response was not valid JSON") from e

        if not isinstance(data, dict):
            raise UpstreamError("Research response had an unexpected shape")

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            content = ""
        citations = [c for c in data.get("citations") or [] if isinstance(c, str)]

        self.logger.info("Research complete", citations=len(citations))
        return RawResearch(content=content, citations=citations)
