"""Normalize free-form research text into summary, key findings and citations.

The research worker is prompted to answer as:
    1. Executive Summary
    2. Key Findings (bullets)
    3. Detailed Analysis
    4. Sources and Citations
but the model does not always comply. Parsing is heuristic and tolerant:
malformed or unexpected input only degrades extraction quality, it never raises.

Usage:
    from narrative_research.research.result_aggregator import ResultAggregator

    result = ResultAggregator().parse(raw_text, citations=["https://example.com/acme-report"])
"""

import re
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

from loguru import logger

from narrative_research.data_management.schemas import (
    MAX_KEY_FINDINGS,
    Citation,
    ResearchResult,
)

SUMMARY_HEADERS = ("executive summary", "summary")
FINDINGS_HEADERS = ("key findings", "key points")
SECTION_END_HEADERS = ("detailed analysis", "analysis")

MIN_SUMMARY_LINE_LENGTH = 50
FALLBACK_SUMMARY_LENGTH = 300
MAX_HEADER_LENGTH = 60

_LIST_MARKER = re.compile(r"^(?:[-•]\s*|\*\s+|\d+[.)](?!\d)\s*)")
_UNORDERED_MARKER = re.compile(r"^(?:[-•]|\*\s)")
_HEADER_DECORATION = re.compile(r"^[#*\s\d.)]+|[*:\s]+$")
_TITLE_SEPARATORS = re.compile(r"[-_]+")
_PAGE_EXTENSIONS = (".html", ".htm", ".php", ".aspx", ".pdf")


class ResultAggregator:
    """
    Heuristic section parser for research worker output.

    Rules:
    - Header lines contain a known phrase (case-insensitive) and are short;
      unordered bullet lines are never headers
    - Lines after a findings header that start with -, •, * or 1./1) are
      findings with the marker stripped (at most 8)
    - An analysis header closes the findings section
    - The first line longer than 50 characters outside the findings section
      is the summary; otherwise the first 300 characters of the text
    """

    def __init__(self, max_findings: int = MAX_KEY_FINDINGS):
        self.max_findings = max_findings
        self.logger = logger.bind(component="ResultAggregator")

    def parse(
        self, raw_text: Optional[str], citations: Optional[Iterable[Any]] = None
    ) -> ResearchResult:
        """
        Parse raw research text into a ResearchResult.

        Args:
            raw_text: Worker output (None or non-string input is tolerated)
            citations: Citation identifiers, usually URLs

        Returns:
            ResearchResult; key_findings and citations may be empty
        """
        text = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))

        summary = ""
        findings: list[str] = []
        in_findings = False

        for line in text.splitlines():
            trimmed = line.strip()
            if not trimmed:
                continue

            if self._is_header(trimmed, SUMMARY_HEADERS):
                in_findings = False
                continue
            if self._is_header(trimmed, FINDINGS_HEADERS):
                in_findings = True
                continue
            if self._is_header(trimmed, SECTION_END_HEADERS):
                in_findings = False
                continue

            if in_findings and _LIST_MARKER.match(trimmed):
                finding = _LIST_MARKER.sub("", trimmed, count=1).strip()
                if finding:
                    findings.append(finding)
            elif not in_findings and not summary and len(trimmed) > MIN_SUMMARY_LINE_LENGTH:
                summary = trimmed

        if not summary:
            summary = text.strip()[:FALLBACK_SUMMARY_LENGTH]

        result = ResearchResult(
            summary=summary,
            key_findings=findings[: self.max_findings],
            citations=self.parse_citations(citations or []),
            raw_content=text,
        )
        self.logger.debug(
            "Parsed research output",
            findings=len(result.key_findings),
            citations=len(result.citations),
        )
        return result

    def parse_citations(self, citations: Iterable[Any]) -> list[Citation]:
        """Convert worker citations (URLs or {url, title} dicts) to Citation objects."""
        parsed: list[Citation] = []
        seen: set[str] = set()
        for item in citations:
            if isinstance(item, str):
                url, title = item.strip(), None
            elif isinstance(item, dict) and isinstance(item.get("url"), str):
                url, title = item["url"].strip(), item.get("title")
            else:
                continue
            if not url or url in seen:
                continue
            seen.add(url)
            if not isinstance(title, str) or not title.strip():
                title = citation_title(url)
            parsed.append(Citation(url=url, title=title.strip()))
        return parsed

    @staticmethod
    def _is_header(line: str, phrases: tuple[str, ...]) -> bool:
        if _UNORDERED_MARKER.match(line):
            return False
        bare = _HEADER_DECORATION.sub("", line)
        if len(bare) > MAX_HEADER_LENGTH:
            return False
        lowered = line.lower()
        return any(phrase in lowered for phrase in phrases)


def citation_title(url: str) -> str:
    """
    Derive a display title from the last path segment of a URL.

    "https://example.com/news/acme-hits-record_sales.html" -> "acme hits record sales"
    Falls back to the host name, then to "Source".
    """
    parsed = urlparse(url)
    path = parsed.path if parsed.scheme else url.split("?", 1)[0].split("#", 1)[0]
    segment = path.rstrip("/").rsplit("/", 1)[-1]

    lowered = segment.lower()
    for ext in _PAGE_EXTENSIONS:
        if lowered.endswith(ext):
            segment = segment[: -len(ext)]
            break

    title = _TITLE_SEPARATORS.sub(" ", segment).strip()
    if title:
        return title
    if parsed.netloc:
        return parsed.netloc.removeprefix("www.")
    return "Source"
