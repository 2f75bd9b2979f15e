"""Tests for ResultAggregator.

Tests cover:
- Section detection (summary, findings, analysis end marker)
- Finding markers and the 8-finding cap
- Summary fallbacks
- Tolerance to empty and unstructured input
- Citation title derivation
"""

import pytest

from narrative_research.research.result_aggregator import ResultAggregator, citation_title


STRUCTURED_REPORT = """# Executive Summary
Acme Corp holds a leading position in the regional widget market with roughly 40% share.

## Key Findings
- Revenue grew 12% year over year to $1.2B
• Market share rose from 35% to 40% since 2023
* Two new competitors entered the low-end segment
1. Operating margin is stable at 18%
2) Expansion into Latin America is planned for 2026

## Detailed Analysis
- This bullet belongs to the analysis and must not be collected
Acme's growth is driven primarily by enterprise contracts in the manufacturing sector.
"""


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def aggregator() -> ResultAggregator:
    return ResultAggregator()


# ── Section Parsing Tests ─────────────────────────────────────────────────


class TestSectionParsing:
    def test_summary_from_summary_section(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(STRUCTURED_REPORT)
        assert result.summary.startswith("Acme Corp holds a leading position")

    def test_findings_markers_stripped(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(STRUCTURED_REPORT)
        assert result.key_findings == [
            "Revenue grew 12% year over year to $1.2B",
            "Market share rose from 35% to 40% since 2023",
            "Two new competitors entered the low-end segment",
            "Operating margin is stable at 18%",
            "Expansion into Latin America is planned for 2026",
        ]

    def test_analysis_header_ends_findings(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(STRUCTURED_REPORT)
        assert all("analysis" not in f for f in result.key_findings)

    def test_key_points_header(self, aggregator: ResultAggregator) -> None:
        text = "**Key Points:**\n- First point\n- Second point"
        result = aggregator.parse(text)
        assert result.key_findings == ["First point", "Second point"]

    def test_numbered_section_headers(self, aggregator: ResultAggregator) -> None:
        text = (
            "1. Executive Summary\n"
            "Acme Corp remains the clear leader in regional widgets by revenue and volume.\n"
            "2. Key Findings\n"
            "- Revenue up 12%\n"
            "3. Detailed Analysis\n"
            "- not a finding"
        )
        result = aggregator.parse(text)
        assert result.key_findings == ["Revenue up 12%"]
        assert result.summary.startswith("Acme Corp remains")

    def test_findings_capped_at_eight(self, aggregator: ResultAggregator) -> None:
        bullets = "\n".join(f"- Finding number {i}" for i in range(12))
        result = aggregator.parse(f"Key Findings\n{bullets}")
        assert len(result.key_findings) == 8
        assert result.key_findings[0] == "Finding number 0"

    def test_long_bullet_mentioning_summary_is_not_header(
        self, aggregator: ResultAggregator
    ) -> None:
        text = (
            "Key Findings\n"
            "- The summary of quarterly filings shows steady growth across all regions"
        )
        result = aggregator.parse(text)
        assert len(result.key_findings) == 1

    def test_decimal_numbers_not_list_markers(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse("Key Findings\n3.5% growth was recorded\n- Real finding")
        assert result.key_findings == ["Real finding"]

    def test_raw_content_preserved(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(STRUCTURED_REPORT)
        assert result.raw_content == STRUCTURED_REPORT


# ── Fallback and Tolerance Tests ──────────────────────────────────────────


class TestTolerance:
    def test_empty_input(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse("")
        assert result.summary == ""
        assert result.key_findings == []
        assert result.citations == []

    def test_unstructured_prose(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse("no structure at all, just prose")
        assert result.summary == "no structure at all, just prose"
        assert result.key_findings == []
        assert result.citations == []

    def test_fallback_summary_truncated_to_300(self, aggregator: ResultAggregator) -> None:
        text = "\n".join(["short line"] * 100)
        result = aggregator.parse(text)
        assert len(result.summary) == 300

    def test_first_long_line_is_summary(self, aggregator: ResultAggregator) -> None:
        text = "Intro\nThis line is comfortably longer than fifty characters in total.\nAnother long line that is also longer than fifty characters."
        result = aggregator.parse(text)
        assert result.summary == "This line is comfortably longer than fifty characters in total."

    @pytest.mark.parametrize("raw", [None, 42, "\n\n\n", "```\n{}\n```", "- - -\n* * *"])
    def test_malformed_input_never_raises(self, aggregator: ResultAggregator, raw) -> None:
        result = aggregator.parse(raw)
        assert isinstance(result.key_findings, list)
        assert isinstance(result.summary, str)


# ── Citation Tests ────────────────────────────────────────────────────────


class TestCitations:
    def test_titles_from_last_path_segment(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(
            "text",
            citations=[
                "https://example.com/news/acme-hits-record_sales.html",
                "https://example.com/reports/widget-market-2025/",
            ],
        )
        assert [c.title for c in result.citations] == [
            "acme hits record sales",
            "widget market 2025",
        ]

    def test_duplicates_and_junk_skipped(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(
            "text",
            citations=["https://a.com/x", "https://a.com/x", None, 7, ""],
        )
        assert [c.url for c in result.citations] == ["https://a.com/x"]

    def test_dict_citations_keep_title(self, aggregator: ResultAggregator) -> None:
        result = aggregator.parse(
            "text", citations=[{"url": "https://a.com/x", "title": "Annual report"}]
        )
        assert result.citations[0].title == "Annual report"

    def test_title_falls_back_to_host(self) -> None:
        assert citation_title("https://www.example.com/") == "example.com"

    def test_title_falls_back_to_source(self) -> None:
        assert citation_title("") == "Source"
