"""Research jobs: submission, execution, polling and result parsing."""

from narrative_research.research.job_executor import JobExecutor
from narrative_research.research.job_poller import JobPoller, PollHandle, format_elapsed
from narrative_research.research.job_submitter import JobSubmitter
from narrative_research.research.query_formulator import QueryFormulator, parse_formulation
from narrative_research.research.research_client import (
    PerplexityResearchClient,
    ResearchWorker,
)
from narrative_research.research.result_aggregator import ResultAggregator, citation_title
from narrative_research.research.service import ResearchService

__all__ = [
    "JobExecutor",
    "JobPoller",
    "JobSubmitter",
    "PerplexityResearchClient",
    "PollHandle",
    "QueryFormulator",
    "ResearchService",
    "ResearchWorker",
    "ResultAggregator",
    "citation_title",
    "format_elapsed",
    "parse_formulation",
]
