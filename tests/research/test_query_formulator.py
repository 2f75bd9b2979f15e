"""Tests for QueryFormulator and formulation parsing.

Tests cover:
- Suggested query and follow-up questions from fenced and bare output
- Defaults for context and audience, specific questions in the prompt
- Rejection of empty topics and unusable responses
- Upstream failure mapping
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from narrative_research.errors import (
    InvalidQueryError,
    UpstreamError,
    UpstreamRateLimitedError,
)
from narrative_research.research.query_formulator import (
    DEFAULT_AUDIENCE,
    DEFAULT_CONTEXT,
    QueryFormulator,
    parse_formulation,
)


def _payload(**overrides) -> str:
    data = {
        "suggestedQuery": "Acme Corp market share and growth drivers in 2025",
        "followUpQuestions": [
            {
                "id": "timeframe",
                "question": "Which timeframe matters most?",
                "options": ["Last quarter", "Last year"],
            },
            {"question": "Include competitors?", "options": ["Yes", "No"]},
        ],
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


class TestParseFormulation:
    def test_fenced_json(self) -> None:
        formulated = parse_formulation(f"Sure!\n```json\n{_payload()}\n```")

        assert formulated.suggested_query == "Acme Corp market share and growth drivers in 2025"
        assert [q.id for q in formulated.follow_up_questions] == ["timeframe", "q2"]
        assert formulated.follow_up_questions[0].options == ["Last quarter", "Last year"]

    def test_bare_object_with_prose(self) -> None:
        formulated = parse_formulation(f"Here you go: {_payload(followUpQuestions=[])} Done.")

        assert formulated.suggested_query.startswith("Acme Corp")
        assert formulated.follow_up_questions == []

    def test_malformed_follow_ups_dropped(self) -> None:
        formulated = parse_formulation(
            _payload(
                followUpQuestions=[
                    "junk",
                    {"id": "q2", "question": "  "},
                    {"question": "Region?", "options": ["EU", 3, " ", "US"]},
                ]
            )
        )

        assert len(formulated.follow_up_questions) == 1
        assert formulated.follow_up_questions[0].id == "q3"
        assert formulated.follow_up_questions[0].options == ["EU", "US"]

    @pytest.mark.parametrize("content", ["No JSON here.", "[1, 2]", "{broken"])
    def test_unparseable_raises(self, content: str) -> None:
        with pytest.raises(UpstreamError, match="Failed to parse formulation response"):
            parse_formulation(content)

    def test_missing_suggested_query_raises(self) -> None:
        with pytest.raises(UpstreamError):
            parse_formulation(_payload(suggestedQuery="  "))


# ── Formulator Tests ──────────────────────────────────────────────────────


class TestQueryFormulator:
    @pytest.mark.asyncio
    async def test_formulate_returns_query(self) -> None:
        model = _model(text=_payload())
        formulator = QueryFormulator(model=model)

        formulated = await formulator.formulate(
            "Acme Corp",
            context="Board strategy review",
            specific_questions=["Who are the main competitors?", " "],
        )

        assert len(formulated.follow_up_questions) == 2
        prompt = model.generate_content_async.await_args.args[0]
        assert "Topic: Acme Corp" in prompt
        assert "Context: Board strategy review" in prompt
        assert f"Target audience: {DEFAULT_AUDIENCE}" in prompt
        assert "- Who are the main competitors?" in prompt

    @pytest.mark.asyncio
    async def test_defaults_without_questions(self) -> None:
        model = _model(text=_payload())
        await QueryFormulator(model=model).formulate("Acme Corp")

        prompt = model.generate_content_async.await_args.args[0]
        assert f"Context: {DEFAULT_CONTEXT}" in prompt
        assert "Questions to address" not in prompt

    @pytest.mark.asyncio
    async def test_empty_topic_rejected(self) -> None:
        model = _model(text=_payload())
        with pytest.raises(InvalidQueryError):
            await QueryFormulator(model=model).formulate("   ")
        model.generate_content_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resource_exhausted_is_rate_limit(self) -> None:
        formulator = QueryFormulator(
            model=_model(side_effect=google_exceptions.ResourceExhausted("quota"))
        )
        with pytest.raises(UpstreamRateLimitedError):
            await formulator.formulate("Acme Corp")

    @pytest.mark.asyncio
    async def test_api_error_is_upstream_error(self) -> None:
        formulator = QueryFormulator(
            model=_model(side_effect=google_exceptions.InternalServerError("boom"))
        )
        with pytest.raises(UpstreamError) as exc_info:
            await formulator.formulate("Acme Corp")
        assert not isinstance(exc_info.value, UpstreamRateLimitedError)

    @pytest.mark.asyncio
    async def test_empty_response_is_upstream_error(self) -> None:
        with pytest.raises(UpstreamError):
            await QueryFormulator(model=_model(text="")).formulate("Acme Corp")

    def test_missing_key_fails_on_model_access(self) -> None:
        formulator = QueryFormulator(api_key="")
        with pytest.raises(UpstreamError):
            _ = formulator.model
