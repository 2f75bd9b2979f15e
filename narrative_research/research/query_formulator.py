"""Turns a rough research topic into a focused query before research starts.

The formulator asks a Gemini model for one research query and a few
multiple-choice follow-up questions the requester can answer to refine it.
Nothing is persisted; the caller submits the chosen query as a normal job.
"""

from typing import Any, Iterable, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from loguru import logger

from narrative_research.config.settings import settings
from narrative_research.data_management.schemas import FollowUpQuestion, FormulatedQuery
from narrative_research.errors import (
    InvalidQueryError,
    UpstreamError,
    UpstreamRateLimitedError,
)
from narrative_research.utils.model_output import extract_json_object

DEFAULT_CONTEXT = "General business research"
DEFAULT_AUDIENCE = "Executives"

FORMULATION_SYSTEM_PROMPT = """You are a research strategist helping prepare a business narrative.
Given a topic, its context and the target audience, synthesize one clear,
comprehensive research query and suggest follow-up questions that would
sharpen it. Favor queries that surface recent facts, figures and market
signals a compelling business narrative can rely on."""

FORMULATION_USER_PROMPT = """Topic: {topic}
Context: {context}
Target audience: {audience}
{questions}
Return a JSON object with this structure:
{{
  "suggestedQuery": "<the research query>",
  "followUpQuestions": [
    {{"id": "q1", "question": "<question>", "options": ["<option>", "<option>"]}}
  ]
}}"""


class QueryFormulator:
    """
    Gemini-backed research query formulation.

    The model is created lazily; tests inject an object exposing
    generate_content_async().
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.4,
        model: Optional[Any] = None,
    ):
        self.model_name = model_name or settings.formulation_model
        self.api_key = api_key if api_key is not None else settings.google_ai_api_key
        self.temperature = temperature
        self._model = model
        self.logger = logger.bind(component="QueryFormulator")

    @property
    def model(self) -> Any:
        if self._model is None:
            if not self.api_key:
                raise UpstreamError("GOOGLE_AI_API_KEY is not configured")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                self.model_name,
                system_instruction=FORMULATION_SYSTEM_PROMPT,
            )
        return self._model

    async def formulate(
        self,
        topic: str,
        context: Optional[str] = None,
        audience: Optional[str] = None,
        specific_questions: Optional[Iterable[str]] = None,
    ) -> FormulatedQuery:
        """
        Suggest a research query and follow-up questions for a topic.

        Args:
            topic: What the narrative is about
            context: Business context (defaults to general business research)
            audience: Who the narrative is for (defaults to executives)
            specific_questions: Questions the requester already wants answered

        Raises:
            InvalidQueryError: Empty topic
            UpstreamRateLimitedError: The model API throttled the request
            UpstreamError: Any other API failure or an unusable response
        """
        topic = (topic or "").strip()
        if not topic:
            raise InvalidQueryError("Topic is required")

        questions = [q.strip() for q in specific_questions or () if q and q.strip()]
        prompt = FORMULATION_USER_PROMPT.format(
            topic=topic,
            context=(context or "").strip() or DEFAULT_CONTEXT,
            audience=(audience or "").strip() or DEFAULT_AUDIENCE,
            questions=(
                "Questions to address:\n" + "\n".join(f"- {q}" for q in questions) + "\n"
                if questions
                else ""
            ),
        )
        self.logger.debug("Formulating query for topic: {topic}", topic=topic[:100])

        try:
            response = await self.model.generate_content_async(
                prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=self.temperature,
                ),
            )
        except google_exceptions.ResourceExhausted as e:
            self.logger.warning("Formulation rate limited: {err}", err=str(e))
            raise UpstreamRateLimitedError("Rate limit exceeded") from e
        except google_exceptions.GoogleAPICallError as e:
            raise UpstreamError(f"Formulation request failed: {e}") from e

        try:
            content = response.text
        except (ValueError, AttributeError) as e:
            raise UpstreamError("No content in formulation response") from e
        if not content:
            raise UpstreamError("No content in formulation response")

        formulated = parse_formulation(content)
        self.logger.info(
            "Formulated query with {count} follow-up questions",
            count=len(formulated.follow_up_questions),
        )
        return formulated


def parse_formulation(content: str) -> FormulatedQuery:
    """
    Build a FormulatedQuery from raw model output.

    Follow-up entries without question text are dropped; missing ids are
    numbered q1, q2, ... by position.

    Raises:
        UpstreamError: No JSON object, or no suggested query in it
    """
    data = extract_json_object(content)
    if data is None:
        raise UpstreamError("Failed to parse formulation response")

    suggested = str(data.get("suggestedQuery") or "").strip()
    if not suggested:
        raise UpstreamError("Formulation response had no suggested query")

    follow_ups = []
    raw_questions = data.get("followUpQuestions")
    for i, item in enumerate(raw_questions if isinstance(raw_questions, list) else []):
        if not isinstance(item, dict):
            continue
        question = str(item.get("question") or "").strip()
        if not question:
            continue
        options = item.get("options")
        follow_ups.append(
            FollowUpQuestion(
                id=str(item.get("id") or f"q{i + 1}"),
                question=question,
                options=[
                    o.strip()
                    for o in (options if isinstance(options, list) else [])
                    if isinstance(o, str) and o.strip()
                ],
            )
        )
    return FormulatedQuery(suggested_query=suggested, follow_up_questions=follow_ups)
