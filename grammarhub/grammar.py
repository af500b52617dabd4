"""Grammar point extraction through the AI API's structured output mode."""

from __future__ import annotations

import json
import logging
from typing import List, Optional

import openai
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .ai import AIClient, translate_error
from .errors import UpstreamGenericError
from .models import Difficulty, GrammarAnalysis, GrammarPoint, Settings

logger = logging.getLogger(__name__)

MIN_GRAMMAR_POINTS = 3
MAX_GRAMMAR_POINTS = 5

GRAMMAR_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {
            "type": "string",
            "description": "A brief summary of the conversation context.",
        },
        "grammarPoints": {
            "type": "array",
            "description": f"Between {MIN_GRAMMAR_POINTS} and {MAX_GRAMMAR_POINTS} grammar points.",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Name of the grammar rule or concept."},
                    "explanation": {"type": "string", "description": "Clear explanation for a student."},
                    "example": {
                        "type": "string",
                        "description": "The snippet from the transcript illustrating this point.",
                    },
                    "difficulty": {"type": "string", "enum": [d.value for d in Difficulty]},
                },
                "required": ["title", "explanation", "example", "difficulty"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["summary", "grammarPoints"],
    "additionalProperties": False,
}

_SYSTEM_PROMPT = "You are an expert linguistics teacher preparing material for language students."

_PROMPT_TEMPLATE = '''Here is a transcription of a dialogue:
"""
{transcript}
"""

1. Analyze this text for learning purposes.
2. Identify {minimum} to {maximum} distinct, learnable grammar points or useful expressions appearing in this dialogue.
3. Provide a brief summary.
4. Format the output strictly as JSON.'''


class _GrammarPointPayload(BaseModel):
    title: str
    explanation: str
    example: str
    difficulty: Difficulty


class _GrammarPayload(BaseModel):
    summary: str
    grammarPoints: List[_GrammarPointPayload] = Field(
        min_length=MIN_GRAMMAR_POINTS, max_length=MAX_GRAMMAR_POINTS
    )


def parse_analysis(content: Optional[str]) -> GrammarAnalysis:
    """Decode a structured reply, rejecting anything outside the schema."""

    if not content:
        raise UpstreamGenericError("No analysis received from the AI API.")
    try:
        payload = _GrammarPayload.model_validate(json.loads(content))
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise UpstreamGenericError(f"AI response did not match the grammar schema: {exc}") from exc
    return GrammarAnalysis(
        summary=payload.summary,
        grammar_points=tuple(
            GrammarPoint(
                title=point.title,
                explanation=point.explanation,
                example=point.example,
                difficulty=point.difficulty,
            )
            for point in payload.grammarPoints
        ),
    )


class GrammarAnalyzer:
    """Extract a summary and grammar points from a transcript."""

    def __init__(self, client: Optional[AIClient] = None) -> None:
        self._client = client or AIClient()

    def analyze(self, transcript: str, settings: Settings) -> GrammarAnalysis:
        client = self._client.get(settings.ai_api_key)
        prompt = _PROMPT_TEMPLATE.format(
            transcript=transcript,
            minimum=MIN_GRAMMAR_POINTS,
            maximum=MAX_GRAMMAR_POINTS,
        )
        try:
            response = client.chat.completions.create(
                model=settings.analysis_model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "grammar_analysis",
                        "strict": True,
                        "schema": GRAMMAR_SCHEMA,
                    },
                },
            )
        except openai.OpenAIError as exc:
            logger.error("Grammar analysis failed: %s", exc)
            raise translate_error(exc, "grammar analysis") from exc

        content = response.choices[0].message.content if response.choices else None
        return parse_analysis(content)
