"""LLM-backed query enrichment via the OpenAI chat completions API."""

import json
import logging
from typing import Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from westroy.schemas.query import ParsedQuery
from westroy.services.query_parser import match_category, normalize_text

logger = logging.getLogger(__name__)

LLM_CONFIDENCE = 0.95

SYSTEM_PROMPT = """
You are a parser for a construction marketplace search.
Extract structured data from the user's natural language search query.
Return JSON only.

Rules:
1. Category: Identify the main material or service (e.g., "Бетон", "Арматура", "Песок").
   If unclear, use null.
2. Volume: Extract the numeric quantity.
3. Unit: Extract the unit of measure (e.g., "м3", "тонн", "шт", "смен"). Normalize to: 'м3', 'т', 'шт', 'рейс', 'час', 'смена'.
4. City: Detect city names (e.g. "Шымкент", "Туркестан"). Default to "Шымкент" if not specified but query implies local search.
5. Grade/Type: Extract specific markers like "М300" for concrete, "A500C" for rebar, "мытый" for sand.

Output Schema:
{
  "category": string | null,
  "volume": number | null,
  "unit": string | null,
  "city": string | null,
  "grade": string | null,
  "delivery": boolean
}

Examples:
"бетон м300 20 кубов с доставкой" -> {"category": "Бетон", "volume": 20, "unit": "м3", "city": "Шымкент", "grade": "М300", "delivery": true}
"песок камаз" -> {"category": "Песок", "volume": null, "unit": "рейс", "city": "Шымкент", "grade": null, "delivery": true}
"""

# LLM unit spellings -> the units the rules parser produces
UNIT_ALIASES = {
    "м3": "м³",
    "м³": "м³",
    "куб": "м³",
    "т": "тонн",
    "тн": "тонн",
    "тонн": "тонн",
    "шт": "шт",
    "час": "час",
    "смена": "смена",
    "рейс": "рейс",
}


class LLMParseError(Exception):
    """The model replied with something that is not a usable parse."""


class LLMReply(BaseModel):
    """Shape of the JSON object the model is asked to return."""

    category: Optional[str] = None
    volume: Optional[float] = None
    unit: Optional[str] = None
    city: Optional[str] = None
    grade: Optional[str] = None
    delivery: Optional[bool] = None

    @field_validator("category", "unit", "city", "grade")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


def _format_volume(volume: Optional[float]) -> Optional[str]:
    if volume is None or volume <= 0:
        return None
    return str(int(volume)) if float(volume).is_integer() else str(volume)


def reply_to_parsed_query(query: str, reply: LLMReply) -> ParsedQuery:
    """Map a validated model reply onto ParsedQuery.

    The free-form category label is mapped to a category id through the
    same keyword table the rules parser uses.
    """
    category = reply.category
    category_id = None
    if category:
        entry = match_category(normalize_text(category))
        if entry is not None:
            category = entry.label
            category_id = entry.category_id

    unit = reply.unit
    if unit:
        unit = UNIT_ALIASES.get(unit.lower(), unit)

    return ParsedQuery(
        category=category,
        category_id=category_id,
        volume=_format_volume(reply.volume),
        unit=unit,
        city=reply.city,
        delivery=reply.delivery,
        grade=reply.grade,
        confidence=LLM_CONFIDENCE,
        suggestions=[],
        original_query=query,
    )


class LLMQueryParser:
    """Query enricher backed by an OpenAI chat model in JSON mode."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini"):
        self.client = client
        self.model = model

    async def parse(self, query: str) -> ParsedQuery:
        """Ask the model to parse `query`.

        Raises:
            LLMParseError: Empty, non-JSON or schema-violating reply
            openai.OpenAIError: Transport or API failure
        """
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise LLMParseError("Empty response from LLM")

        try:
            reply = LLMReply.model_validate(json.loads(content))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise LLMParseError(f"Malformed LLM reply: {e}") from e

        return reply_to_parsed_query(query, reply)


def build_llm_parser(api_key: Optional[str], model: str) -> Optional[LLMQueryParser]:
    """Create the enricher, or None when no API key is configured."""
    if not api_key:
        logger.info("OPENAI_API_KEY not set, query parsing uses rules only")
        return None
    return LLMQueryParser(AsyncOpenAI(api_key=api_key), model=model)
