"""Parsed search query schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class Suggestion(BaseModel):
    """A follow-up prompt shown when the parser is unsure."""

    type: Literal["category", "delivery", "volume"]
    label: str
    value: str


class ParsedQuery(BaseModel):
    """Structured filters extracted from a free-text buyer query."""

    category: str | None = None
    category_id: str | None = None
    volume: str | None = None
    unit: str | None = None
    city: str | None = None
    delivery: bool | None = None
    grade: str | None = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    suggestions: list[Suggestion] = Field(default_factory=list)
    original_query: str = ""
