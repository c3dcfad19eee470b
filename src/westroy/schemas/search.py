"""Catalog search schemas."""

from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from westroy.schemas.query import ParsedQuery


class SearchFilters(BaseModel):
    """Product filters; they apply to every search strategy."""

    in_stock_only: bool = False
    with_image_only: bool = False
    with_article_only: bool = False
    brand: str | None = None


class ProductSummary(BaseModel):
    """Schema for a product inside a search result."""

    product_id: UUID
    name: str
    description: str
    article: str | None
    brand: str | None
    image_url: str | None
    unit: str
    category_id: str

    model_config = {"from_attributes": True}


class CompanySummary(BaseModel):
    """Schema for the company a search result groups by."""

    company_id: UUID
    name: str
    description: str
    address: str
    phone: str
    delivery: bool
    verified: bool

    model_config = {"from_attributes": True}


class CompanyStats(BaseModel):
    """Marketplace track record shown next to a company."""

    completed_orders: int = 0
    avg_response_minutes: int | None = None
    rating: float | None = None
    review_count: int = 0


class SearchResult(BaseModel):
    """One company with its matching products."""

    company: CompanySummary
    products: list[ProductSummary]
    price_from: Decimal = Decimal("0")
    price_unit: str = ""
    relevance_score: float = Field(0.5, ge=0.0, le=1.0)
    stats: CompanyStats = Field(default_factory=CompanyStats)


class SearchMeta(BaseModel):
    total: int
    skip: int
    limit: int
    strategy: str | None = None  # category, text, or None when nothing matched


class SubCategory(BaseModel):
    category_id: str
    name: str
    name_ru: str

    model_config = {"from_attributes": True}


class SearchResponse(BaseModel):
    """Schema for search response."""

    parsed: ParsedQuery | None
    results: list[SearchResult]
    meta: SearchMeta
    sub_categories: list[SubCategory] = Field(default_factory=list)


class SuggestItem(BaseModel):
    """One autocomplete entry: a category, a product, or the raw query."""

    type: Literal["category", "product", "query"]
    label: str
    value: str
    meta: str | None = None  # "Категория", a price such as "от 25 000 ₸", or None


class SuggestResponse(BaseModel):
    suggestions: list[SuggestItem] = Field(default_factory=list)
