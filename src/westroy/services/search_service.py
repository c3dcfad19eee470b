"""Catalog search.

Two entry modes:

* category browse (category given, no text): products of that category,
  plus its immediate sub-categories for drill-down. The parser is skipped.
* text search: the query is parsed; results come from the parsed category
  first and fall back to token matching over product and company text.

Results are grouped per company and ordered deterministically, so equal
inputs always paginate the same way.
"""

import logging
import math
import re
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from westroy.core.exceptions import ValidationError
from westroy.models.category import Category
from westroy.models.company import Company
from westroy.models.offer import Offer, OfferStatus
from westroy.models.product import Product, ProductPrice, StockStatus
from westroy.models.request import Request
from westroy.models.review import Review
from westroy.schemas.query import ParsedQuery
from westroy.schemas.search import (
    CompanyStats,
    CompanySummary,
    ProductSummary,
    SearchFilters,
    SearchMeta,
    SearchResponse,
    SearchResult,
    SubCategory,
    SuggestItem,
    SuggestResponse,
)
from westroy.services.query_parser import CATEGORY_KEYWORDS, QueryParser, parse_query_rules
from westroy.services.review_service import round_rating

logger = logging.getLogger(__name__)

SEARCH_STOP_TOKENS = frozenset({
    "шымкент",
    "шимкент",
    "туркестан",
    "казахстан",
    "нужно",
    "купить",
    "заказать",
    "цена",
    "цены",
    "доставка",
    "с",
    "в",
    "на",
    "и",
})

TEXT_FALLBACK_PRODUCTS = 6
SUGGEST_CATEGORIES = 3
SUGGEST_PRODUCTS = 6

_WHITESPACE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.lower().replace("ё", "е")).strip()


def search_tokens(query: str) -> list[str]:
    """Meaningful tokens of a query: at least 2 chars and not a stop-word."""
    return [t for t in _normalize(query).split(" ") if len(t) >= 2 and t not in SEARCH_STOP_TOKENS]


def haystack(*parts: str | None) -> str:
    """Normalized text to match tokens against; missing parts are skipped."""
    return _normalize(" ".join(part for part in parts if part))


def format_price(value: Decimal) -> str:
    """Russian grouping: `25 000`, `1 250,5` (no-break space, decimal comma)."""
    text = f"{value:,.2f}".rstrip("0").rstrip(".")
    return text.replace(",", "\u00a0").replace(".", ",")


def _price_for_sort(price: Decimal) -> float:
    return float(price) if price > 0 else math.inf


def sort_results(results: list[SearchResult], created: dict[UUID, float]) -> None:
    """Relevance (one decimal) desc, price asc (unpriced last), newest company, id."""
    results.sort(
        key=lambda r: (
            -round(r.relevance_score, 1),
            _price_for_sort(r.price_from),
            -created.get(r.company.company_id, 0.0),
            str(r.company.company_id),
        )
    )


class SearchService:
    """Service class for catalog search."""

    def __init__(self, db: AsyncSession, parser: Optional[QueryParser] = None):
        self.db = db
        self.parser = parser or QueryParser()

    async def search(
        self,
        q: str | None = None,
        category_id: str | None = None,
        filters: SearchFilters | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> SearchResponse:
        """Search the catalog by free text, category, or both.

        Raises:
            ValidationError: Neither text nor category given
        """
        filters = filters or SearchFilters()
        text = (q or "").strip()
        category_id = (category_id or "").strip() or None
        if not text and not category_id:
            raise ValidationError("Provide a search query or a category")

        parsed: ParsedQuery | None = None
        strategy: str | None = None

        if not text:
            results = await self._search_by_category(category_id, None, None, filters)
            if results:
                strategy = "category"
        else:
            parsed = await self.parser.parse(text)
            if parsed.category_id is None and category_id:
                parsed = parsed.model_copy(update={"category_id": category_id})

            results = []
            if parsed.category_id:
                results = await self._search_by_category(
                    parsed.category_id, parsed.grade, parsed.delivery, filters
                )
                if results:
                    strategy = "category"
            if not results:
                results = await self._search_by_text(parsed, filters)
                if results:
                    strategy = "text"

        effective_category = parsed.category_id if parsed else category_id
        sub_categories = await self._sub_categories(effective_category) if effective_category else []

        total = len(results)
        logger.debug(f"Search q={text!r} category={category_id} strategy={strategy} total={total}")
        return SearchResponse(
            parsed=parsed,
            results=results[skip: skip + limit],
            meta=SearchMeta(total=total, skip=skip, limit=limit, strategy=strategy),
            sub_categories=sub_categories,
        )

    async def suggest(self, q: str | None) -> SuggestResponse:
        """Autocomplete for the search box.

        Categories first (the rules-parsed one, then label matches), then up
        to `SUGGEST_PRODUCTS` products by name, brand or article, cheapest
        first, then the raw query itself. Queries under 2 characters get
        nothing. The LLM enricher is never consulted here.
        """
        text = (q or "").strip()
        if len(text) < 2:
            return SuggestResponse()

        suggestions: list[SuggestItem] = []
        parsed = parse_query_rules(text)
        if parsed.category_id and parsed.category:
            suggestions.append(
                SuggestItem(type="category", label=parsed.category, value=parsed.category_id, meta="Категория")
            )

        lowered = text.lower()
        for entry in CATEGORY_KEYWORDS:
            if len(suggestions) >= SUGGEST_CATEGORIES:
                break
            if entry.category_id == parsed.category_id:
                continue
            label = entry.label.lower()
            if lowered in label or label[:3] in lowered:
                suggestions.append(
                    SuggestItem(type="category", label=entry.label, value=entry.category_id, meta="Категория")
                )

        for name, price_from in await self._suggest_products(text):
            meta = f"от {format_price(price_from)} ₸" if price_from else "По запросу"
            suggestions.append(SuggestItem(type="product", label=name, value=name, meta=meta))

        suggestions.append(SuggestItem(type="query", label=f"Искать «{text}»", value=text))
        return SuggestResponse(suggestions=suggestions)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load_products(self, filters: SearchFilters, *where) -> list[Product]:
        """Products with at least one catalog price, filters applied in SQL."""
        conditions = [Product.prices.any(), *where]
        if filters.in_stock_only:
            conditions.append(Product.prices.any(ProductPrice.stock_status == StockStatus.IN_STOCK.value))
        if filters.with_image_only:
            conditions.extend([Product.image_url.is_not(None), Product.image_url != ""])
        if filters.with_article_only:
            conditions.extend([Product.article.is_not(None), Product.article != ""])
        brand = (filters.brand or "").strip()
        if brand:
            conditions.append(Product.brand.icontains(brand, autoescape=True))

        result = await self.db.execute(
            select(Product)
            .where(*conditions)
            .options(selectinload(Product.prices))
            .order_by(Product.created_at.desc(), Product.product_id)
        )
        return list(result.scalars().all())

    async def _load_companies(self, company_ids: Iterable[UUID] | None = None) -> list[Company]:
        query = select(Company)
        if company_ids is not None:
            query = query.where(Company.company_id.in_(list(company_ids)))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _company_stats(self, company_ids: list[UUID]) -> dict[UUID, CompanyStats]:
        """Accepted offers, mean response time and rating per company."""
        stats = {cid: CompanyStats() for cid in company_ids}
        if not company_ids:
            return stats

        offers = await self.db.execute(
            select(Offer.company_id, Offer.status, Offer.created_at, Request.created_at)
            .join(Request, Request.request_id == Offer.request_id)
            .where(Offer.company_id.in_(company_ids))
        )
        response_minutes: dict[UUID, list[int]] = defaultdict(list)
        for company_id, status, offered_at, requested_at in offers.all():
            if status == OfferStatus.ACCEPTED.value:
                stats[company_id].completed_orders += 1
            minutes = round((offered_at - requested_at).total_seconds() / 60)
            response_minutes[company_id].append(max(0, minutes))
        for company_id, values in response_minutes.items():
            stats[company_id].avg_response_minutes = round(sum(values) / len(values))

        reviews = await self.db.execute(
            select(Review.company_id, func.count(Review.review_id), func.sum(Review.rating))
            .where(Review.company_id.in_(company_ids))
            .group_by(Review.company_id)
        )
        for company_id, count, total in reviews.all():
            stats[company_id].review_count = count
            stats[company_id].rating = round_rating(int(total), count)

        return stats

    async def _sub_categories(self, category_id: str) -> list[SubCategory]:
        result = await self.db.execute(
            select(Category)
            .where(Category.parent_id == category_id)
            .order_by(Category.sort_order, Category.name)
        )
        return [SubCategory.model_validate(c) for c in result.scalars().all()]

    async def _suggest_products(self, text: str) -> list[tuple[str, Decimal | None]]:
        """Product names matching `text` with their lowest positive price."""
        price_from = (
            select(func.min(ProductPrice.price))
            .where(ProductPrice.product_id == Product.product_id, ProductPrice.price > 0)
            .correlate(Product)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(Product.name, price_from)
            .where(
                or_(
                    Product.name.icontains(text, autoescape=True),
                    Product.brand.icontains(text, autoescape=True),
                    Product.article.icontains(text, autoescape=True),
                )
            )
            .order_by(price_from.is_(None), price_from, Product.name)
            .limit(SUGGEST_PRODUCTS)
        )
        return [(name, price) for name, price in result.all()]

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _build_result(
        self,
        company: Company,
        products: list[Product],
        grade: str | None,
        delivery: bool | None,
        stats: CompanyStats,
    ) -> SearchResult:
        score = 0.5
        matched = products

        if grade:
            needle = grade.lower()
            graded = [
                p for p in products
                if needle in p.name.lower() or needle in (p.description or "").lower()
            ]
            if graded:
                matched = graded
                score += 0.3

        if delivery and company.delivery:
            score += 0.1
        if company.verified:
            score += 0.1

        prices = [
            price
            for p in matched
            for price in p.prices
            if price.company_id == company.company_id
        ]
        priced = sorted((pp for pp in prices if pp.price > 0), key=lambda pp: pp.price)
        if priced:
            price_from, price_unit = priced[0].price, priced[0].price_unit
        else:
            price_from, price_unit = Decimal("0"), prices[0].price_unit if prices else ""

        return SearchResult(
            company=CompanySummary.model_validate(company),
            products=[ProductSummary.model_validate(p) for p in matched],
            price_from=price_from,
            price_unit=price_unit,
            relevance_score=min(score, 1.0),
            stats=stats,
        )

    @staticmethod
    def _products_by_company(products: list[Product]) -> dict[UUID, list[Product]]:
        grouped: dict[UUID, list[Product]] = defaultdict(list)
        for product in products:
            for company_id in {price.company_id for price in product.prices}:
                grouped[company_id].append(product)
        return grouped

    async def _search_by_category(
        self,
        category_id: str,
        grade: str | None,
        delivery: bool | None,
        filters: SearchFilters,
    ) -> list[SearchResult]:
        products = await self._load_products(filters, Product.category_id == category_id)
        if not products:
            return []

        grouped = self._products_by_company(products)
        companies = await self._load_companies(grouped.keys())
        stats = await self._company_stats([c.company_id for c in companies])

        results = [
            self._build_result(c, grouped[c.company_id], grade, delivery, stats[c.company_id])
            for c in companies
        ]
        results = [r for r in results if r.products]
        sort_results(results, {c.company_id: c.created_at.timestamp() for c in companies})
        return results

    async def _search_by_text(self, parsed: ParsedQuery, filters: SearchFilters) -> list[SearchResult]:
        tokens = search_tokens(parsed.original_query)
        if not tokens:
            return []

        products = await self._load_products(filters)
        companies = await self._load_companies()

        def hits(*parts: str | None) -> bool:
            text = haystack(*parts)
            return any(token in text for token in tokens)

        product_matches = [p for p in products if hits(p.name, p.description)]
        company_matches = {c.company_id for c in companies if hits(c.name, c.description)}

        matched_by_company = self._products_by_company(product_matches)
        all_by_company = self._products_by_company(products)
        matched_ids = set(matched_by_company) | company_matches

        candidates = [c for c in companies if c.company_id in matched_ids]
        stats = await self._company_stats([c.company_id for c in candidates])

        results = []
        for company in candidates:
            own_matches = matched_by_company.get(company.company_id, [])
            shown = own_matches or all_by_company.get(company.company_id, [])[:TEXT_FALLBACK_PRODUCTS]
            result = self._build_result(
                company, shown, parsed.grade, parsed.delivery, stats[company.company_id]
            )
            score = result.relevance_score
            if company.company_id in company_matches:
                score = min(1.0, score + 0.2)
            if own_matches:
                score = min(1.0, score + 0.2)
            results.append(result.model_copy(update={"relevance_score": score}))

        sort_results(results, {c.company_id: c.created_at.timestamp() for c in candidates})
        return results
