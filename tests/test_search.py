"""Tests for catalog search: category browse, text fallback, filters and ranking."""

from decimal import Decimal

import pytest
import pytest_asyncio

from westroy.core.exceptions import ValidationError
from westroy.models.order import Order
from westroy.models.product import StockStatus
from westroy.models.review import Review
from westroy.schemas.search import SearchFilters
from westroy.services.query_parser import QueryParser
from westroy.services.search_service import SearchService, format_price, haystack, search_tokens


@pytest.fixture
def service(db) -> SearchService:
    return SearchService(db, QueryParser())


@pytest_asyncio.fixture
async def concrete_catalog(factory):
    """Two concrete suppliers and one unrelated rebar supplier."""
    concrete = await factory.category("concrete", "Бетон")
    await factory.category("ready-mix", "Товарный бетон", parent_id="concrete", sort_order=2)
    await factory.category("mortar", "Раствор", parent_id="concrete", sort_order=1)
    rebar = await factory.category("rebar", "Арматура")

    south = await factory.company(categories=[concrete], name="Бетон Юг", delivery=True)
    plant = await factory.company(categories=[concrete], name="Шымкент Бетон", verified=True)
    steel = await factory.company(categories=[rebar], name="Металл Сервис")

    await factory.product(concrete, [(south, 26000)], name="Бетон М300")
    await factory.product(concrete, [(plant, 21000)], name="Бетон М200")
    await factory.product(rebar, [(steel, 310000)], name="Арматура А500С 12 мм", price_unit="за тонну")
    return {"concrete": concrete, "rebar": rebar, "south": south, "plant": plant, "steel": steel}


class TestSearchTokens:
    """Test token extraction for the text fallback."""

    def test_drops_stop_words_and_short_tokens(self):
        assert search_tokens("Купить гидроизоляцию в Шымкент с доставкой") == [
            "гидроизоляцию",
            "доставкой",
        ]

    def test_single_char_tokens_dropped(self):
        assert search_tokens("а б вв") == ["вв"]

    def test_yo_folded(self):
        assert search_tokens("ёлка") == ["елка"]


class TestCategoryBrowse:
    """Test browsing a category without text."""

    @pytest.mark.asyncio
    async def test_returns_category_companies_and_sub_categories(self, service, concrete_catalog):
        response = await service.search(category_id="concrete")

        names = {r.company.name for r in response.results}
        assert names == {"Бетон Юг", "Шымкент Бетон"}
        assert response.parsed is None
        assert response.meta.strategy == "category"
        assert [c.category_id for c in response.sub_categories] == ["mortar", "ready-mix"]

    @pytest.mark.asyncio
    async def test_verified_company_ranks_first(self, service, concrete_catalog):
        response = await service.search(category_id="concrete")

        assert response.results[0].company.name == "Шымкент Бетон"
        assert response.results[0].relevance_score == pytest.approx(0.6)
        assert response.results[1].relevance_score == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_empty_category(self, service, factory):
        await factory.category("cement", "Цемент")

        response = await service.search(category_id="cement")

        assert response.results == []
        assert response.meta.total == 0
        assert response.meta.strategy is None

    @pytest.mark.asyncio
    async def test_requires_text_or_category(self, service):
        with pytest.raises(ValidationError):
            await service.search(q="   ", category_id="")


class TestTextSearch:
    """Test parsed text queries."""

    @pytest.mark.asyncio
    async def test_grade_match_boosts_and_narrows(self, service, concrete_catalog):
        response = await service.search(q="бетон м300")

        assert response.parsed.category_id == "concrete"
        assert response.parsed.grade == "М300"
        top = response.results[0]
        assert top.company.name == "Бетон Юг"
        assert top.relevance_score == pytest.approx(0.8)
        assert [p.name for p in top.products] == ["Бетон М300"]
        assert top.price_from == Decimal("26000")

    @pytest.mark.asyncio
    async def test_delivery_boost_needs_company_delivery(self, service, concrete_catalog):
        response = await service.search(q="бетон с доставкой")

        scores = {r.company.name: r.relevance_score for r in response.results}
        assert scores["Бетон Юг"] == pytest.approx(0.6)
        assert scores["Шымкент Бетон"] == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_equal_relevance_sorted_by_price(self, service, factory):
        concrete = await factory.category()
        cheap = await factory.company(categories=[concrete], name="Дешево")
        dear = await factory.company(categories=[concrete], name="Дорого")
        unpriced = await factory.company(categories=[concrete], name="По запросу")
        await factory.product(concrete, [(dear, 30000), (cheap, 20000), (unpriced, 0)])

        response = await service.search(q="бетон")

        assert [r.company.name for r in response.results] == ["Дешево", "Дорого", "По запросу"]
        assert response.results[-1].price_from == Decimal("0")

    @pytest.mark.asyncio
    async def test_falls_back_to_text_match(self, service, factory):
        general = await factory.category("general-materials", "Общестроительные материалы")
        roofing = await factory.company(categories=[general], name="Кровля Плюс")
        other = await factory.company(categories=[general], name="Склад")
        await factory.product(general, [(roofing, 9500)], name="Гидроизоляция обмазочная")
        await factory.product(general, [(other, 4000)], name="Грунтовка")

        response = await service.search(q="гидроизоляция")

        assert response.parsed.category_id is None
        assert response.meta.strategy == "text"
        assert [r.company.name for r in response.results] == ["Кровля Плюс"]
        assert response.results[0].relevance_score == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_company_text_hit_shows_its_catalog(self, service, factory):
        general = await factory.category("general-materials", "Общестроительные материалы")
        company = await factory.company(
            categories=[general], name="Изоляция Юг", description="гидроизоляция кровли и фундаментов"
        )
        await factory.product(general, [(company, 1200)], name="Грунтовка")

        response = await service.search(q="гидроизоляция")

        result = response.results[0]
        assert [p.name for p in result.products] == ["Грунтовка"]
        assert result.relevance_score == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_explicit_category_fills_unparsed_one(self, service, concrete_catalog):
        response = await service.search(q="гидроизоляция", category_id="concrete")

        assert response.parsed.category_id == "concrete"
        assert response.meta.strategy == "category"
        assert len(response.results) == 2
        assert [c.category_id for c in response.sub_categories] == ["mortar", "ready-mix"]

    @pytest.mark.asyncio
    async def test_nothing_found(self, service, concrete_catalog):
        response = await service.search(q="гидроизоляция")

        assert response.results == []
        assert response.meta.strategy is None
        assert response.parsed is not None


class TestFilters:
    """Test product filters on every strategy."""

    @pytest.mark.asyncio
    async def test_in_stock_only(self, service, factory):
        concrete = await factory.category()
        ready = await factory.company(categories=[concrete], name="В наличии")
        later = await factory.company(categories=[concrete], name="Под заказ")
        await factory.product(concrete, [(ready, 25000)])
        await factory.product(concrete, [(later, 24000)], stock_status=StockStatus.ON_ORDER.value)

        response = await service.search(category_id="concrete", filters=SearchFilters(in_stock_only=True))

        assert [r.company.name for r in response.results] == ["В наличии"]

    @pytest.mark.asyncio
    async def test_image_and_article(self, service, factory):
        blocks = await factory.category("blocks", "Кирпич и блоки")
        company = await factory.company(categories=[blocks])
        await factory.product(blocks, [(company, 100)], name="Газоблок D500", article="GB-500",
                              image_url="https://cdn.example.com/gb.png")
        await factory.product(blocks, [(company, 90)], name="Газоблок D600", article="", image_url=None)

        response = await service.search(
            category_id="blocks",
            filters=SearchFilters(with_image_only=True, with_article_only=True),
        )

        assert [p.name for p in response.results[0].products] == ["Газоблок D500"]
        assert response.results[0].price_from == Decimal("100")

    @pytest.mark.asyncio
    async def test_brand_is_case_insensitive_substring(self, service, factory):
        general = await factory.category("general-materials", "Общестроительные материалы")
        company = await factory.company(categories=[general])
        await factory.product(general, [(company, 3500)], name="Гипсокартон", brand="Knauf")
        await factory.product(general, [(company, 3000)], name="Гипсокартон эконом", brand="Volma")

        response = await service.search(category_id="general-materials", filters=SearchFilters(brand="KNAUF"))

        assert [p.brand for p in response.results[0].products] == ["Knauf"]

    @pytest.mark.asyncio
    async def test_filters_also_apply_to_text_fallback(self, service, factory):
        general = await factory.category("general-materials", "Общестроительные материалы")
        company = await factory.company(categories=[general])
        await factory.product(
            general, [(company, 9500)], name="Гидроизоляция", stock_status=StockStatus.OUT_OF_STOCK.value
        )

        response = await service.search(q="гидроизоляция", filters=SearchFilters(in_stock_only=True))

        assert response.results == []


class TestPaginationAndStats:
    """Test pagination metadata and per-company stats."""

    @pytest.mark.asyncio
    async def test_pagination_keeps_total(self, service, factory):
        concrete = await factory.category()
        companies = [await factory.company(categories=[concrete]) for _ in range(3)]
        for i, company in enumerate(companies):
            await factory.product(concrete, [(company, 20000 + i * 1000)])

        page = await service.search(category_id="concrete", skip=1, limit=1)

        assert page.meta.total == 3
        assert page.meta.skip == 1
        assert page.meta.limit == 1
        assert len(page.results) == 1
        assert page.results[0].price_from == Decimal("21000")

    @pytest.mark.asyncio
    async def test_stats_count_accepted_offers_and_rating(self, service, db, factory):
        concrete = await factory.category()
        company = await factory.company(categories=[concrete])
        await factory.product(concrete, [(company, 25000)])
        client = await factory.client()
        accepted_request = await factory.request(client, concrete)
        accepted = await factory.offer(accepted_request, company, status="accepted")
        await factory.offer(await factory.request(client, concrete), company)

        order = Order(
            offer_id=accepted.offer_id,
            request_id=accepted_request.request_id,
            client_id=client.user_id,
            company_id=company.company_id,
            total_price=Decimal("25000"),
            status="completed",
        )
        db.add(order)
        await db.flush()
        db.add(Review(order_id=order.order_id, client_id=client.user_id,
                      company_id=company.company_id, rating=4))
        await db.commit()

        response = await service.search(category_id="concrete")

        stats = response.results[0].stats
        assert stats.completed_orders == 1
        assert stats.avg_response_minutes == 0
        assert stats.review_count == 1
        assert stats.rating == 4.0


class TestHaystack:
    """Test the text the fallback matches tokens against."""

    def test_missing_description_adds_nothing(self):
        assert haystack("Гидроизоляция", None) == "гидроизоляция"
        assert "none" not in haystack("Склад", None)

    def test_parts_are_normalized(self):
        assert haystack("Бетон  Юг", "Доставка ЁМКОСТЕЙ") == "бетон юг доставка емкостей"


class TestSuggest:
    """Test search box autocomplete."""

    @pytest.mark.asyncio
    async def test_short_query_gets_nothing(self, service, concrete_catalog):
        assert (await service.suggest("б")).suggestions == []
        assert (await service.suggest("  ")).suggestions == []
        assert (await service.suggest(None)).suggestions == []

    @pytest.mark.asyncio
    async def test_category_products_then_query(self, service, concrete_catalog):
        response = await service.suggest("Бетон")

        items = [(s.type, s.label, s.value, s.meta) for s in response.suggestions]
        assert items == [
            ("category", "Бетон", "concrete", "Категория"),
            ("product", "Бетон М200", "Бетон М200", "от 21\u00a0000 ₸"),
            ("product", "Бетон М300", "Бетон М300", "от 26\u00a0000 ₸"),
            ("query", "Искать «Бетон»", "Бетон", None),
        ]

    @pytest.mark.asyncio
    async def test_label_prefix_adds_categories(self, service):
        response = await service.suggest("инертные и кирпич")

        categories = [s.value for s in response.suggestions if s.type == "category"]
        assert categories[0] == "aggregates"
        assert "blocks" in categories
        assert len(categories) <= 3
        assert response.suggestions[-1].type == "query"

    @pytest.mark.asyncio
    async def test_products_capped_and_unpriced_last(self, service, factory):
        blocks = await factory.category("blocks", "Кирпич и блоки")
        company = await factory.company(categories=[blocks])
        await factory.product(blocks, [(company, 0)], name="Газоблок D700")
        for i in range(7):
            await factory.product(blocks, [(company, 1000 + i * 250)], name=f"Газоблок D{400 + i * 10}")

        response = await service.suggest("Газоблок")

        products = [s for s in response.suggestions if s.type == "product"]
        assert len(products) == 6
        assert products[0].label == "Газоблок D400"
        assert products[0].meta == "от 1\u00a0000 ₸"
        assert products[1].meta == "от 1\u00a0250 ₸"
        assert "Газоблок D700" not in [p.label for p in products]

    @pytest.mark.asyncio
    async def test_unpriced_product_marked_on_request(self, service, factory):
        blocks = await factory.category("blocks", "Кирпич и блоки")
        company = await factory.company(categories=[blocks])
        await factory.product(blocks, [(company, 0)], name="Газоблок D700", article="GB-700")

        response = await service.suggest("GB-700")

        products = [s for s in response.suggestions if s.type == "product"]
        assert [(p.label, p.meta) for p in products] == [("Газоблок D700", "По запросу")]


class TestFormatPrice:
    def test_grouping_and_decimal_comma(self):
        assert format_price(Decimal("21000.00")) == "21\u00a0000"
        assert format_price(Decimal("1250.50")) == "1\u00a0250,5"
        assert format_price(Decimal("950")) == "950"
