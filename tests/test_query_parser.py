"""Tests for query parsing: rules pass, LLM enrichment and the merge policy."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from westroy.schemas.query import ParsedQuery
from westroy.services.llm_parser import LLMParseError, LLMQueryParser, build_llm_parser
from westroy.services.query_parser import (
    DEFAULT_CITY,
    QueryParser,
    fuzzy_match,
    levenshtein_distance,
    merge_parsed_queries,
    parse_query_rules,
)


def _completion(content: str | None) -> MagicMock:
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


def _openai_client(content: str | None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_completion(content))
    return client


class TestRulesParser:
    """Test the deterministic keyword/regex parser."""

    def test_concrete_with_volume_grade_and_city(self):
        parsed = parse_query_rules("5 кубов бетона М300 Шымкент")

        assert parsed.category_id == "concrete"
        assert parsed.category == "Бетон"
        assert parsed.volume == "5"
        assert parsed.unit == "м³"
        assert parsed.grade == "М300"
        assert parsed.city == "Шымкент"
        assert parsed.original_query == "5 кубов бетона М300 Шымкент"

    def test_is_deterministic(self):
        query = "щебень 20 тонн с доставкой"
        assert parse_query_rules(query) == parse_query_rules(query)

    def test_grade_digits_are_not_a_volume(self):
        parsed = parse_query_rules("бетон м300")

        assert parsed.grade == "М300"
        assert parsed.volume is None
        assert any(s.type == "volume" for s in parsed.suggestions)

    def test_bare_grade_implies_concrete(self):
        parsed = parse_query_rules("нужен m350 10 кубов")

        assert parsed.category_id == "concrete"
        assert parsed.grade == "М350"
        assert parsed.volume == "10"

    def test_class_grade_uses_b_prefix(self):
        parsed = parse_query_rules("бетон класс B22,5")
        assert parsed.grade == "B22.5"

    def test_cyrillic_class_grade(self):
        parsed = parse_query_rules("бетон В25 10 кубов")

        assert parsed.category_id == "concrete"
        assert parsed.grade == "B25"
        assert parsed.volume == "10"

    def test_preposition_before_number_is_not_a_grade(self):
        parsed = parse_query_rules("бетон в 10 кубов")

        assert parsed.grade is None
        assert parsed.volume == "10"

    def test_tonnage_and_delivery(self):
        parsed = parse_query_rules("щебень 20 тонн с доставкой")

        assert parsed.category_id == "aggregates"
        assert parsed.volume == "20"
        assert parsed.unit == "тонн"
        assert parsed.delivery is True
        assert not any(s.type == "delivery" for s in parsed.suggestions)

    def test_trailing_number_takes_category_unit(self):
        parsed = parse_query_rules("арматура 12")

        assert parsed.category_id == "rebar"
        assert parsed.volume == "12"
        assert parsed.unit == "тонн"

    def test_city_synonym_and_default(self):
        assert parse_query_rules("песок туркестан").city == "Туркестан"
        assert parse_query_rules("песок").city == DEFAULT_CITY

    def test_typo_still_matches_category(self):
        parsed = parse_query_rules("газаблок 100 шт")

        assert parsed.category_id == "blocks"
        assert parsed.unit == "шт"

    def test_unknown_query_offers_category_suggestions(self):
        parsed = parse_query_rules("что-нибудь хорошее")

        assert parsed.category_id is None
        assert parsed.confidence >= 0.05
        assert {s.type for s in parsed.suggestions} == {"category"}
        assert any(s.value == "concrete" for s in parsed.suggestions)

    def test_confidence_is_bounded(self):
        parsed = parse_query_rules("бетон м300 10 кубов шымкент с доставкой")
        assert 0.0 <= parsed.confidence <= 1.0


class TestFuzzyMatching:
    """Test edit-distance helpers."""

    def test_levenshtein_distance(self):
        assert levenshtein_distance("бетон", "бетон") == 0
        assert levenshtein_distance("бетон", "бетан") == 1
        assert levenshtein_distance("", "abc") == 3

    def test_short_words_must_match_exactly(self):
        assert fuzzy_match("пц", "пц") is True
        assert fuzzy_match("пг", "пгс") is False

    def test_inflection_by_containment(self):
        assert fuzzy_match("цемента", "цемент") is True


class TestMergePolicy:
    """Test how the enrichment result is merged into the rules result."""

    def test_rules_category_wins_and_gaps_are_filled(self):
        rules = parse_query_rules("бетон")
        enriched = ParsedQuery(
            category="Арматура",
            category_id="rebar",
            volume="15",
            unit="м³",
            grade="М400",
            delivery=True,
            confidence=0.95,
            original_query="бетон",
        )

        merged = merge_parsed_queries(rules, enriched)

        assert merged.category_id == "concrete"
        assert merged.grade == "М400"
        assert merged.volume == "15"
        assert merged.delivery is True
        assert merged.confidence == 0.95
        assert not any(s.type in ("delivery", "volume") for s in merged.suggestions)

    def test_rules_values_are_not_overwritten(self):
        rules = parse_query_rules("бетон м300 10 кубов")
        enriched = ParsedQuery(grade="М500", volume="99", unit="м³", confidence=0.95, original_query="x")

        merged = merge_parsed_queries(rules, enriched)

        assert merged.grade == "М300"
        assert merged.volume == "10"
        assert merged.original_query == "бетон м300 10 кубов"

    def test_enrichment_used_whole_when_rules_found_no_category(self):
        rules = parse_query_rules("что-нибудь хорошее")
        enriched = ParsedQuery(
            category="Бетон", category_id="concrete", confidence=0.95, original_query="ignored"
        )

        merged = merge_parsed_queries(rules, enriched)

        assert merged.category_id == "concrete"
        assert merged.original_query == "что-нибудь хорошее"

    def test_no_enrichment_returns_rules(self):
        rules = parse_query_rules("песок")
        assert merge_parsed_queries(rules, None) is rules


class TestQueryParser:
    """Test the race between the rules pass and the enricher."""

    @pytest.mark.asyncio
    async def test_empty_query_never_calls_enricher(self):
        enricher = MagicMock()
        enricher.parse = AsyncMock()
        parser = QueryParser(enricher=enricher, timeout_ms=1000)

        parsed = await parser.parse("")

        enricher.parse.assert_not_called()
        assert parsed.category_id is None
        assert parsed.city == DEFAULT_CITY

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_rules(self):
        async def slow_parse(query: str) -> ParsedQuery:
            await asyncio.sleep(5)
            return ParsedQuery(original_query=query)

        enricher = MagicMock()
        enricher.parse = slow_parse
        parser = QueryParser(enricher=enricher, timeout_ms=50)

        parsed = await parser.parse("5 кубов бетона М300 Шымкент")

        assert parsed == parse_query_rules("5 кубов бетона М300 Шымкент")
        assert parsed.category_id == "concrete"
        assert parsed.volume == "5"

    @pytest.mark.asyncio
    async def test_enricher_error_falls_back_to_rules(self):
        enricher = MagicMock()
        enricher.parse = AsyncMock(side_effect=RuntimeError("LLM down"))
        parser = QueryParser(enricher=enricher)

        parsed = await parser.parse("песок 10 тонн")

        assert parsed == parse_query_rules("песок 10 тонн")

    @pytest.mark.asyncio
    async def test_enrichment_is_merged(self):
        enricher = MagicMock()
        enricher.parse = AsyncMock(
            return_value=ParsedQuery(grade="М300", delivery=True, confidence=0.95, original_query="бетон")
        )
        parser = QueryParser(enricher=enricher)

        parsed = await parser.parse("бетон")

        enricher.parse.assert_awaited_once_with("бетон")
        assert parsed.category_id == "concrete"
        assert parsed.grade == "М300"
        assert parsed.delivery is True

    @pytest.mark.asyncio
    async def test_rules_only_without_enricher(self):
        parsed = await QueryParser().parse("цемент м500 30 тонн")
        assert parsed.category_id in ("cement", "concrete")


class TestLLMQueryParser:
    """Test the OpenAI-backed enricher with a mocked client."""

    @pytest.mark.asyncio
    async def test_parses_json_reply(self):
        reply = {
            "category": "Бетон",
            "volume": 20,
            "unit": "м3",
            "city": "Шымкент",
            "grade": "М300",
            "delivery": True,
        }
        client = _openai_client(json.dumps(reply, ensure_ascii=False))
        parser = LLMQueryParser(client, model="gpt-4o-mini")

        parsed = await parser.parse("бетон м300 20 кубов с доставкой")

        assert parsed.category_id == "concrete"
        assert parsed.volume == "20"
        assert parsed.unit == "м³"
        assert parsed.grade == "М300"
        assert parsed.delivery is True
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_unknown_category_keeps_label_without_id(self):
        client = _openai_client(json.dumps({"category": "Стекло", "delivery": False}))

        parsed = await LLMQueryParser(client).parse("стекло")

        assert parsed.category == "Стекло"
        assert parsed.category_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "not json", '{"volume": "lots"}'])
    async def test_unusable_reply_raises(self, content):
        parser = LLMQueryParser(_openai_client(content))

        with pytest.raises(LLMParseError):
            await parser.parse("бетон")

    def test_no_api_key_disables_enrichment(self):
        assert build_llm_parser(None, "gpt-4o-mini") is None
        assert build_llm_parser("", "gpt-4o-mini") is None
