"""Free-text query parsing.

Two sources feed a `ParsedQuery`:

* `parse_query_rules` - keyword tables, regexes and fuzzy matching. Pure,
  synchronous, always available.
* an enricher (see `westroy.services.llm_parser`) - an LLM call that is
  raced against the rules pass and bounded by a timeout.

`merge_parsed_queries` combines them: rules win on category, the LLM only
fills gaps. `QueryParser.parse` never raises and never waits longer than the
configured timeout; in the worst case it returns the rules result.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from westroy.middleware.metrics import record_parser_outcome
from westroy.schemas.query import ParsedQuery, Suggestion

logger = logging.getLogger(__name__)

DEFAULT_CITY = "Шымкент"


@dataclass(frozen=True)
class CategoryKeywords:
    category_id: str
    label: str
    keywords: tuple[str, ...]


# Order matters: the first category with a matching keyword wins.
CATEGORY_KEYWORDS: tuple[CategoryKeywords, ...] = (
    CategoryKeywords(
        "concrete",
        "Бетон",
        ("бетон", "бетона", "бетону", "бетоном", "раствор", "раствора", "товарный бетон"),
    ),
    CategoryKeywords(
        "aggregates",
        "Инертные материалы",
        ("песок", "песка", "щебень", "щебня", "гравий", "гравия", "отсев", "пгс",
         "инертные", "инертных", "инертный"),
    ),
    CategoryKeywords(
        "blocks",
        "Кирпич и блоки",
        ("кирпич", "кирпича", "газоблок", "газоблока", "пеноблок", "пеноблока", "блок",
         "блоки", "блоков", "газобетон", "газобетона", "пенобетон", "шлакоблок", "керамзитоблок"),
    ),
    CategoryKeywords(
        "rebar",
        "Арматура и металлопрокат",
        ("арматура", "арматуры", "арматуру", "металл", "металла", "прокат", "проката",
         "металлопрокат", "швеллер", "швеллера", "уголок", "уголка", "труба", "трубу",
         "трубы", "лист", "балка", "сетка", "сетки"),
    ),
    CategoryKeywords(
        "cement",
        "Цемент",
        ("цемент", "цемента", "портландцемент", "пц400", "пц500", "м400", "м500"),
    ),
    CategoryKeywords(
        "machinery",
        "Спецтехника",
        ("спецтехника", "спецтехнику", "спецтехники", "экскаватор", "экскаватора", "кран",
         "крана", "бульдозер", "бульдозера", "погрузчик", "погрузчика", "автокран",
         "автокрана", "миксер", "миксера", "самосвал", "самосвала", "техника", "техники",
         "аренда техники"),
    ),
    CategoryKeywords(
        "pvc-profiles",
        "ПВХ профили и подоконники",
        ("пвх", "подоконник", "подоконники", "профиль", "профили", "ламбри", "штапик",
         "оконный профиль", "дверной профиль"),
    ),
    CategoryKeywords(
        "general-materials",
        "Общестроительные материалы",
        ("осп", "фанера", "двп", "дсп", "гипсокартон", "ламинат", "керамогранит",
         "утеплитель", "штукатурка", "кафельный клей", "рубероид", "труба", "муфта"),
    ),
    CategoryKeywords(
        "painting-tools",
        "Малярный инструмент",
        ("валик", "кисть", "шпатель", "кельма", "терка", "малярный инструмент"),
    ),
    CategoryKeywords(
        "hand-tools",
        "Ручной инструмент",
        ("молоток", "рулетка", "уровень", "отвертка", "ножовка", "плоскогубцы", "инструмент"),
    ),
    CategoryKeywords(
        "fasteners",
        "Крепеж и метизы",
        ("саморез", "дюбель", "гвоздь", "болт", "гайка", "анкер", "шуруп", "метизы"),
    ),
    CategoryKeywords(
        "electrical",
        "Электрика",
        ("кабель", "провод", "розетка", "выключатель", "лампа", "автомат", "электрика"),
    ),
    CategoryKeywords(
        "plumbing",
        "Сантехника и трубы",
        ("сантехника", "труба", "фитинг", "кран", "смеситель", "муфта"),
    ),
    CategoryKeywords(
        "safety",
        "СИЗ и безопасность",
        ("перчатки", "очки", "каска", "респиратор", "маска", "сиз"),
    ),
    CategoryKeywords(
        "adhesives-sealants",
        "Клеи и герметики",
        ("клей", "герметик", "монтажная пена", "силикон", "эпоксидный"),
    ),
)

# (pattern, prefix); patterns run against the lower-cased query.
GRADE_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bм[\s\-]?(\d{2,3})\b"), "М"),
    (re.compile(r"\bm[\s\-]?(\d{2,3})\b"), "М"),
    (re.compile(r"марк[аиуе]\s*м?\s*(\d{2,3})\b"), "М"),
    (re.compile(r"класс[а-я]*\s*[bв]?\s*(\d{1,2}(?:[.,]\d)?)"), "B"),
    (re.compile(r"\bb[\s\-]?(\d{1,2}(?:[.,]\d)?)\b"), "B"),
    (re.compile(r"\bв(\d{1,2}(?:[.,]\d)?)\b"), "B"),
)

_NUMBER = r"(?<![\w.,])(\d+(?:[.,]\d+)?)"

# (pattern, unit); a None unit is inferred from the category.
VOLUME_PATTERNS: tuple[tuple[re.Pattern, Optional[str]], ...] = (
    (re.compile(_NUMBER + r"\s*(?:кубометр\w*|куб\w*|м3|м³)"), "м³"),
    (re.compile(_NUMBER + r"\s*(?:тонн\w*|тн\b|т\b)"), "тонн"),
    (re.compile(_NUMBER + r"\s*шт\w*"), "шт"),
    (re.compile(_NUMBER + r"\s*(?:час\w*|ч\b)"), "час"),
    (re.compile(_NUMBER + r"\s*смен\w*"), "смена"),
    (re.compile(_NUMBER + r"\s*рейс\w*"), "рейс"),
    (re.compile(_NUMBER + r"\W*$"), None),
)

CATEGORY_DEFAULT_UNITS = {
    "concrete": "м³",
    "blocks": "м³",
    "aggregates": "тонн",
    "rebar": "тонн",
    "machinery": "час",
}

CITY_SYNONYMS = {
    "шымкент": "Шымкент",
    "шым": "Шымкент",
    "шимкент": "Шымкент",
    "чимкент": "Шымкент",
    "шымкенте": "Шымкент",
    "шымкента": "Шымкент",
    "шымкенту": "Шымкент",
    "город": "Шымкент",
    "туркестан": "Туркестан",
    "туркестане": "Туркестан",
}

DELIVERY_KEYWORDS = (
    "доставка",
    "доставкой",
    "доставку",
    "доставить",
    "довезти",
    "привезти",
    "привезите",
    "с доставкой",
    "нужна доставка",
    "доставьте",
)

CATEGORY_SUGGESTIONS = (
    ("Бетон?", "concrete"),
    ("Инертные?", "aggregates"),
    ("Кирпич/блоки?", "blocks"),
    ("Арматура?", "rebar"),
    ("Цемент?", "cement"),
    ("Спецтехника?", "machinery"),
    ("ПВХ профили?", "pvc-profiles"),
    ("Общестрой?", "general-materials"),
    ("Малярка?", "painting-tools"),
    ("Ручной инструмент?", "hand-tools"),
    ("Крепеж?", "fasteners"),
)

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lower-case, fold `ё` and turn punctuation into spaces."""
    text = text.lower().replace("ё", "е")
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_match(word: str, target: str, max_distance: int = 2) -> bool:
    """Match a query word against a keyword, tolerating typos and inflection.

    Words shorter than 3 characters must match exactly.
    """
    if len(word) < 3:
        return word == target
    if word in target or target in word:
        return True
    return levenshtein_distance(word, target) <= max_distance


def match_category(normalized: str) -> Optional[CategoryKeywords]:
    """Find the first category whose keyword appears in normalized text."""
    words = normalized.split()
    for entry in CATEGORY_KEYWORDS:
        for keyword in entry.keywords:
            if " " in keyword:
                if keyword in normalized:
                    return entry
            elif any(fuzzy_match(word, keyword) for word in words):
                return entry
    return None


def parse_query_rules(query: str) -> ParsedQuery:
    """Deterministic keyword/regex parse of a buyer query."""
    normalized = normalize_text(query)
    words = normalized.split()
    lowered = query.lower().replace("ё", "е")

    category = None
    category_id = None
    volume = None
    unit = None
    city = None
    delivery = None
    grade = None
    confidence = 0.0

    # 1. Category
    entry = match_category(normalized)
    if entry is not None:
        category = entry.label
        category_id = entry.category_id
        confidence += 0.35

    # 2. Grade; a bare grade means concrete
    for pattern, prefix in GRADE_PATTERNS:
        match = pattern.search(lowered)
        if match:
            grade = f"{prefix}{match.group(1).replace(',', '.')}"
            confidence += 0.15
            if category_id is None:
                category = "Бетон"
                category_id = "concrete"
                confidence += 0.2
            # Keep grade digits out of the volume search.
            lowered = lowered[: match.start()] + " " + lowered[match.end():]
            break

    # 3. Volume and unit
    for pattern, default_unit in VOLUME_PATTERNS:
        match = pattern.search(lowered)
        if match:
            volume = match.group(1).replace(",", ".")
            unit = default_unit
            if unit is None and category_id is not None:
                unit = CATEGORY_DEFAULT_UNITS.get(category_id)
            confidence += 0.15
            break

    # 4. City
    for word in words:
        if word in CITY_SYNONYMS:
            city = CITY_SYNONYMS[word]
            confidence += 0.15
            break
    if city is None:
        city = DEFAULT_CITY
        confidence += 0.05

    # 5. Delivery
    if any(keyword in normalized for keyword in DELIVERY_KEYWORDS):
        delivery = True
        confidence += 0.1

    # 6. Suggestions
    suggestions: list[Suggestion] = []
    if category_id is None:
        confidence = max(confidence, 0.05)
        suggestions.extend(
            Suggestion(type="category", label=label, value=value)
            for label, value in CATEGORY_SUGGESTIONS
        )
    else:
        if delivery is None:
            suggestions.append(Suggestion(type="delivery", label="Нужна доставка?", value="true"))
        if volume is None:
            suggestions.append(Suggestion(type="volume", label="Укажите объём", value=""))

    return ParsedQuery(
        category=category,
        category_id=category_id,
        volume=volume,
        unit=unit,
        city=city,
        delivery=delivery,
        grade=grade,
        confidence=round(min(confidence, 1.0), 2),
        suggestions=suggestions,
        original_query=query,
    )


def merge_parsed_queries(rules: ParsedQuery, enriched: Optional[ParsedQuery]) -> ParsedQuery:
    """Combine the rules result with an enrichment result.

    Precedence:
      1. rules found a category id: rules keep the category; the enrichment
         fills grade, city and delivery where rules left them empty, and
         volume/unit when rules found neither. Confidence is the max.
      2. rules found no category id but the enrichment did: the enrichment
         result is used as a whole (original query preserved).
      3. neither found one: same gap filling as case 1.
    """
    if enriched is None:
        return rules

    if rules.category_id is None and enriched.category_id is not None:
        return enriched.model_copy(update={"original_query": rules.original_query})

    updates: dict = {"confidence": max(rules.confidence, enriched.confidence)}
    if rules.grade is None and enriched.grade:
        updates["grade"] = enriched.grade
    if rules.city is None and enriched.city:
        updates["city"] = enriched.city
    if rules.delivery is None and enriched.delivery is not None:
        updates["delivery"] = enriched.delivery
    if rules.volume is None and rules.unit is None and enriched.volume:
        updates["volume"] = enriched.volume
        updates["unit"] = enriched.unit

    # Prompts for fields the enrichment just filled are stale.
    filled = {name for name in ("delivery", "volume") if name in updates}
    if filled:
        updates["suggestions"] = [s for s in rules.suggestions if s.type not in filled]

    return rules.model_copy(update=updates)


class QueryEnricher(Protocol):
    """Anything that can turn a query into a ParsedQuery asynchronously."""

    async def parse(self, query: str) -> ParsedQuery: ...


class QueryParser:
    """Races an optional enricher against the rules parser."""

    def __init__(self, enricher: Optional[QueryEnricher] = None, timeout_ms: int = 1500):
        self.enricher = enricher
        self.timeout_ms = timeout_ms

    async def parse(self, query: str) -> ParsedQuery:
        start = time.perf_counter()
        query = query or ""

        if not query.strip() or self.enricher is None:
            result = parse_query_rules(query)
            record_parser_outcome("rules", time.perf_counter() - start)
            return result

        # Start the enrichment call first so it overlaps the rules pass.
        task = asyncio.create_task(self.enricher.parse(query))
        rules = parse_query_rules(query)

        try:
            enriched = await asyncio.wait_for(task, timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.info(f"Query enrichment timed out after {self.timeout_ms}ms, using rules result")
            record_parser_outcome("timeout", time.perf_counter() - start)
            return rules
        except Exception as e:
            logger.warning(f"Query enrichment failed, using rules result: {e}")
            record_parser_outcome("error", time.perf_counter() - start)
            return rules

        outcome = "llm" if rules.category_id is None and enriched.category_id else "merged"
        record_parser_outcome(outcome, time.perf_counter() - start)
        return merge_parsed_queries(rules, enriched)
