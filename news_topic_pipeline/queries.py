"""Stage A: search-query generation from a seed title, plus code-built widening queries."""

import logging
import re
from typing import Any, Dict, List

from .coverage import extract_keywords
from .errors import GenerationError, GenerationParseError, NoQueriesError
from .llm import parse_json_object
from .models import COUNTRY_NAME, QueriesResult, city_label
from .prompts import audience_label, render_prompt
from .text import has_forbidden_dash

log = logging.getLogger(__name__)

MIN_QUERIES = 4
MAX_QUERIES = 6
MIN_CITY_QUERIES = 2
MAX_WIDENING_QUERIES = 3

_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")


def _coerce_queries(parsed: Dict[str, Any]) -> List[str]:
    raw = parsed.get("queries")
    if not isinstance(raw, list):
        return []
    return [q for q in (str(item).strip() for item in raw) if len(q) > 3]


def _join(*parts: str) -> str:
    return " ".join(p for p in parts if p)


def _year_required(seed_title: str, current_year: int) -> bool:
    return str(current_year) in seed_title


def validate_queries(queries: List[str], city: str, seed_title: str, current_year: int) -> List[str]:
    """Human-readable constraint violations; an empty list means the set is valid."""
    failures: List[str] = []
    if not MIN_QUERIES <= len(queries) <= MAX_QUERIES:
        failures.append(f"Expected {MIN_QUERIES}-{MAX_QUERIES} queries, got {len(queries)}.")

    city_lower = city.lower()
    city_count = sum(1 for q in queries if city_lower in q.lower())
    if city_count < MIN_CITY_QUERIES:
        failures.append(f'At least {MIN_CITY_QUERIES} queries must include "{city}". Found {city_count}.')

    if _year_required(seed_title, current_year):
        year = str(current_year)
        if not any(year in q for q in queries):
            failures.append(f"Seed title contains {year} but no query includes it.")

    for q in queries:
        if has_forbidden_dash(q):
            failures.append(f'Query "{q}" contains an em dash or en dash.')
    return failures


def generate_search_queries(
    generator,
    seed_title: str,
    city_focus: str,
    audience_focus: str,
    current_year: int,
) -> QueriesResult:
    """Ask the generator for 4-6 search queries, repairing once on violations.

    The repair only replaces the original when it passes validation with at
    least four queries. Raises ``NoQueriesError`` when the first response has
    no usable queries.
    """
    city = city_label(city_focus)
    context = dict(
        city=city,
        city_focus=city_focus,
        audience_label=audience_label(audience_focus),
        current_year=current_year,
        year_required=_year_required(seed_title, current_year),
        min_queries=MIN_QUERIES,
        max_queries=MAX_QUERIES,
        min_city_queries=MIN_CITY_QUERIES,
    )

    try:
        response = generator.generate(render_prompt("search_queries", seed_title=seed_title, **context))
    except GenerationError as exc:
        raise NoQueriesError(f"Failed to generate search queries: {exc.reason}") from exc
    token_usage = response.token_count or 0
    try:
        queries = _coerce_queries(parse_json_object(response.text))
    except GenerationParseError as exc:
        log.warning("Stage A response was not valid JSON: %s", exc)
        queries = []
    if not queries:
        raise NoQueriesError("Failed to generate search queries. Try again.")

    failures = validate_queries(queries, city, seed_title, current_year)
    if not failures:
        return QueriesResult(queries=queries[:MAX_QUERIES], token_usage=token_usage)

    log.info("Stage A: %d query violation(s), requesting one repair", len(failures))
    repaired = False
    try:
        retry = generator.generate(
            render_prompt("search_queries_repair", failures=failures, original_queries=queries, **context)
        )
        token_usage += retry.token_count or 0
        retry_queries = _coerce_queries(parse_json_object(retry.text))
    except GenerationError as exc:
        log.warning("Stage A repair failed, keeping original queries: %s", exc)
        retry_queries = []

    if retry_queries and len(retry_queries) >= MIN_QUERIES and not validate_queries(
        retry_queries, city, seed_title, current_year
    ):
        queries = retry_queries
        repaired = True
    else:
        log.info("Stage A repair rejected, keeping original queries")

    return QueriesResult(queries=queries[:MAX_QUERIES], token_usage=token_usage, repaired=repaired)


def build_widening_queries(
    seed_title: str,
    city_focus: str,
    audience_focus: str,
    original_queries: List[str],
) -> List[str]:
    """Two or three broader queries for when the primary pass finds too little.

    Built in code from the seed title's keywords (years dropped), then an
    audience angle, then an official-source query; anything already asked
    (case-insensitive) is skipped.
    """
    city = city_label(city_focus)
    extracted = extract_keywords(_YEAR_RE.sub(" ", seed_title))
    city_words = set(city.lower().split()) | {COUNTRY_NAME.lower()}
    words = [w for w in extracted.keywords if w not in city_words and not w.isdigit()][:4]
    topic = " ".join(extracted.detected_intents[:1] or words[:2])

    candidates: List[str] = []
    if len(words) >= 2:
        candidates.append(f"{city} {' '.join(words)}")
        candidates.append(f"{COUNTRY_NAME} {' '.join(words[:3])}")
    elif words:
        candidates.append(f"{city} {words[0]} guide")

    if audience_focus in ("teachers", "both"):
        candidates.append(_join(city, topic, "teachers"))
    if audience_focus in ("travellers", "both"):
        candidates.append(_join(city, topic, "travellers"))

    candidates.append(_join(COUNTRY_NAME, topic, "official requirements"))
    candidates.append(f"{city} latest news")

    asked = {q.lower() for q in original_queries}
    widening: List[str] = []
    for q in candidates:
        key = q.lower()
        if key in asked:
            continue
        asked.add(key)
        widening.append(q)
        if len(widening) == MAX_WIDENING_QUERIES:
            break
    return widening
