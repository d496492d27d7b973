"""Stage B: topic variations grounded in the search results of the same run.

Every citation a topic carries must be one of the result URLs handed to the
generator. ``validate_and_clean_topics`` enforces that silently (it drops
anything ungrounded); ``validate_topics_strict`` reports every violation so
the single repair prompt can name them.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import GenerationError, GenerationParseError, TopicGenerationError
from .llm import parse_json_object
from .models import AUDIENCE_FIT_VALUES, NewsTopic, SearchResult, SuggestedKeywords, TopicsResult, city_label
from .prompts import audience_label, render_prompt
from .source_policy import canonicalize_url
from .text import clean, has_forbidden_dash

log = logging.getLogger(__name__)

MIN_TOPICS = 4
MAX_TOPICS = 8
MAX_SOURCES_PER_TOPIC = 3
MAX_LIST_ITEMS = 6

_YEAR_RE = re.compile(r"\b(20\d{2})\b")


def _str_list(value: Any, limit: int = MAX_LIST_ITEMS) -> List[str]:
    if not isinstance(value, list):
        return []
    return [clean(str(v)) for v in value if str(v).strip()][:limit]


def _allowed_set(allowed_urls: Iterable[str]) -> Set[str]:
    return {canonicalize_url(u) for u in allowed_urls}


def _grounded_urls(value: Any, allowed: Set[str]) -> List[str]:
    if not isinstance(value, list):
        return []
    urls: List[str] = []
    for raw in value:
        canonical = canonicalize_url(str(raw))
        if canonical in allowed and canonical not in urls:
            urls.append(canonical)
    return urls[:MAX_SOURCES_PER_TOPIC]


def _audience_fit(value: Any) -> List[str]:
    if not isinstance(value, list):
        return list(AUDIENCE_FIT_VALUES)
    fit = [a for a in AUDIENCE_FIT_VALUES if a in {str(v).strip().upper() for v in value}]
    return fit or list(AUDIENCE_FIT_VALUES)


def validate_and_clean_topics(raw_topics: List[Any], allowed_urls: Iterable[str]) -> List[NewsTopic]:
    """Best-effort conversion of raw model topics into safe ``NewsTopic`` values.

    Entries missing id, title, angle or whyItMatters are skipped. Ungrounded
    or duplicate source URLs are dropped, audience values outside the enum are
    dropped (defaulting to both), and free text is cleaned.
    """
    allowed = _allowed_set(allowed_urls)
    topics: List[NewsTopic] = []

    for raw in raw_topics:
        if not isinstance(raw, dict):
            continue
        if not all(raw.get(k) for k in ("id", "title", "angle", "whyItMatters")):
            continue

        keywords = raw.get("suggestedKeywords") if isinstance(raw.get("suggestedKeywords"), dict) else {}
        source_urls = _grounded_urls(raw.get("sourceUrls"), allowed)
        title = clean(str(raw["title"]))

        topics.append(
            NewsTopic(
                id=str(raw["id"]),
                title=title,
                angle=clean(str(raw["angle"])),
                why_it_matters=clean(str(raw["whyItMatters"])),
                audience_fit=_audience_fit(raw.get("audienceFit")),
                suggested_keywords=SuggestedKeywords(
                    target=clean(str(keywords.get("target") or title)),
                    secondary=_str_list(keywords.get("secondary")),
                ),
                search_queries=_str_list(raw.get("searchQueries")),
                intent=clean(str(raw.get("intent") or "informational")),
                outline_angles=_str_list(raw.get("outlineAngles")),
                source_urls=source_urls,
                source_count=len(source_urls),
                from_seed_title=bool(raw.get("fromSeedTitle")),
            )
        )

    return topics


def validate_topics_strict(
    topics: List[NewsTopic],
    allowed_urls: Iterable[str],
    city: str,
    seed_title: str,
    current_year: int,
) -> List[str]:
    """Every invariant violation as a readable line; empty means the batch passes."""
    failures: List[str] = []
    allowed = _allowed_set(allowed_urls)
    city_lower = city.lower()
    year = str(current_year)
    year_checked = year in seed_title

    if not MIN_TOPICS <= len(topics) <= MAX_TOPICS:
        failures.append(f"Expected {MIN_TOPICS}-{MAX_TOPICS} topics, got {len(topics)}.")
    if topics and not topics[0].from_seed_title:
        failures.append("First topic must have fromSeedTitle=true.")

    for t in topics:
        if city_lower not in t.title.lower():
            failures.append(f'Topic "{t.title}" does not include "{city}".')

        if year_checked:
            for found in _YEAR_RE.findall(t.title):
                if found != year:
                    failures.append(f'Topic "{t.title}" uses year {found} instead of {year}.')
                    break

        for fit in t.audience_fit:
            if fit not in AUDIENCE_FIT_VALUES:
                failures.append(f'Topic "{t.title}" has invalid audienceFit "{fit}".')

        urls = t.source_urls
        if not 1 <= len(urls) <= MAX_SOURCES_PER_TOPIC:
            failures.append(f'Topic "{t.title}" has {len(urls)} sourceUrls (need 1-{MAX_SOURCES_PER_TOPIC}).')
        for u in urls:
            if canonicalize_url(u) not in allowed:
                failures.append(f'Topic "{t.title}" cites URL not in search results: {u}')
        if len({canonicalize_url(u) for u in urls}) != len(urls):
            failures.append(f'Topic "{t.title}" has duplicate sourceUrls.')

        text_fields = [t.title, t.angle, t.why_it_matters, t.intent] + t.outline_angles
        if any(has_forbidden_dash(f) for f in text_fields):
            failures.append(f'Em dash or en dash found in topic "{t.title}".')

    return failures


def _raw_topics(text: str) -> List[Any]:
    parsed = parse_json_object(text)
    topics = parsed.get("topics")
    if not isinstance(topics, list):
        raise GenerationParseError("Gemini did not return a valid topics array.")
    return topics


def finalize_topics(topics: List[NewsTopic]) -> List[NewsTopic]:
    """Drop uncited topics and make sure exactly the first topic tracks the seed."""
    grounded = [t for t in topics if t.source_urls][:MAX_TOPICS]
    if not grounded:
        return []

    seed_index = next((i for i, t in enumerate(grounded) if t.from_seed_title), None)
    if seed_index is None:
        log.warning("No topic flagged fromSeedTitle; flagging the first one")
        seed_index = 0
    ordered = [grounded[seed_index]] + grounded[:seed_index] + grounded[seed_index + 1:]
    for i, t in enumerate(ordered):
        t.from_seed_title = i == 0
    return ordered


def generate_topic_variations(
    generator,
    seed_title: str,
    city_focus: str,
    audience_focus: str,
    current_year: int,
    results: List[SearchResult],
) -> TopicsResult:
    """Ask the generator for 4-8 grounded topics, with at most one repair call.

    A failed or unparseable first response still gets the repair; if the
    repair fails too, ``TopicGenerationError`` is raised. A parsed repair
    replaces a parsed original only when it has at least four topics and
    fewer strict failures.
    """
    city = city_label(city_focus)
    allowed_urls = [r.url for r in results]
    context = dict(
        city=city,
        current_year=current_year,
        year_required=str(current_year) in seed_title,
        min_topics=MIN_TOPICS,
        max_topics=MAX_TOPICS,
        max_sources=MAX_SOURCES_PER_TOPIC,
    )

    prompt = render_prompt(
        "topic_variations",
        seed_title=seed_title,
        city_focus=city_focus,
        audience_label=audience_label(audience_focus),
        results=results,
        **context,
    )
    token_usage = 0
    topics: Optional[List[NewsTopic]] = None
    try:
        response = generator.generate(prompt)
    except GenerationError as exc:
        log.warning("Stage B call failed, using the repair attempt: %s", exc)
        failures = [f"The previous request failed ({exc.reason}); no topics were returned."]
        previous_output = "(none)"
    else:
        token_usage += response.token_count or 0
        try:
            raw = _raw_topics(response.text)
            topics = validate_and_clean_topics(raw, allowed_urls)
            failures = validate_topics_strict(topics, allowed_urls, city, seed_title, current_year)
            previous_output = json.dumps(raw, indent=2, ensure_ascii=False)
        except GenerationParseError as exc:
            log.warning("Stage B response unparseable, using the repair attempt: %s", exc)
            failures = ["Response was not a JSON object with a topics array."]
            previous_output = response.text

    repaired = False
    if failures:
        log.info("Stage B: %d strict failure(s), requesting one repair", len(failures))
        repair_prompt = render_prompt(
            "topic_variations_repair",
            failures=failures,
            allowed_urls=allowed_urls,
            previous_output=previous_output,
            **context,
        )
        try:
            retry = generator.generate(repair_prompt)
            token_usage += retry.token_count or 0
            retry_topics = validate_and_clean_topics(_raw_topics(retry.text), allowed_urls)
        except GenerationError as exc:
            if topics is None:
                raise TopicGenerationError(
                    f"Topic generation returned no parseable topics after one repair: {exc.reason}"
                ) from exc
            log.warning("Stage B repair failed, keeping the original topics: %s", exc)
            retry_topics = None

        if retry_topics is not None:
            if topics is None:
                topics, repaired = retry_topics, True
            else:
                retry_failures = validate_topics_strict(retry_topics, allowed_urls, city, seed_title, current_year)
                if len(retry_topics) >= MIN_TOPICS and len(retry_failures) < len(failures):
                    topics, repaired = retry_topics, True
                else:
                    log.info(
                        "Stage B repair not better (%d vs %d failures), keeping the original",
                        len(retry_failures), len(failures),
                    )

    final = finalize_topics(topics)
    if not final:
        raise TopicGenerationError("Topic generation produced no topics grounded in the search results.")
    return TopicsResult(topics=final, token_usage=token_usage, repaired=repaired)
