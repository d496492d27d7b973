"""Tests for Stage B topic generation and its grounding guarantees."""

import pytest

from news_topic_pipeline.errors import GenerationError, TopicGenerationError
from news_topic_pipeline.models import SearchResult
from news_topic_pipeline.topics import (
    finalize_topics,
    generate_topic_variations,
    validate_and_clean_topics,
    validate_topics_strict,
)

SEED = "Phnom Penh Visa Rules 2025"

RESULTS = [
    SearchResult(id=f"r{i}", query="q", title=f"Visa story {i}",
                 snippet="Cambodia visa rules are changing for visitors this year.",
                 url=f"https://news.example.org/visa-{i}", source_name="Example News")
    for i in range(1, 7)
]
URLS = [r.url for r in RESULTS]


def _topic(i, title=None, urls=None, seed=False, **extra):
    raw = {
        "id": f"t{i}",
        "title": title or f"Phnom Penh visa angle {i}",
        "angle": f"Angle {i}",
        "whyItMatters": "Visitors need current rules.",
        "audienceFit": ["TRAVELLERS"],
        "suggestedKeywords": {"target": "phnom penh visa", "secondary": ["e-visa"]},
        "searchQueries": ["phnom penh visa"],
        "intent": "informational",
        "outlineAngles": ["Costs", "Process", "Timing"],
        "sourceUrls": urls if urls is not None else [URLS[i % len(URLS)]],
        "fromSeedTitle": seed,
    }
    raw.update(extra)
    return raw


def _batch(n=4, **first):
    return {"topics": [_topic(0, seed=True, **first)] + [_topic(i) for i in range(1, n)]}


def _assert_grounded(topics):
    allowed = set(URLS)
    for t in topics:
        assert 1 <= len(t.source_urls) <= 3
        assert set(t.source_urls) <= allowed
        assert len(set(t.source_urls)) == len(t.source_urls)
        assert t.source_count == len(t.source_urls)


# ── Cleaning ──

def test_clean_drops_ungrounded_and_duplicate_urls():
    raw = [_topic(1, urls=[
        "https://invented.example.com/fake",
        URLS[0],
        URLS[0] + "/",
        "https://www.news.example.org/visa-2?utm_source=x",
        URLS[3],
        URLS[4],
    ])]
    topic = validate_and_clean_topics(raw, URLS)[0]
    assert topic.source_urls == [URLS[0], URLS[1], URLS[3]]
    assert topic.source_count == 3


def test_clean_audience_fit_and_text():
    raw = [
        _topic(1, audienceFit=["EXPATS", "teachers"], title="Phnom Penh — visa costs"),
        _topic(2, audienceFit=["NOMADS"]),
    ]
    first, second = validate_and_clean_topics(raw, URLS)
    assert first.audience_fit == ["TEACHERS"]
    assert first.title == "Phnom Penh, visa costs"
    assert second.audience_fit == ["TRAVELLERS", "TEACHERS"]


def test_clean_skips_incomplete_entries():
    raw = [_topic(1, whyItMatters=""), "not a dict", _topic(2)]
    assert [t.id for t in validate_and_clean_topics(raw, URLS)] == ["t2"]


# ── Strict validation ──

def test_strict_validation_passes_good_batch():
    topics = validate_and_clean_topics(_batch()["topics"], URLS)
    assert validate_topics_strict(topics, URLS, "Phnom Penh", SEED, 2025) == []


def test_strict_validation_reports_failures():
    raw = [
        _topic(0, title="Visa rules in 2024"),
        _topic(1, urls=[]),
        _topic(2),
    ]
    failures = validate_topics_strict(validate_and_clean_topics(raw, URLS), URLS, "Phnom Penh", SEED, 2025)
    text = "\n".join(failures)
    assert "Expected 4-8 topics, got 3." in text
    assert "First topic must have fromSeedTitle=true." in text
    assert 'does not include "Phnom Penh"' in text
    assert "uses year 2024 instead of 2025" in text
    assert "has 0 sourceUrls" in text


# ── Generation ──

def test_valid_response_is_used_without_repair(fake_generator):
    gen = fake_generator([_batch(5)])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert len(gen.prompts) == 1
    assert len(result.topics) == 5
    assert result.topics[0].from_seed_title
    assert not result.repaired
    _assert_grounded(result.topics)
    for r in RESULTS:
        assert f"[{r.id}]" in gen.prompts[0]
        assert f"(URL: {r.url})" in gen.prompts[0]


def test_better_repair_replaces_original(fake_generator):
    broken = _batch(4, title="Visa rules overview")
    gen = fake_generator([broken, _batch(4)])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert len(gen.prompts) == 2
    assert 'does not include "Phnom Penh"' in gen.prompts[1]
    assert URLS[0] in gen.prompts[1]
    assert result.repaired
    assert all("Phnom Penh" in t.title for t in result.topics)
    assert result.token_usage == 20


def test_short_repair_is_rejected(fake_generator):
    broken = _batch(4, title="Visa rules overview")
    gen = fake_generator([broken, _batch(3)])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert not result.repaired
    assert result.topics[0].title == "Visa rules overview"
    assert len(result.topics) == 4


def test_first_topic_is_always_seed_flagged(fake_generator):
    topics = [_topic(1), _topic(2), _topic(3, seed=True), _topic(4)]
    gen = fake_generator([{"topics": topics}, {"topics": topics}])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert result.topics[0].id == "t3"
    assert result.topics[0].from_seed_title
    assert not any(t.from_seed_title for t in result.topics[1:])


def test_uncited_topics_are_dropped(fake_generator):
    topics = _batch(5)["topics"]
    topics[2]["sourceUrls"] = ["https://invented.example.com/x"]
    gen = fake_generator([{"topics": topics}, {"topics": topics}])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert [t.id for t in result.topics] == ["t0", "t1", "t3", "t4"]
    _assert_grounded(result.topics)


def test_unparseable_first_response_uses_repair(fake_generator):
    gen = fake_generator(["I could not do that", _batch(4)])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert len(gen.prompts) == 2
    assert "I could not do that" in gen.prompts[1]
    assert result.repaired
    assert len(result.topics) == 4


def test_double_parse_failure_raises(fake_generator):
    gen = fake_generator(["not json", '{"topics": "nope"}'])
    with pytest.raises(TopicGenerationError):
        generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)
    assert len(gen.prompts) == 2


def test_nothing_grounded_raises(fake_generator):
    ungrounded = {"topics": [_topic(i, urls=["https://made-up.example.com"], seed=i == 0) for i in range(4)]}
    gen = fake_generator([ungrounded, ungrounded])
    with pytest.raises(TopicGenerationError):
        generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)


def test_finalize_flags_first_when_none_flagged():
    topics = validate_and_clean_topics([_topic(1), _topic(2)], URLS)
    final = finalize_topics(topics)
    assert final[0].id == "t1"
    assert final[0].from_seed_title


def test_failed_first_call_uses_repair(fake_generator):
    gen = fake_generator([GenerationError("Gemini timed out after 60s"), _batch(4)])
    result = generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)

    assert len(gen.prompts) == 2
    assert "timed out" in gen.prompts[1]
    assert result.repaired
    assert len(result.topics) == 4
    assert result.token_usage == 10


def test_failed_first_call_and_failed_repair_raise(fake_generator):
    gen = fake_generator([GenerationError("Gemini timed out after 60s"), GenerationError("Gemini unavailable")])
    with pytest.raises(TopicGenerationError):
        generate_topic_variations(gen, SEED, "Phnom Penh", "both", 2025, RESULTS)
