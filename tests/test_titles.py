import random

import pytest

from news_topic_pipeline.errors import GenerationParseError
from news_topic_pipeline.models import CoverageGap
from news_topic_pipeline.rotation import TopicRotator
from news_topic_pipeline.store import HistoryLog
from news_topic_pipeline.titles import (
    GeneratorTitleSource,
    TemplateTitleSource,
    intent_to_template_stem,
    parse_title_payload,
    validate_title,
)

GOOD_TITLE = "Cambodia visa Phnom Penh guide and Phnom Penh e-visa tips"


def _payload(title, why=("gap topic", "fresh rules", "high demand"), keywords=("visa", "phnom penh", "e-visa")):
    return {"title": title, "why": list(why), "keywords": list(keywords)}


# ── Templates ──

def test_template_candidates_for_top_gap():
    gaps = [CoverageGap("temple", False, 5, 1), CoverageGap("visa", True, 0, 10)]
    candidates = TemplateTitleSource().candidates(gaps, "Siem Reap", "both", [])

    assert [c.audience for c in candidates] == ["travellers", "travellers", "teachers", "teachers"]
    first = candidates[0]
    assert first.title == "Siem Reap Visa and Entry Requirements: What Changed and What to Expect"
    assert first.score == 85.0
    assert first.why == [
        "gap: not covered", "freshness-relevant topic", "content is stale",
        "intent: visa", "audience: travellers", "city: Siem Reap",
    ]
    assert first.keywords == ["siem reap", "visa", "travellers"]
    assert all("{city}" not in c.title for c in candidates)


def test_template_related_intent_uses_stem_and_country_label():
    gaps = [CoverageGap("e-visa", True, 1, 3)]
    candidates = TemplateTitleSource().candidates(gaps, "Cambodia wide", "travellers", [])

    assert len(candidates) == 2
    assert candidates[0].title.startswith("Cambodia Visa and Entry")
    assert candidates[0].why[0] == "weak coverage: 1 article(s)"
    assert "content is stale" not in candidates[0].why
    assert candidates[0].keywords == ["cambodia", "e-visa", "travellers", "visa"]


def test_template_without_matching_key_yields_nothing():
    gaps = [CoverageGap("nightlife", False, 0, 10)]
    assert TemplateTitleSource().candidates(gaps, "Phnom Penh", "teachers", []) == []


def test_intent_to_template_stem():
    assert intent_to_template_stem("evisa") == "visa"
    assert intent_to_template_stem("work permit") == "teaching"
    assert intent_to_template_stem("visa") == "visa"
    assert intent_to_template_stem("gym") == "gym"


# ── Title validation and parsing ──

def test_validate_title():
    assert validate_title(GOOD_TITLE, "Phnom Penh", "Phnom Penh e-visa", 2025) == []

    reasons = validate_title("Visa rules — updated for 2024", "Phnom Penh", "e-visa", 2025)
    assert 'Missing city "Phnom Penh"' in reasons
    assert 'Missing primary keyword "e-visa"' in reasons
    assert "Contains em dash or en dash" in reasons
    assert "Contains wrong year 2024 (should be 2025)" in reasons

    long_title = "Phnom Penh " + "x" * 80
    assert any(r.startswith("Too long") for r in validate_title(long_title, "Phnom Penh", "", 2025))


def test_parse_title_payload():
    payload = parse_title_payload('```json\n{"title": " A title ", "why": ["a"], "keywords": ["b"]}\n```')
    assert payload.title == "A title"
    assert payload.why == ["a"]

    assert parse_title_payload("not json") is None
    assert parse_title_payload('{"title": "x", "why": [], "keywords": ["b"]}') is None
    assert parse_title_payload('{"title": 3, "why": ["a"], "keywords": ["b"]}') is None


# ── Generator source ──

def _source(fake_generator, responses, history=None):
    rotator = TopicRotator(history, rng=random.Random(0), topics=("visa",))
    gen = fake_generator(responses)
    return GeneratorTitleSource(gen, rotator), gen


def test_generator_source_returns_single_candidate(fake_generator):
    gaps = [CoverageGap("visa", True, 0, 10)]
    source, gen = _source(fake_generator, [_payload(GOOD_TITLE)])
    candidates = source.candidates(gaps, "Phnom Penh", "travellers", ["Old Phnom Penh visa post"])

    assert len(candidates) == 1
    c = candidates[0]
    assert c.title == GOOD_TITLE
    assert c.intent == "visa"
    assert c.score == 85.0
    assert c.why[-2] == "gap topic: visa"
    assert c.why[-1].startswith("primary keyword: ")
    assert "Old Phnom Penh visa post" in gen.prompts[0]
    assert 'SELECTED_GAP_TOPIC: visa' in gen.prompts[0]


def test_generator_source_repairs_unparseable_output(fake_generator):
    source, gen = _source(fake_generator, ["Here is a title: something", _payload(GOOD_TITLE)])
    candidates = source.candidates([], "Phnom Penh", "both", [])

    assert candidates[0].title == GOOD_TITLE
    assert "Here is a title: something" in gen.prompts[1]


def test_generator_source_raises_after_failed_repair(fake_generator):
    source, _ = _source(fake_generator, ["nope", "still nope"])
    with pytest.raises(GenerationParseError):
        source.candidates([], "Phnom Penh", "both", [])


def test_generator_source_fixes_invalid_title(fake_generator):
    source, gen = _source(fake_generator, [_payload("Visa rules explained"), _payload(GOOD_TITLE)])
    candidates = source.candidates([], "Phnom Penh", "both", [])

    assert len(gen.prompts) == 2
    assert 'Current title: "Visa rules explained"' in gen.prompts[1]
    assert 'Missing city "Phnom Penh"' in gen.prompts[1]
    assert candidates[0].title == GOOD_TITLE


def test_generator_source_keeps_original_when_fix_is_invalid(fake_generator):
    source, _ = _source(fake_generator, [_payload("Visa rules explained"), _payload("Still no city")])
    assert source.candidates([], "Phnom Penh", "both", [])[0].title == "Visa rules explained"


def test_record_selection_writes_history(tmp_path, fake_generator):
    history = HistoryLog(tmp_path / "history.json")
    source, _ = _source(fake_generator, [_payload(GOOD_TITLE)], history=history)
    chosen = source.candidates([], "Phnom Penh", "travellers", [])[0]
    source.record_selection("Phnom Penh", "travellers", chosen)

    selection = history.recent_selections("Phnom Penh", "travellers", 3).value[0]
    assert selection.selected_topic == "visa"
    assert selection.generated_title == GOOD_TITLE
    assert history.recent_titles().value == [GOOD_TITLE]
