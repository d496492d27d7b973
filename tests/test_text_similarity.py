"""Tests for text cleaning and trigram title similarity."""

from news_topic_pipeline.models import CandidateTitle
from news_topic_pipeline.similarity import closest_titles, filter_unique, trigram_similarity
from news_topic_pipeline.text import clean, has_forbidden_dash, strip_markup


def _candidate(title):
    return CandidateTitle(title=title, score=1.0, why=[], keywords=[], intent="visa",
                          city="Phnom Penh", audience="travellers")


# ── TextCleaner ──

def test_clean_replaces_em_and_en_dashes():
    assert clean("Phnom Penh — visa rules") == "Phnom Penh, visa rules"
    assert clean("2024–2025 prices") == "2024, 2025 prices"


def test_clean_is_idempotent():
    samples = [
        "",
        "plain title",
        "a — b – c",
        "double——dash",
        "  spaced   out ,  commas ,, here  ",
        "tab\there nbsp",
        "trailing dash —",
    ]
    for s in samples:
        once = clean(s)
        assert clean(once) == once
        assert not has_forbidden_dash(once)


def test_has_forbidden_dash():
    assert has_forbidden_dash("a — b")
    assert has_forbidden_dash("a – b")
    assert not has_forbidden_dash("a - b")


def test_strip_markup_removes_tags_and_entities():
    assert strip_markup("<b>Phnom Penh</b> visa &amp; entry") == "Phnom Penh visa & entry"
    assert strip_markup("  no   markup ") == "no markup"
    assert strip_markup("") == ""


# ── SimilarityScorer ──

def test_trigram_similarity_identity_and_empty():
    assert trigram_similarity("Phnom Penh visa", "Phnom Penh visa") == 1.0
    assert trigram_similarity("", "x") == 0
    assert trigram_similarity("ab", "abc") == 0


def test_trigram_similarity_ignores_case_and_punctuation():
    assert trigram_similarity("Siem Reap: Angkor!", "siem reap angkor") == 1.0


def test_trigram_similarity_unrelated_titles_are_low():
    assert trigram_similarity("Phnom Penh SIM card guide", "Teaching salaries in Siem Reap") < 0.3


# ── UniquenessFilter ──

def test_filter_unique_rejects_near_duplicate():
    kept = filter_unique(
        [_candidate("Phnom Penh Visa Guide 2025")],
        ["Phnom Penh Visa Guide for 2025"],
        threshold=0.62,
    )
    assert kept == []


def test_filter_unique_keeps_distinct_candidates_in_order():
    candidates = [
        _candidate("Siem Reap Street Food Guide"),
        _candidate("Phnom Penh Visa Guide 2025"),
        _candidate("Cambodia SIM Card Basics"),
    ]
    kept = filter_unique(candidates, ["Phnom Penh Visa Guide for 2025"])
    assert [c.title for c in kept] == ["Siem Reap Street Food Guide", "Cambodia SIM Card Basics"]


def test_filter_unique_with_no_existing_titles_keeps_all():
    candidates = [_candidate("A title"), _candidate("Another title")]
    assert filter_unique(candidates, []) == candidates


def test_closest_titles_ranks_by_similarity():
    existing = ["Siem Reap food markets", "Phnom Penh visa guide", "Phnom Penh visa guide 2024"]
    ranked = closest_titles("Phnom Penh visa guide 2025", existing, limit=2)
    assert ranked == ["Phnom Penh visa guide 2024", "Phnom Penh visa guide"]


def test_closest_titles_with_empty_candidate_keeps_input_order():
    existing = ["B", "A", "B", "C"]
    assert closest_titles("", existing, limit=10) == ["B", "A", "C"]
