"""Coverage mapping and gap analysis over the existing article corpus.

Builds a flat coverage map from the static post listing and the generated
article store, tags every entry with the intents, cities and audiences found
by keyword matching, then scores how under-covered or stale each intent is
for a given city/audience focus.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from .models import COUNTRY_WIDE, CoverageEntry, CoverageGap
from .store import ContentStore, ReadResult

log = logging.getLogger(__name__)


# ── Vocabularies ──

INTENT_VOCABULARY: Tuple[str, ...] = (
    "visa", "e-visa", "evisa", "border", "entry", "passport", "immigration",
    "transport", "airport", "bus", "tuk-tuk", "taxi", "grab", "flight",
    "safety", "scams", "crime", "police",
    "healthcare", "hospital", "pharmacy", "insurance", "dentist",
    "SIM", "sim card", "mobile", "internet", "wifi",
    "banking", "ATM", "money", "exchange", "currency",
    "renting", "apartment", "housing", "deposit", "lease", "landlord",
    "cost of living", "budget", "prices", "inflation", "fees",
    "teaching", "TEFL", "school", "salary", "hiring", "work permit",
    "neighbourhood", "neighborhood", "area", "district",
    "food", "restaurant", "street food", "market",
    "nightlife", "bar", "entertainment",
    "coworking", "digital nomad", "remote work", "freelance",
    "festival", "event", "holiday", "khmer new year",
    "weather", "climate", "rainy season", "dry season",
    "language", "khmer", "learning",
    "shipping", "mail", "package",
    "pet", "animal", "veterinary",
    "gym", "fitness", "sport",
    "temple", "angkor", "sightseeing", "tour",
)

# Time-sensitive intents: news about these goes stale quickly.
FRESHNESS_INTENTS: FrozenSet[str] = frozenset({
    "visa", "e-visa", "evisa", "border", "entry", "immigration",
    "transport", "airport", "flight",
    "safety", "scams",
    "healthcare",
    "cost of living", "prices", "inflation", "fees",
    "teaching", "salary", "hiring", "work permit",
    "festival", "event",
})

CITY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Phnom Penh": ("phnom penh", "pp"),
    "Siem Reap": ("siem reap", "angkor"),
    "Sihanoukville": ("sihanoukville", "kampong som"),
    "Kampot": ("kampot",),
    "Battambang": ("battambang",),
}

AUDIENCE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "travellers": ("travel", "tourist", "visit", "backpack", "sightseeing", "tour", "holiday", "vacation", "trip"),
    "teachers": ("teach", "tefl", "school", "salary", "hiring", "classroom", "work permit", "esl"),
}

STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "shall", "can", "need", "dare",
    "it", "its", "this", "that", "these", "those", "my", "your", "his",
    "her", "our", "their", "what", "which", "who", "whom", "how", "when",
    "where", "why", "not", "no", "nor", "so", "if", "then", "than",
    "too", "very", "just", "about", "up", "out", "all", "also",
})

_SITE_SUFFIX = " | GlobeScraper"

# (max age in days, staleness) buckets; anything older scores 9.
_STALENESS_BUCKETS = ((7, 1), (30, 3), (90, 5), (180, 7))
_STALENESS_OLD = 9
_STALENESS_NEVER = 10


# ── Detection ──


def detect_intents(text: str) -> FrozenSet[str]:
    lower = text.lower()
    return frozenset(i for i in INTENT_VOCABULARY if i.lower() in lower)


def detect_cities(text: str) -> FrozenSet[str]:
    lower = text.lower()
    found = set()
    for city, keywords in CITY_KEYWORDS.items():
        if city.lower() in lower or any(kw in lower for kw in keywords):
            found.add(city)
    return frozenset(found)


def detect_audiences(text: str) -> FrozenSet[str]:
    lower = text.lower()
    return frozenset(
        aud for aud, keywords in AUDIENCE_KEYWORDS.items()
        if any(kw in lower for kw in keywords)
    )


def _tags(values) -> FrozenSet[str]:
    return frozenset(v.strip() for v in values if v and v.strip())


# ── Coverage map ──


class CoverageMapBuilder:
    """Flattens the content store into tagged ``CoverageEntry`` snapshots."""

    def __init__(self, store: ContentStore):
        self.store = store

    @staticmethod
    def _soften(result: ReadResult, source: str) -> list:
        if not result.ok:
            log.warning("Coverage source '%s' unavailable, treating as empty: %s", source, result.error)
        return result.unwrap_or([])

    def build(self) -> List[CoverageEntry]:
        entries: List[CoverageEntry] = []

        for post in self._soften(self.store.list_static_posts(), "static_posts"):
            text = f"{post.title} {post.description} {post.slug}"
            entries.append(
                CoverageEntry(
                    slug=post.slug,
                    title=post.title.replace(_SITE_SUFFIX, ""),
                    intents=detect_intents(text),
                    cities=detect_cities(text),
                    audiences=detect_audiences(text),
                    source="static",
                )
            )

        for art in self._soften(self.store.list_articles(), "articles"):
            text = f"{art.title} {art.topic} {art.meta_description} {art.target_keyword} {art.slug}"
            cities = _tags([art.city]) if art.city else detect_cities(text)
            audiences = (
                _tags(a.lower() for a in art.audience.split(","))
                if art.audience else detect_audiences(text)
            )
            entries.append(
                CoverageEntry(
                    slug=art.slug,
                    title=art.title,
                    intents=detect_intents(text),
                    cities=cities,
                    audiences=audiences,
                    source="published" if art.status == "PUBLISHED" else "draft",
                    created_at=art.created_at,
                )
            )

        log.info("Coverage map built with %d entries", len(entries))
        return entries


# ── Gap analysis ──


def staleness_for(last_covered_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """0-10 staleness score from the age of the newest coverage."""
    if last_covered_at is None:
        return _STALENESS_NEVER
    now = now or datetime.now(timezone.utc)
    if last_covered_at.tzinfo is None:
        last_covered_at = last_covered_at.replace(tzinfo=timezone.utc)
    days_since = (now - last_covered_at).total_seconds() / 86400
    for max_days, score in _STALENESS_BUCKETS:
        if days_since < max_days:
            return score
    return _STALENESS_OLD


def _city_relevant(entry: CoverageEntry, city_focus: str) -> bool:
    if city_focus == COUNTRY_WIDE:
        return True
    return city_focus in entry.cities or not entry.cities


def _audience_relevant(entry: CoverageEntry, audience_focus: str) -> bool:
    if audience_focus == "both":
        return True
    return (
        audience_focus in entry.audiences
        or "both" in entry.audiences
        or not entry.audiences
    )


def identify_gaps(
    coverage: List[CoverageEntry],
    city_focus: str,
    audience_focus: str,
    now: Optional[datetime] = None,
) -> List[CoverageGap]:
    """One ``CoverageGap`` per intent in ``INTENT_VOCABULARY``, in vocabulary order."""
    now = now or datetime.now(timezone.utc)
    gaps: List[CoverageGap] = []

    for intent in INTENT_VOCABULARY:
        relevant = [
            e for e in coverage
            if intent in e.intents
            and _city_relevant(e, city_focus)
            and _audience_relevant(e, audience_focus)
        ]
        stamps = [e.created_at for e in relevant if e.created_at is not None]
        last_covered = max(stamps) if stamps else None

        gaps.append(
            CoverageGap(
                intent=intent,
                is_freshness_relevant=intent in FRESHNESS_INTENTS,
                coverage_count=len(relevant),
                staleness=staleness_for(last_covered, now) if relevant else _STALENESS_NEVER,
                last_covered_at=last_covered,
            )
        )

    return gaps


def gap_score(gap: CoverageGap) -> int:
    """Priority to cover an intent; higher means a bigger gap."""
    if gap.coverage_count == 0:
        score = 40
    elif gap.coverage_count == 1:
        score = 20
    else:
        score = 5
    score += gap.staleness * 3
    if gap.is_freshness_relevant:
        score += 15
    return score


def rank_gaps(gaps: List[CoverageGap]) -> List[Tuple[CoverageGap, int]]:
    """Gaps paired with their score, best first (stable for ties)."""
    scored = [(g, gap_score(g)) for g in gaps]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored


# ── Seed-title keywords ──


@dataclass
class TitleKeywords:
    keywords: List[str]
    detected_city: Optional[str]
    detected_intents: List[str]
    is_generic: bool


def extract_keywords(title: str) -> TitleKeywords:
    lower = title.lower()

    detected_city = next(
        (
            city for city, kws in CITY_KEYWORDS.items()
            if city.lower() in lower or any(kw in lower for kw in kws)
        ),
        None,
    )
    detected_intents = [i for i in INTENT_VOCABULARY if i.lower() in lower]

    words = re.sub(r"[^a-z0-9\s-]", "", lower).split()
    keywords = list(dict.fromkeys(w for w in words if len(w) > 2 and w not in STOP_WORDS))

    is_generic = detected_city is None and not detected_intents and len(keywords) < 3
    return TitleKeywords(keywords, detected_city, detected_intents, is_generic)
