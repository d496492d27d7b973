from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional


CITY_FOCUS_VALUES = ("Phnom Penh", "Siem Reap", "Cambodia wide")
AUDIENCE_FOCUS_VALUES = ("travellers", "teachers", "both")
AUDIENCE_FIT_VALUES = ("TRAVELLERS", "TEACHERS")

COUNTRY_WIDE = "Cambodia wide"
COUNTRY_NAME = "Cambodia"


def city_label(city_focus: str) -> str:
    """Display token for a city focus ("Cambodia wide" -> "Cambodia")."""
    return COUNTRY_NAME if city_focus == COUNTRY_WIDE else city_focus


@dataclass(frozen=True)
class CoverageEntry:
    slug: str
    title: str
    intents: FrozenSet[str]
    cities: FrozenSet[str]
    audiences: FrozenSet[str]
    source: str  # "static" | "published" | "draft"
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CoverageGap:
    intent: str
    is_freshness_relevant: bool
    coverage_count: int
    staleness: int
    last_covered_at: Optional[datetime] = None


@dataclass
class SearchResult:
    id: str
    query: str
    title: str
    snippet: str
    url: str
    published_at: Optional[str] = None
    source_name: Optional[str] = None
    score: int = 0


@dataclass
class SuggestedKeywords:
    target: str
    secondary: List[str] = field(default_factory=list)


@dataclass
class NewsTopic:
    id: str
    title: str
    angle: str
    why_it_matters: str
    audience_fit: List[str]
    suggested_keywords: SuggestedKeywords
    search_queries: List[str]
    intent: str
    outline_angles: List[str]
    source_urls: List[str]
    source_count: int
    from_seed_title: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "angle": self.angle,
            "whyItMatters": self.why_it_matters,
            "audienceFit": list(self.audience_fit),
            "suggestedKeywords": {
                "target": self.suggested_keywords.target,
                "secondary": list(self.suggested_keywords.secondary),
            },
            "searchQueries": list(self.search_queries),
            "intent": self.intent,
            "outlineAngles": list(self.outline_angles),
            "sourceUrls": list(self.source_urls),
            "sourceCount": self.source_count,
            "fromSeedTitle": self.from_seed_title,
        }


@dataclass
class CandidateTitle:
    title: str
    score: float
    why: List[str]
    keywords: List[str]
    intent: str
    city: str
    audience: str


@dataclass
class TitleResult:
    title: str
    why: List[str]
    keywords: List[str]
    selected_topic: Optional[str] = None


@dataclass
class GapTopicResult:
    selected_topic: str
    primary_keyword_terms: List[str]

    @property
    def primary_keyword(self) -> str:
        return self.primary_keyword_terms[0] if self.primary_keyword_terms else ""


@dataclass
class GenerationResponse:
    text: str
    token_count: Optional[int] = None


@dataclass
class QueryStats:
    query: str
    raw_count: int = 0
    kept_count: int = 0
    top_domains: List[str] = field(default_factory=list)
    failed: bool = False


@dataclass
class RejectionCounts:
    missing_url: int = 0
    missing_title: int = 0
    duplicate_url: int = 0
    blocked_domain: int = 0
    own_domain: int = 0
    short_snippet: int = 0

    def merge(self, other: "RejectionCounts") -> "RejectionCounts":
        return RejectionCounts(
            missing_url=self.missing_url + other.missing_url,
            missing_title=self.missing_title + other.missing_title,
            duplicate_url=self.duplicate_url + other.duplicate_url,
            blocked_domain=self.blocked_domain + other.blocked_domain,
            own_domain=self.own_domain + other.own_domain,
            short_snippet=self.short_snippet + other.short_snippet,
        )


@dataclass
class QueriesResult:
    queries: List[str]
    token_usage: int = 0
    repaired: bool = False


@dataclass
class TopicsResult:
    topics: List[NewsTopic]
    token_usage: int = 0
    repaired: bool = False


@dataclass
class PipelineLog:
    seed_title: str
    city_focus: str
    audience_focus: str
    query_list: List[str] = field(default_factory=list)
    query_stats: List[QueryStats] = field(default_factory=list)
    usable_result_count: int = 0
    rejections: RejectionCounts = field(default_factory=RejectionCounts)
    fallback_used: bool = False
    total_token_usage: int = 0
    topics_count: int = 0
    stages: List[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    topics: List[NewsTopic]
    log: PipelineLog
    results: List[SearchResult] = field(default_factory=list)
