"""Web search: Tavily client, result scoring and the per-run SearchExecutor."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

import requests

from .config import Settings, get_settings
from .models import COUNTRY_NAME, QueryStats, RejectionCounts, SearchResult, city_label
from .source_policy import (
    HIGH_TRUST_DOMAINS,
    canonicalize_url,
    extract_domain,
    find_trusted_source,
    is_blocked_domain,
    matches_domain,
)
from .text import strip_markup

log = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"

MAX_RESULTS = 15
MIN_SNIPPET_CHARS = 20
RESULTS_PER_QUERY = 10

_SHOUTING_RE = re.compile(r"^[A-Z\s!?]{10,}$")


@dataclass
class WebSearchHit:
    title: str
    url: str
    snippet: str = ""
    published_at: Optional[str] = None
    display_domain: Optional[str] = None


class TavilySearchClient:
    """``search(query, count)`` against Tavily.

    A missing API key yields empty results (with a warning) rather than an
    error. HTTP failures and timeouts raise ``requests.RequestException``.
    """

    def __init__(self, settings: Optional[Settings] = None, search_depth: str = "basic"):
        settings = settings or get_settings()
        self.api_key = settings.tavily_api_key
        self.timeout = settings.search_timeout
        self.search_depth = search_depth

    def search(self, query: str, count: int = RESULTS_PER_QUERY) -> List[WebSearchHit]:
        if not self.api_key:
            log.warning("Tavily not configured (TAVILY_API_KEY missing); returning no results")
            return []

        payload = {
            "query": query,
            "api_key": self.api_key,
            "max_results": count,
            "search_depth": self.search_depth,
        }
        resp = requests.post(TAVILY_URL, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()

        hits: List[WebSearchHit] = []
        for res in data.get("results", []):
            url = res.get("url") or ""
            hits.append(
                WebSearchHit(
                    title=res.get("title") or "",
                    url=url,
                    snippet=res.get("content") or "",
                    published_at=res.get("published_date"),
                    display_domain=extract_domain(url) or None,
                )
            )
        return hits


def score_search_result(result: SearchResult, city_focus: str) -> int:
    """Quality score used to order the pool handed to topic generation."""
    score = 0
    city_lower = city_label(city_focus).lower()
    country_lower = COUNTRY_NAME.lower()
    snippet = (result.snippet or "").strip()

    if len(snippet) >= 40:
        score += 3
    elif snippet:
        score += 1

    if matches_domain(extract_domain(result.url), HIGH_TRUST_DOMAINS):
        score += 2

    title_lower = result.title.lower()
    if city_lower in title_lower or country_lower in title_lower:
        score += 1

    snippet_lower = snippet.lower()
    if city_lower in snippet_lower or country_lower in snippet_lower:
        score += 1

    # Very short or shouting titles are usually forum or listing spam
    if len(result.title) < 10 or _SHOUTING_RE.match(result.title):
        score -= 1

    return score


def order_by_score(results: List[SearchResult]) -> List[SearchResult]:
    """Stable sort, best first; equal scores keep retrieval order."""
    return sorted(results, key=lambda r: r.score, reverse=True)


@dataclass
class SearchBatch:
    results: List[SearchResult] = field(default_factory=list)
    query_stats: List[QueryStats] = field(default_factory=list)
    rejections: RejectionCounts = field(default_factory=RejectionCounts)


class SearchExecutor:
    """Runs queries one at a time and accumulates one run's result pool.

    The seen-URL set, the id sequence and the result cap live on the
    instance, so a widening pass through the same executor continues ids,
    never re-admits a URL and shares the cap.
    """

    def __init__(
        self,
        client,
        city_focus: str,
        own_domain: str = "globescraper.com",
        cap: int = MAX_RESULTS,
        min_snippet: int = MIN_SNIPPET_CHARS,
        per_query: int = RESULTS_PER_QUERY,
    ):
        self.client = client
        self.city_focus = city_focus
        self.own_domain = own_domain
        self.cap = cap
        self.min_snippet = min_snippet
        self.per_query = per_query
        self.results: List[SearchResult] = []
        self._seen: Set[str] = set()
        self._next_id = 0

    @property
    def is_full(self) -> bool:
        return len(self.results) >= self.cap

    def execute(self, queries: List[str]) -> SearchBatch:
        """Search each query in order; returns only what this call added."""
        batch = SearchBatch()

        for query in queries:
            if self.is_full:
                log.info("Result cap of %d reached; skipping remaining queries", self.cap)
                break

            try:
                hits = self.client.search(query, self.per_query)
            except (requests.RequestException, ValueError) as exc:
                log.warning("Search for %r failed, skipping: %s", query, exc)
                batch.query_stats.append(QueryStats(query=query, failed=True))
                continue

            stats = QueryStats(query=query, raw_count=len(hits))
            domains: List[str] = []
            for hit in hits:
                if self.is_full:
                    break
                result = self._admit(query, hit, batch.rejections)
                if result is None:
                    continue
                batch.results.append(result)
                stats.kept_count += 1
                domains.append(extract_domain(result.url))

            stats.top_domains = list(dict.fromkeys(domains))[:5]
            batch.query_stats.append(stats)
            log.info("Query %r: %d raw, %d kept", query, stats.raw_count, stats.kept_count)

        return batch

    def _admit(self, query: str, hit: WebSearchHit, rejections: RejectionCounts) -> Optional[SearchResult]:
        url = (hit.url or "").strip()
        if not url:
            rejections.missing_url += 1
            return None
        title = strip_markup(hit.title)
        if not title:
            rejections.missing_title += 1
            return None

        canonical = canonicalize_url(url)
        if canonical in self._seen:
            rejections.duplicate_url += 1
            return None
        if is_blocked_domain(url):
            rejections.blocked_domain += 1
            return None
        if self.own_domain and matches_domain(extract_domain(url), (self.own_domain,)):
            rejections.own_domain += 1
            return None
        snippet = strip_markup(hit.snippet)
        if len(snippet) < self.min_snippet:
            rejections.short_snippet += 1
            return None

        self._seen.add(canonical)
        self._next_id += 1
        trusted = find_trusted_source(url)
        result = SearchResult(
            id=f"r{self._next_id}",
            query=query,
            title=title,
            snippet=snippet,
            url=canonical,
            published_at=hit.published_at or None,
            source_name=trusted.publisher if trusted else (hit.display_domain or None),
        )
        result.score = score_search_result(result, self.city_focus)
        self.results.append(result)
        return result
