"""PipelineOrchestrator: the best-title flow and the grounded search-topics flow."""

import logging
from typing import List, Optional, Tuple

from .config import Settings, get_settings
from .coverage import CoverageMapBuilder, identify_gaps
from .errors import ConfigurationError, InsufficientResultsError, PipelineError
from .models import CandidateTitle, PipelineLog, PipelineResult, TitleResult, city_label
from .queries import build_widening_queries, generate_search_queries
from .rotation import TopicRotator
from .search import SearchBatch, SearchExecutor, TavilySearchClient, order_by_score
from .similarity import filter_unique
from .store import ContentStore, HistoryLog
from .titles import CandidateTitleSource, GeneratorTitleSource, TemplateTitleSource
from .topics import generate_topic_variations

log = logging.getLogger(__name__)

MIN_USABLE_RESULTS = 5
OVERLAP_NOTE = "note: may overlap with existing content"
NO_GAPS_NOTE = "fallback: no specific gaps identified"


def default_title_source(settings: Settings, generator=None, history: Optional[HistoryLog] = None) -> CandidateTitleSource:
    if settings.title_source == "generator":
        if generator is not None:
            return GeneratorTitleSource(generator, TopicRotator(history))
        log.warning("TITLE_SOURCE=generator but no generator is configured; using templates")
    return TemplateTitleSource()


class PipelineOrchestrator:
    def __init__(
        self,
        store: ContentStore,
        history: Optional[HistoryLog] = None,
        generator=None,
        search_client=None,
        title_source: Optional[CandidateTitleSource] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.history = history
        self.generator = generator
        self.search_client = search_client or TavilySearchClient(self.settings)
        self.title_source = title_source or default_title_source(self.settings, generator, history)

    # ── Best title ──

    def _existing_titles(self, coverage) -> List[str]:
        titles = [e.title for e in coverage]
        if self.history is not None:
            recent = self.history.recent_titles()
            if not recent.ok:
                log.warning("Title history unavailable, checking coverage titles only: %s", recent.error)
            titles.extend(recent.unwrap_or([]))
        return titles

    def _candidates(self, gaps, city_focus, audience_focus, existing) -> Tuple[CandidateTitleSource, List[CandidateTitle]]:
        """Candidates plus the source that produced them."""
        try:
            return self.title_source, self.title_source.candidates(gaps, city_focus, audience_focus, existing)
        except PipelineError as exc:
            if isinstance(self.title_source, TemplateTitleSource):
                raise
            log.warning("Title source failed (%s); falling back to templates", exc.reason)
            fallback = TemplateTitleSource()
            return fallback, fallback.candidates(gaps, city_focus, audience_focus, existing)

    def generate_best_title(self, city_focus: str, audience_focus: str) -> TitleResult:
        """Best non-duplicate title for the focus; degrades instead of raising."""
        coverage = CoverageMapBuilder(self.store).build()
        gaps = identify_gaps(coverage, city_focus, audience_focus)
        existing = self._existing_titles(coverage)

        source, candidates = self._candidates(gaps, city_focus, audience_focus, existing)
        unique = filter_unique(candidates, existing)

        if unique:
            chosen = unique[0]
            why = list(chosen.why)
        elif candidates:
            chosen = candidates[0]
            why = list(chosen.why) + [OVERLAP_NOTE]
            log.info("All %d candidates overlap existing titles; using the best anyway", len(candidates))
        else:
            city = city_label(city_focus)
            log.info("No candidates for %s/%s; using the generic title", city_focus, audience_focus)
            return TitleResult(
                title=f"{city} Travel and Living Update: What Changed Recently",
                why=[NO_GAPS_NOTE],
                keywords=[city.lower(), "travel", "update"],
            )

        source.record_selection(city_focus, audience_focus, chosen)
        log.info("Best title for %s/%s: %s", city_focus, audience_focus, chosen.title)
        return TitleResult(title=chosen.title, why=why, keywords=list(chosen.keywords), selected_topic=chosen.intent)

    # ── Grounded search topics ──

    @staticmethod
    def _absorb(run_log: PipelineLog, batch: SearchBatch) -> None:
        run_log.query_stats.extend(batch.query_stats)
        run_log.rejections = run_log.rejections.merge(batch.rejections)

    def run_search_topics_pipeline(
        self,
        seed_title: str,
        city_focus: str,
        audience_focus: str,
        current_year: Optional[int] = None,
    ) -> PipelineResult:
        """Stage A queries, search (widened once if thin), then Stage B topics.

        Raises ``NoQueriesError``, ``InsufficientResultsError`` or
        ``TopicGenerationError`` when a stage cannot produce usable output.
        """
        if self.generator is None:
            raise ConfigurationError("Search topics pipeline needs a text generator (set GEMINI_API_KEY).")
        year = current_year or self.settings.current_year
        run_log = PipelineLog(seed_title=seed_title, city_focus=city_focus, audience_focus=audience_focus)

        log.info("Stage A: generating search queries for %r", seed_title)
        queries = generate_search_queries(self.generator, seed_title, city_focus, audience_focus, year)
        run_log.query_list = list(queries.queries)
        run_log.total_token_usage += queries.token_usage
        run_log.stages.append(
            f"queries: {len(queries.queries)} generated" + (" after repair" if queries.repaired else "")
        )
        log.info("Generated %d queries: %s", len(queries.queries), queries.queries)

        executor = SearchExecutor(self.search_client, city_focus, own_domain=self.settings.own_domain)
        self._absorb(run_log, executor.execute(queries.queries))
        run_log.stages.append(f"search: {len(executor.results)} usable results")
        log.info("Primary pass: %d results. Rejections: %s", len(executor.results), run_log.rejections)

        if len(executor.results) < MIN_USABLE_RESULTS:
            widening = build_widening_queries(seed_title, city_focus, audience_focus, queries.queries)
            log.info(
                "Only %d results (need %d); widening with %s",
                len(executor.results), MIN_USABLE_RESULTS, widening,
            )
            run_log.fallback_used = True
            run_log.query_list.extend(widening)
            self._absorb(run_log, executor.execute(widening))
            run_log.stages.append(f"widening: {len(widening)} queries, {len(executor.results)} usable results")

        run_log.usable_result_count = len(executor.results)
        if run_log.usable_result_count < MIN_USABLE_RESULTS:
            log.warning("Stopping: %d usable results after widening", run_log.usable_result_count)
            raise InsufficientResultsError(
                f"Only {run_log.usable_result_count} usable sources found (need {MIN_USABLE_RESULTS}). "
                "Try again, or pick a less niche title.",
                found=run_log.usable_result_count,
                required=MIN_USABLE_RESULTS,
            )

        results = order_by_score(executor.results)
        log.info("Stage B: generating topic variations from %d results", len(results))
        topics = generate_topic_variations(self.generator, seed_title, city_focus, audience_focus, year, results)
        run_log.total_token_usage += topics.token_usage
        run_log.topics_count = len(topics.topics)
        run_log.stages.append(
            f"topics: {len(topics.topics)} generated" + (" after repair" if topics.repaired else "")
        )
        log.info("Generated %d topics", len(topics.topics))

        return PipelineResult(topics=topics.topics, log=run_log, results=results)
