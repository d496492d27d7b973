"""Gap-topic rotation: pick the next topic while avoiding recent repeats."""

import logging
import random
import re
from typing import Dict, List, Optional, Tuple

from .models import COUNTRY_NAME, COUNTRY_WIDE, GapTopicResult
from .store import HistoryLog, TopicSelection

log = logging.getLogger(__name__)

GAP_TOPICS: Tuple[str, ...] = (
    "airport",
    "entry",
    "scams",
    "visa",
    "transport",
    "flight",
    "SIM",
    "banking",
    "renting",
    "cost of living",
    "healthcare",
    "teaching",
    "food",
    "safety",
    "coworking",
)

# How many recent selections for the same (city, audience) pair are excluded.
LOOKBACK_N = 3

DEFAULT_CITY = "Phnom Penh"

# Keyword sets per topic, written against DEFAULT_CITY and localized on use.
KEYWORD_MAP: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "transport": (("PassApp Phnom Penh", "Grab Phnom Penh"), ("Phnom Penh tuk tuk", "tuk tuk prices")),
    "airport": (("Phnom Penh airport", "Techo International Airport"), ("PNH airport", "airport transfer")),
    "scams": (("Phnom Penh scams", "tourist scams"), ("tourist scams Phnom Penh", "overcharging")),
    "visa": (("Cambodia visa Phnom Penh", "visa on arrival"), ("Phnom Penh e-visa", "e-visa application")),
    "entry": (("entering Cambodia via Phnom Penh", "arrival card"), ("Phnom Penh entry requirements",)),
    "flight": (("flights to Phnom Penh", "direct flights"), ("cheap flights Phnom Penh",)),
    "SIM": (("SIM card Phnom Penh", "mobile data"), ("Cambodia SIM card", "eSIM")),
    "banking": (("ATM Cambodia", "ATM fees"), ("Phnom Penh banking", "bank account")),
    "renting": (("renting apartment Phnom Penh", "deposit"), ("Phnom Penh housing", "lease")),
    "cost of living": (("cost of living Phnom Penh", "monthly budget"), ("Phnom Penh budget",)),
    "healthcare": (("Phnom Penh hospital", "clinic"), ("healthcare in Cambodia", "health insurance")),
    "teaching": (("teaching English Phnom Penh", "teacher salary"), ("TEFL jobs Cambodia", "work permit")),
    "food": (("Phnom Penh street food", "night market"), ("best restaurants Phnom Penh",)),
    "safety": (("Phnom Penh safety tips", "bag snatching"), ("is Phnom Penh safe",)),
    "coworking": (("coworking spaces Phnom Penh", "cafes with wifi"), ("digital nomad Phnom Penh",)),
}

_DEFAULT_CITY_RE = re.compile(re.escape(DEFAULT_CITY), re.IGNORECASE)


def localise_keyword(keyword: str, city_focus: str) -> str:
    """Swap the default city token for *city_focus* (or the country when country-wide)."""
    if city_focus == DEFAULT_CITY:
        return keyword
    replacement = COUNTRY_NAME if city_focus == COUNTRY_WIDE else city_focus
    return _DEFAULT_CITY_RE.sub(replacement, keyword)


class TopicRotator:
    """Picks gap topics uniformly from the list minus the last ``lookback`` picks.

    ``rng`` is injectable so tests can seed it and assert exact picks.
    """

    def __init__(
        self,
        history: Optional[HistoryLog] = None,
        rng: Optional[random.Random] = None,
        topics: Tuple[str, ...] = GAP_TOPICS,
        lookback: int = LOOKBACK_N,
    ):
        self.history = history
        self.rng = rng or random.Random()
        self.topics = topics
        self.lookback = lookback

    def recent_topics(self, city_focus: str, audience_focus: str) -> List[str]:
        if self.history is None:
            return []
        result = self.history.recent_selections(city_focus, audience_focus, self.lookback)
        if not result.ok:
            log.warning("Could not read topic history, rotating without it: %s", result.error)
        return [s.selected_topic for s in result.unwrap_or([])]

    def get_next_gap_topic(
        self,
        city_focus: str,
        audience_focus: str,
        history: Optional[List[str]] = None,
    ) -> GapTopicResult:
        """Select a topic not among the recent picks; *history* overrides the log read."""
        recent = history if history is not None else self.recent_topics(city_focus, audience_focus)
        recent = list(recent)[: self.lookback]

        pool = [t for t in self.topics if t not in recent]
        if not pool:
            pool = list(self.topics)

        selected = self.rng.choice(pool)
        keyword_sets = KEYWORD_MAP.get(selected) or ((selected,),)
        terms = self.rng.choice(keyword_sets)
        localized = [localise_keyword(t, city_focus) for t in terms]

        log.info("Rotation picked '%s' (excluded %s) with keywords %s", selected, recent, localized)
        return GapTopicResult(selected_topic=selected, primary_keyword_terms=localized)

    def record(
        self,
        city_focus: str,
        audience_focus: str,
        pick: GapTopicResult,
        generated_title: str = "",
    ) -> None:
        """Append a selection to the history log; write failures are logged, not raised."""
        if self.history is None:
            return
        try:
            self.history.record(
                TopicSelection(
                    city_focus=city_focus,
                    audience_focus=audience_focus,
                    selected_topic=pick.selected_topic,
                    generated_title=generated_title,
                    primary_keyword=pick.primary_keyword,
                )
            )
        except OSError as exc:
            log.warning("Failed to record topic selection: %s", exc)
