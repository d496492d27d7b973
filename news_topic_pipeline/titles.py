"""Candidate title sources for the best-title flow.

Two interchangeable ``CandidateTitleSource`` implementations: deterministic
per-intent templates, and a generator-backed source that writes one title
around the rotator's next gap topic.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from .coverage import rank_gaps
from .errors import GenerationError, GenerationParseError
from .llm import strip_json_fences
from .models import CandidateTitle, CoverageGap, city_label
from .prompts import audience_label, render_prompt
from .rotation import TopicRotator
from .similarity import closest_titles
from .text import has_forbidden_dash

log = logging.getLogger(__name__)

TOP_GAPS = 15
TEMPLATES_PER_KEY = 2
MAX_TITLE_LENGTH = 80
AVOID_TITLES = 10

# Keyed "<intent stem>_<audience>"; {city} is replaced with the focus city.
TITLE_TEMPLATES: Dict[str, List[str]] = {
    "visa_travellers": [
        "{city} Visa and Entry Requirements: What Changed and What to Expect",
        "{city} E-Visa Application Process: Step by Step for First Time Visitors",
        "Cambodia Visa on Arrival vs E-Visa: Which to Choose When Flying into {city}",
    ],
    "visa_teachers": [
        "{city} Work Visa and Business Visa for Teachers: What You Actually Need",
        "Cambodia Work Permit for English Teachers: Costs, Process, and Common Mistakes",
    ],
    "border_travellers": [
        "{city} Border Crossing and Entry Points: Updated Rules and Tips",
        "Cambodia Land Border Crossings: What to Know Before Your Trip to {city}",
    ],
    "transport_travellers": [
        "{city} Airport and Entry Process Updates: What to Expect",
        "{city} Getting Around: Transport Options, Costs, and Safety Tips",
        "{city} Night Transport and Late Ride Safety: What Changed and How to Plan",
    ],
    "transport_teachers": [
        "{city} Daily Commute Options for Teachers: Costs, Routes, and Realistic Times",
        "Buying vs Renting a Motorbike in {city}: What Teachers Need to Know",
    ],
    "safety_travellers": [
        "{city} Safety and Common Scams Tourists Face: How to Stay Smart",
        "New Fees and Common Extra Charges Tourists Hit in {city} and How to Avoid Them",
        "{city} Solo Travel Safety: Updated Advice for First Timers",
    ],
    "safety_teachers": [
        "{city} Safety Tips for New Teachers: What to Watch Out For",
    ],
    "healthcare_travellers": [
        "{city} Healthcare for Tourists: Emergency Clinics, Pharmacies, and Insurance Tips",
        "Cambodia Travel Insurance: What to Get Before Flying into {city}",
    ],
    "healthcare_teachers": [
        "{city} Healthcare for Expats and Teachers: Clinics, Insurance, and What It Costs",
    ],
    "renting_travellers": [
        "{city} Short Stay Accommodation: Beyond Hotels and Hostels",
    ],
    "renting_teachers": [
        "{city} Renting Checklist: Deposits, Contracts, and Utility Setups Teachers Miss",
        "{city} Best Neighbourhoods for Teachers: Rent, Commute, and Lifestyle",
    ],
    "cost of living_travellers": [
        "{city} Daily Budget Breakdown: What Things Actually Cost for Tourists",
        "{city} Money Saving Tips: Where Tourists Overpay and What to Do Instead",
    ],
    "cost of living_teachers": [
        "{city} Cost of Living for Teachers: Realistic Monthly Budget Breakdown",
        "Cambodia Teacher Salary vs Cost of Living: Can You Save Money in {city}?",
    ],
    "teaching_teachers": [
        "{city} School Hiring Cycle: When Jobs Open and What Salaries Look Like Now",
        "Cambodia TEFL Jobs: What Schools in {city} Actually Look For",
        "{city} Teaching Contract Red Flags: What to Check Before Signing",
    ],
    "SIM_travellers": [
        "{city} SIM Card and Mobile Data: Which Provider and Plan to Pick",
        "Cambodia eSIM vs Physical SIM: What Works Best for Tourists in {city}",
    ],
    "SIM_teachers": [
        "{city} Phone and Internet Setup for New Teachers: SIM, WiFi, and Apps",
    ],
    "banking_travellers": [
        "{city} ATMs, Cash, and Cards: Money Tips for Tourists",
    ],
    "banking_teachers": [
        "{city} Banking for Teachers: Opening an Account and Getting Paid",
    ],
    "food_travellers": [
        "{city} Street Food Guide: What to Eat, Where, and What It Costs",
        "{city} Best Markets for Food and Shopping: A Tourist Walkthrough",
    ],
    "neighbourhood_teachers": [
        "{city} Area Guide for Teachers: Where to Live Based on Your School",
    ],
    "coworking_travellers": [
        "{city} Coworking Spaces and Cafes for Digital Nomads: Updated List",
    ],
    "festival_travellers": [
        "Visiting {city} During Khmer New Year: What to Expect and How to Prepare",
        "Cambodia Festival Calendar: Best Times to Visit {city}",
    ],
}

_INTENT_STEMS: Dict[str, str] = {
    "e-visa": "visa", "evisa": "visa", "immigration": "visa", "passport": "visa",
    "entry": "border",
    "airport": "transport", "bus": "transport", "tuk-tuk": "transport",
    "taxi": "transport", "grab": "transport", "flight": "transport",
    "scams": "safety", "crime": "safety", "police": "safety",
    "hospital": "healthcare", "pharmacy": "healthcare", "insurance": "healthcare", "dentist": "healthcare",
    "sim card": "SIM", "mobile": "SIM", "internet": "SIM", "wifi": "SIM",
    "ATM": "banking", "money": "banking", "exchange": "banking", "currency": "banking",
    "apartment": "renting", "housing": "renting", "deposit": "renting", "lease": "renting", "landlord": "renting",
    "budget": "cost of living", "prices": "cost of living", "inflation": "cost of living", "fees": "cost of living",
    "TEFL": "teaching", "school": "teaching", "salary": "teaching", "hiring": "teaching", "work permit": "teaching",
    "neighborhood": "neighbourhood", "area": "neighbourhood", "district": "neighbourhood",
    "restaurant": "food", "street food": "food", "market": "food",
    "digital nomad": "coworking", "remote work": "coworking", "freelance": "coworking",
    "event": "festival", "holiday": "festival", "khmer new year": "festival",
}

_YEAR_RE = re.compile(r"\b(20\d{2})\b")


def intent_to_template_stem(intent: str) -> str:
    """Map related intents onto the stem used in ``TITLE_TEMPLATES`` keys."""
    return _INTENT_STEMS.get(intent, intent)


def audiences_for(audience_focus: str) -> List[str]:
    return ["travellers", "teachers"] if audience_focus == "both" else [audience_focus]


class CandidateTitleSource:
    """Produces scored candidate titles for a city/audience focus."""

    def candidates(
        self,
        gaps: List[CoverageGap],
        city_focus: str,
        audience_focus: str,
        existing_titles: List[str],
    ) -> List[CandidateTitle]:
        raise NotImplementedError

    def record_selection(self, city_focus: str, audience_focus: str, chosen: CandidateTitle) -> None:
        """Called with the title the orchestrator finally picked."""


class TemplateTitleSource(CandidateTitleSource):
    """Fills per-(intent, audience) templates for the highest scoring gaps."""

    def __init__(self, top_gaps: int = TOP_GAPS, per_key: int = TEMPLATES_PER_KEY):
        self.top_gaps = top_gaps
        self.per_key = per_key

    def candidates(self, gaps, city_focus, audience_focus, existing_titles=()):
        city = city_label(city_focus)
        out: List[CandidateTitle] = []

        for gap, score in rank_gaps(gaps)[: self.top_gaps]:
            stem = intent_to_template_stem(gap.intent)
            for aud in audiences_for(audience_focus):
                for template in TITLE_TEMPLATES.get(f"{stem}_{aud}", [])[: self.per_key]:
                    why = ["gap: not covered" if gap.coverage_count == 0
                           else f"weak coverage: {gap.coverage_count} article(s)"]
                    if gap.is_freshness_relevant:
                        why.append("freshness-relevant topic")
                    if gap.staleness >= 7:
                        why.append("content is stale")
                    why.extend([f"intent: {gap.intent}", f"audience: {aud}", f"city: {city}"])

                    keywords = [city.lower(), gap.intent, aud]
                    if stem != gap.intent:
                        keywords.append(stem)

                    out.append(
                        CandidateTitle(
                            title=template.replace("{city}", city),
                            score=float(score),
                            why=why,
                            keywords=keywords,
                            intent=gap.intent,
                            city=city,
                            audience=aud,
                        )
                    )

        log.info("Template source produced %d candidates", len(out))
        return out


@dataclass
class TitlePayload:
    title: str
    why: List[str]
    keywords: List[str]


def parse_title_payload(raw: str) -> Optional[TitlePayload]:
    """``{title, why, keywords}`` from model output, or None if malformed."""
    try:
        obj = json.loads(strip_json_fences(raw or ""))
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict) or not isinstance(obj.get("title"), str):
        return None
    why, keywords = obj.get("why"), obj.get("keywords")
    if not isinstance(why, list) or not isinstance(keywords, list) or not why or not keywords:
        return None
    return TitlePayload(
        title=obj["title"].strip(),
        why=[str(w) for w in why[:5]],
        keywords=[str(k) for k in keywords[:5]],
    )


def validate_title(title: str, city_focus: str, primary_keyword: str, current_year: int) -> List[str]:
    """Hard-constraint violations for a generated title; empty means valid."""
    reasons: List[str] = []
    city = city_label(city_focus)
    lower = title.lower()

    if len(title) > MAX_TITLE_LENGTH:
        reasons.append(f"Too long ({len(title)} chars, max {MAX_TITLE_LENGTH})")
    if city.lower() not in lower:
        reasons.append(f'Missing city "{city}"')
    if primary_keyword and primary_keyword.lower() not in lower:
        reasons.append(f'Missing primary keyword "{primary_keyword}"')
    if has_forbidden_dash(title):
        reasons.append("Contains em dash or en dash")
    for y in _YEAR_RE.findall(title):
        if int(y) != current_year:
            reasons.append(f"Contains wrong year {y} (should be {current_year})")
    return reasons


class GeneratorTitleSource(CandidateTitleSource):
    """One generated title per call, built around the rotator's next gap topic.

    The first response is parsed with one repair call; a title that breaks a
    hard constraint gets one fix call, and the fix is kept only if it passes.
    """

    def __init__(self, generator, rotator: TopicRotator, top_gaps: int = 8):
        self.generator = generator
        self.rotator = rotator
        self.top_gaps = top_gaps
        self._pick = None

    def _generate_payload(self, prompt: str) -> TitlePayload:
        response = self.generator.generate(prompt)
        payload = parse_title_payload(response.text)
        if payload is not None:
            return payload

        log.warning("Title response unparseable, attempting repair")
        repair = self.generator.generate(render_prompt("title_repair", bad_output=response.text[:1000]))
        payload = parse_title_payload(repair.text)
        if payload is None:
            raise GenerationParseError("Title generation returned invalid JSON even after repair attempt")
        return payload

    def candidates(self, gaps, city_focus, audience_focus, existing_titles=()):
        today = date.today()
        city = city_label(city_focus)
        ranked = rank_gaps(gaps)
        pick = self.rotator.get_next_gap_topic(city_focus, audience_focus)
        self._pick = None
        primary_keyword = pick.primary_keyword

        prompt = render_prompt(
            "best_title",
            todays_date=today.strftime("%B %d, %Y"),
            current_year=today.year,
            city_focus=city_focus,
            audience_focus=audience_focus,
            selected_topic=pick.selected_topic,
            primary_keyword=primary_keyword,
            city=city,
            audience_label=audience_label(audience_focus),
            top_gaps=[g for g, _ in ranked[: self.top_gaps]],
            max_length=MAX_TITLE_LENGTH,
            avoid_titles=closest_titles("", existing_titles, limit=AVOID_TITLES),
        )
        payload = self._generate_payload(prompt)

        reasons = validate_title(payload.title, city_focus, primary_keyword, today.year)
        if reasons:
            log.warning("Generated title failed validation (%s), attempting fix", "; ".join(reasons))
            payload = self._fix(payload, reasons, city_focus, primary_keyword, today.year)

        self._pick = pick
        score = ranked[0][1] if ranked else 0
        return [
            CandidateTitle(
                title=payload.title,
                score=float(score),
                why=payload.why + [f"gap topic: {pick.selected_topic}", f"primary keyword: {primary_keyword}"],
                keywords=payload.keywords,
                intent=pick.selected_topic,
                city=city,
                audience=audience_focus,
            )
        ]

    def _fix(self, payload: TitlePayload, reasons: List[str], city_focus: str,
             primary_keyword: str, current_year: int) -> TitlePayload:
        prompt = render_prompt(
            "title_fix",
            title=payload.title,
            reasons=reasons,
            city=city_label(city_focus),
            primary_keyword=primary_keyword,
            current_year=current_year,
            max_length=MAX_TITLE_LENGTH,
        )
        try:
            fixed = parse_title_payload(self.generator.generate(prompt).text)
        except GenerationError as exc:
            log.warning("Title fix call failed: %s", exc)
            return payload
        if fixed is None:
            log.warning("Title fix returned unparseable JSON, keeping the original")
            return payload
        still_bad = validate_title(fixed.title, city_focus, primary_keyword, current_year)
        if still_bad:
            log.warning("Title fix still fails validation: %s", "; ".join(still_bad))
            return payload
        return fixed

    def record_selection(self, city_focus, audience_focus, chosen):
        if self._pick is None:
            return
        self.rotator.record(city_focus, audience_focus, self._pick, generated_title=chosen.title)
        self._pick = None
