"""Trigram title similarity: rejects candidates that near-duplicate existing titles."""

import logging
import re
from typing import Iterable, List, Set

from .models import CandidateTitle

log = logging.getLogger(__name__)

# Candidates with similarity above this threshold to any existing title are dropped
DEFAULT_THRESHOLD = 0.62

_NON_ALNUM_RE = re.compile(r"[^a-z0-9 ]")


def _trigram_set(text: str) -> Set[str]:
    lower = _NON_ALNUM_RE.sub("", (text or "").lower())
    return {lower[i:i + 3] for i in range(len(lower) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Shared trigrams over the larger trigram set, 0.0 when either side is empty.

    The denominator is ``max(|A|, |B|)``, so treat the score as a one-sided
    "is A covered by B" heuristic rather than a metric.
    """
    set_a = _trigram_set(a)
    set_b = _trigram_set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / max(len(set_a), len(set_b))


def filter_unique(
    candidates: List[CandidateTitle],
    existing_titles: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> List[CandidateTitle]:
    """Drop candidates whose similarity to any existing title exceeds *threshold*.

    Preserves the ordering of the kept candidates.
    """
    existing = [t for t in existing_titles if t]
    kept: List[CandidateTitle] = []
    for cand in candidates:
        clash = next(
            (t for t in existing if trigram_similarity(cand.title, t) > threshold),
            None,
        )
        if clash is not None:
            log.debug("Uniqueness: dropped '%s' (too close to '%s')", cand.title, clash)
            continue
        kept.append(cand)
    log.info("Uniqueness filter kept %d of %d candidates", len(kept), len(candidates))
    return kept


def closest_titles(candidate: str, existing_titles: Iterable[str], limit: int = 10) -> List[str]:
    """Existing titles ranked by similarity to *candidate*, most similar first.

    With an empty candidate every score is 0, so the input order (newest first
    for store-backed lists) is kept.
    """
    unique = list(dict.fromkeys(t for t in existing_titles if t))
    ranked = sorted(unique, key=lambda t: trigram_similarity(candidate, t), reverse=True)
    return ranked[:limit]
