"""Normalization of generated and scraped strings."""

import re

from bs4 import BeautifulSoup

FORBIDDEN_DASHES = ("\u2014", "\u2013")  # em dash, en dash

_DASH_RE = re.compile("[\u2014\u2013]")
_SPACES_RE = re.compile("[ \t\u00a0]+")
_SPACE_BEFORE_COMMA_RE = re.compile(" +,")
_COMMA_RUN_RE = re.compile(",{2,}")


def has_forbidden_dash(text: str) -> bool:
    return any(d in text for d in FORBIDDEN_DASHES)


def clean(text: str) -> str:
    """Replace em/en dashes with ", " and canonicalize whitespace.

    The output never contains a dash, a whitespace run, a space before a
    comma or a run of commas, so ``clean(clean(s)) == clean(s)``.
    """
    if not text:
        return ""
    out = _DASH_RE.sub(", ", text)
    out = _SPACES_RE.sub(" ", out)
    out = _SPACE_BEFORE_COMMA_RE.sub(",", out)
    out = _COMMA_RUN_RE.sub(",", out)
    return out.strip()


def strip_markup(text: str) -> str:
    """Drop HTML tags and entities that search providers leave in titles/snippets."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return " ".join(text.split())
    soup = BeautifulSoup(text, "html.parser")
    return " ".join(soup.get_text(separator=" ").split())
