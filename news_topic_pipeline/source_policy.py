"""Source policy: trusted publishers, blocked domains and URL canonicalization."""

from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse


@dataclass(frozen=True)
class TrustedSource:
    domain: str
    publisher: str
    category: str


# ── Trusted source registry, ordered by reliability within each category ──

NEWS_SOURCE_REGISTRY: List[TrustedSource] = [
    TrustedSource("evisa.gov.kh", "Cambodia eVisa", "OFFICIAL_GOV"),
    TrustedSource("mfaic.gov.kh", "Cambodia Ministry of Foreign Affairs", "OFFICIAL_GOV"),
    TrustedSource("immigration.gov.kh", "Cambodia Immigration", "OFFICIAL_GOV"),
    TrustedSource("tourismcambodia.com", "Cambodia Tourism Board", "OFFICIAL_TOURISM"),
    TrustedSource("mot.gov.kh", "Cambodia Ministry of Tourism", "OFFICIAL_TOURISM"),
    TrustedSource("cambodia-airports.aero", "Cambodia Airports", "OFFICIAL_TOURISM"),
    TrustedSource("reuters.com", "Reuters", "INTERNATIONAL_NEWS"),
    TrustedSource("apnews.com", "Associated Press", "INTERNATIONAL_NEWS"),
    TrustedSource("thediplomat.com", "The Diplomat", "INTERNATIONAL_NEWS"),
    TrustedSource("aljazeera.com", "Al Jazeera", "INTERNATIONAL_NEWS"),
    TrustedSource("bbc.com", "BBC News", "INTERNATIONAL_NEWS"),
    TrustedSource("bbc.co.uk", "BBC News", "INTERNATIONAL_NEWS"),
    TrustedSource("phnompenhpost.com", "Phnom Penh Post", "LOCAL_NEWS"),
    TrustedSource("khmertimeskh.com", "Khmer Times", "LOCAL_NEWS"),
    TrustedSource("cambodianess.com", "Cambodianess", "LOCAL_NEWS"),
    TrustedSource("southeastasiaglobe.com", "Southeast Asia Globe", "LOCAL_NEWS"),
    TrustedSource("vodenglish.news", "VOD English", "LOCAL_NEWS"),
    TrustedSource("move2cambodia.com", "Move to Cambodia", "EXPAT_COMMUNITY"),
    TrustedSource("expatinkh.com", "Expat in KH", "EXPAT_COMMUNITY"),
    TrustedSource("lonelyplanet.com", "Lonely Planet", "TRAVEL_INFO"),
    TrustedSource("theculturetrip.com", "Culture Trip", "TRAVEL_INFO"),
    TrustedSource("goabroad.com", "Go Abroad", "TEACHING"),
    TrustedSource("internationalteflacademy.com", "International TEFL Academy", "TEACHING"),
    TrustedSource("teflcourse.net", "TEFL Course", "TEACHING"),
]

OFFICIAL_CATEGORIES = {"OFFICIAL_GOV", "OFFICIAL_TOURISM"}

# Content farms and social platforms that never count as a citable source.
BLOCKED_DOMAINS = {
    "pinterest.com",
    "facebook.com",
    "instagram.com",
    "tiktok.com",
    "youtube.com",
    "twitter.com",
    "x.com",
    "medium.com",       # too many low quality articles
    "quora.com",
    "blogspot.com",
    "wordpress.com",
    "tumblr.com",
}

# Government, aviation and major news outlets get a ranking boost.
HIGH_TRUST_DOMAINS = {
    "gov.kh", "gov.uk", "gov.au", "gov.sg", "state.gov",
    "iata.org", "icao.int",
    "reuters.com", "apnews.com", "bbc.com", "bbc.co.uk",
    "aljazeera.com", "thediplomat.com",
    "phnompenhpost.com", "khmertimeskh.com", "cambodianess.com",
    "lonelyplanet.com",
}

TRACKING_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "gclsrc", "msclkid", "dclid",
    "ref", "ref_src", "ref_url",
}


# ── Helpers ──


def extract_domain(url: str) -> str:
    """Lower-cased hostname without the www prefix, or "" for unparseable URLs."""
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return ""
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname.lower()


def matches_domain(hostname: str, domains: Iterable[str]) -> bool:
    """True if *hostname* equals, or is a subdomain of, any entry in *domains*."""
    if not hostname:
        return False
    return any(hostname == d or hostname.endswith("." + d) for d in domains)


def canonicalize_url(raw: str) -> str:
    """Strip tracking params, the www prefix and any trailing slash.

    Malformed input gets the same minimal cleanup without raising.
    """
    raw = (raw or "").strip()
    try:
        parsed = urlparse(raw)
    except ValueError:
        parsed = None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        out = raw.rstrip("/")
        for prefix in ("https://www.", "http://www."):
            if out.startswith(prefix):
                out = prefix[:-4] + out[len(prefix):]
        return out

    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    path = parsed.path.rstrip("/")
    params = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS
    ]
    out = f"{parsed.scheme.lower()}://{netloc}{path}"
    if params:
        out += "?" + urlencode(params)
    return out


def is_blocked_domain(url: str) -> bool:
    """Return True if the URL belongs to a blocked domain (or cannot be parsed)."""
    domain = extract_domain(url)
    if not domain:
        return True
    return matches_domain(domain, BLOCKED_DOMAINS)


def find_trusted_source(url: str) -> Optional[TrustedSource]:
    domain = extract_domain(url)
    if not domain:
        return None
    for source in NEWS_SOURCE_REGISTRY:
        if matches_domain(domain, (source.domain,)):
            return source
    return None


def is_official_source(url: str) -> bool:
    source = find_trusted_source(url)
    return source is not None and source.category in OFFICIAL_CATEGORIES


def get_publisher_name(url: str) -> str:
    """Registry publisher for *url*, else the capitalized first label of its domain."""
    trusted = find_trusted_source(url)
    if trusted:
        return trusted.publisher
    domain = extract_domain(url)
    if not domain:
        return "Unknown"
    name = domain.split(".")[0]
    return name[:1].upper() + name[1:]
