"""Read/write access to the content store and the topic-selection history log.

Every accessor returns a ``ReadResult`` instead of swallowing failures, so the
caller decides (in one place) that an unreadable source counts as empty.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

ARTICLE_STATUSES = ("PUBLISHED", "DRAFT")

# Keep the history file bounded; rotation only ever reads the newest few rows.
_HISTORY_MAX_ROWS = 500


@dataclass(frozen=True)
class ReadError:
    source: str
    message: str

    def __str__(self) -> str:
        return f"{self.source}: {self.message}"


@dataclass
class ReadResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ReadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.error is None and self.value is not None else default


@dataclass(frozen=True)
class StaticPost:
    slug: str
    title: str
    description: str = ""


@dataclass(frozen=True)
class StoredArticle:
    slug: str
    title: str
    status: str
    topic: str = ""
    city: Optional[str] = None
    audience: Optional[str] = None
    meta_description: str = ""
    target_keyword: str = ""
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TopicSelection:
    city_focus: str
    audience_focus: str
    selected_topic: str
    generated_title: str = ""
    primary_keyword: str = ""
    created_at: float = field(default_factory=time.time)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch seconds -> aware UTC datetime; None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _optional_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _row_time(row: Dict[str, Any]) -> float:
    """History rows carry epoch seconds or ISO strings; anything else sorts as 0."""
    stamp = parse_timestamp(row.get("createdAt"))
    return stamp.timestamp() if stamp else 0.0


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class ContentStore:
    """JSON-file backed listing of static posts and generated articles.

    ``posts.json`` is a list of ``{slug, title, description}``;
    ``articles.json`` is a list of ``{slug, title, status, topic, city,
    audience, metaDescription, targetKeyword, createdAt}``.
    """

    def __init__(self, static_posts_path: Path, articles_path: Path):
        self.static_posts_path = Path(static_posts_path)
        self.articles_path = Path(articles_path)

    def list_static_posts(self) -> ReadResult[List[StaticPost]]:
        try:
            data = _read_json(self.static_posts_path)
        except (OSError, ValueError) as exc:
            return ReadResult(error=ReadError("static_posts", str(exc)))
        if not isinstance(data, list):
            return ReadResult(error=ReadError("static_posts", "expected a JSON array"))

        posts: List[StaticPost] = []
        for obj in data:
            if not isinstance(obj, dict) or not obj.get("slug"):
                continue
            posts.append(
                StaticPost(
                    slug=str(obj["slug"]),
                    title=str(obj.get("title", "")),
                    description=str(obj.get("description", "")),
                )
            )
        return ReadResult(value=posts)

    def list_articles(self, statuses: Iterable[str] = ARTICLE_STATUSES) -> ReadResult[List[StoredArticle]]:
        """Articles with a status in *statuses*, newest first."""
        wanted = {s.upper() for s in statuses}
        try:
            data = _read_json(self.articles_path)
        except (OSError, ValueError) as exc:
            return ReadResult(error=ReadError("articles", str(exc)))
        if not isinstance(data, list):
            return ReadResult(error=ReadError("articles", "expected a JSON array"))

        articles: List[StoredArticle] = []
        for obj in data:
            if not isinstance(obj, dict) or not obj.get("slug"):
                continue
            status = str(obj.get("status", "")).upper()
            if status not in wanted:
                continue
            articles.append(
                StoredArticle(
                    slug=str(obj["slug"]),
                    title=str(obj.get("title", "")),
                    status=status,
                    topic=str(obj.get("topic") or ""),
                    city=_optional_str(obj.get("city")),
                    audience=_optional_str(obj.get("audience")),
                    meta_description=str(obj.get("metaDescription") or ""),
                    target_keyword=str(obj.get("targetKeyword") or ""),
                    created_at=parse_timestamp(obj.get("createdAt")),
                )
            )
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        articles.sort(key=lambda a: a.created_at or epoch, reverse=True)
        return ReadResult(value=articles)


class HistoryLog:
    """Append-only JSON log of topic selections, newest appended last."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        data = _read_json(self.path)
        if not isinstance(data, list):
            raise ValueError("expected a JSON array")
        return data

    def recent_selections(self, city_focus: str, audience_focus: str, limit: int) -> ReadResult[List[TopicSelection]]:
        """Last *limit* selections for the (city, audience) pair, newest first."""
        try:
            rows = self._load()
        except (OSError, ValueError) as exc:
            return ReadResult(error=ReadError("history", str(exc)))

        # Ties on createdAt resolve to the later row.
        matching = [
            (idx, r) for idx, r in enumerate(rows)
            if isinstance(r, dict)
            and r.get("cityFocus") == city_focus
            and r.get("audienceFocus") == audience_focus
        ]
        matching.sort(key=lambda pair: (_row_time(pair[1]), pair[0]), reverse=True)
        selections = [
            TopicSelection(
                city_focus=r["cityFocus"],
                audience_focus=r["audienceFocus"],
                selected_topic=str(r.get("selectedTopic", "")),
                generated_title=str(r.get("generatedTitle", "")),
                primary_keyword=str(r.get("primaryKeyword", "")),
                created_at=_row_time(r),
            )
            for _, r in matching[:limit]
        ]
        return ReadResult(value=selections)

    def recent_titles(self, limit: int = 100) -> ReadResult[List[str]]:
        try:
            rows = self._load()
        except (OSError, ValueError) as exc:
            return ReadResult(error=ReadError("history", str(exc)))
        titled = [(idx, r) for idx, r in enumerate(rows) if isinstance(r, dict) and r.get("generatedTitle")]
        titled.sort(key=lambda pair: (_row_time(pair[1]), pair[0]), reverse=True)
        return ReadResult(value=[str(r["generatedTitle"]) for _, r in titled[:limit]])

    def record(self, selection: TopicSelection) -> None:
        """Append a selection. Raises OSError if the log cannot be written."""
        try:
            rows = self._load()
        except ValueError:
            log.warning("History log %s is corrupt; starting a new one", self.path)
            rows = []
        rows.append({
            "cityFocus": selection.city_focus,
            "audienceFocus": selection.audience_focus,
            "selectedTopic": selection.selected_topic,
            "generatedTitle": selection.generated_title,
            "primaryKeyword": selection.primary_keyword,
            "createdAt": selection.created_at,
        })
        rows = rows[-_HISTORY_MAX_ROWS:]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(rows, indent=2), encoding="utf-8")
