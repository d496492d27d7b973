import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent

TITLE_SOURCES = ("template", "generator")


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    tavily_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    content_dir: Path = PROJECT_ROOT / "content"
    history_path: Path = PROJECT_ROOT / "logs" / "title_history.json"
    title_source: str = "template"
    generation_timeout: float = 60.0
    search_timeout: float = 8.0
    own_domain: str = "globescraper.com"

    @property
    def current_year(self) -> int:
        return date.today().year

    @property
    def static_posts_path(self) -> Path:
        return self.content_dir / "posts.json"

    @property
    def articles_path(self) -> Path:
        return self.content_dir / "articles.json"


def _path_env(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    return Path(raw) if raw else default


def get_settings() -> Settings:
    title_source = os.getenv("TITLE_SOURCE", "template").strip().lower()
    if title_source not in TITLE_SOURCES:
        raise RuntimeError(
            f"Invalid TITLE_SOURCE {title_source!r}; expected one of {', '.join(TITLE_SOURCES)}"
        )

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        tavily_api_key=os.getenv("TAVILY_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        content_dir=_path_env("CONTENT_DIR", PROJECT_ROOT / "content"),
        history_path=_path_env("HISTORY_PATH", PROJECT_ROOT / "logs" / "title_history.json"),
        title_source=title_source,
        generation_timeout=float(os.getenv("GENERATION_TIMEOUT", "60")),
        search_timeout=float(os.getenv("SEARCH_TIMEOUT", "8")),
    )
