import json
import logging
from dataclasses import asdict

import click

from .config import get_settings
from .errors import PipelineError
from .llm import GeminiGenerator
from .models import AUDIENCE_FOCUS_VALUES, CITY_FOCUS_VALUES
from .pipeline import PipelineOrchestrator
from .search import TavilySearchClient
from .store import ContentStore, HistoryLog


def _build_orchestrator(need_generator: bool) -> PipelineOrchestrator:
    settings = get_settings()
    generator = None
    if need_generator or settings.title_source == "generator":
        try:
            generator = GeminiGenerator(settings)
        except PipelineError as exc:
            if need_generator:
                raise click.ClickException(exc.reason)
            click.echo(f"  [WARN] {exc.reason} Using template titles.", err=True)

    return PipelineOrchestrator(
        store=ContentStore(settings.static_posts_path, settings.articles_path),
        history=HistoryLog(settings.history_path),
        generator=generator,
        search_client=TavilySearchClient(settings),
        settings=settings,
    )


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Log at DEBUG instead of INFO.")
def main(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("best-title")
@click.option("--city", "city_focus", default="Cambodia wide", type=click.Choice(CITY_FOCUS_VALUES), help="City focus.")
@click.option("--audience", "audience_focus", default="both", type=click.Choice(AUDIENCE_FOCUS_VALUES), help="Audience focus.")
def best_title(city_focus, audience_focus):
    """Suggest the next non-duplicate title for an under-covered topic."""
    orchestrator = _build_orchestrator(need_generator=False)
    result = orchestrator.generate_best_title(city_focus, audience_focus)
    click.echo(json.dumps(asdict(result), indent=2, ensure_ascii=False))


@main.command("search-topics")
@click.argument("seed_title")
@click.option("--city", "city_focus", default="Cambodia wide", type=click.Choice(CITY_FOCUS_VALUES), help="City focus.")
@click.option("--audience", "audience_focus", default="both", type=click.Choice(AUDIENCE_FOCUS_VALUES), help="Audience focus.")
def search_topics(seed_title, city_focus, audience_focus):
    """Research SEED_TITLE and print grounded topic variations."""
    orchestrator = _build_orchestrator(need_generator=True)
    try:
        result = orchestrator.run_search_topics_pipeline(seed_title, city_focus, audience_focus)
    except PipelineError as exc:
        raise click.ClickException(exc.reason)

    click.echo(json.dumps(
        {
            "topics": [t.to_dict() for t in result.topics],
            "log": asdict(result.log),
        },
        indent=2,
        ensure_ascii=False,
    ))


if __name__ == "__main__":
    main()
