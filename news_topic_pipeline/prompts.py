"""Prompt rendering for the generation stages (Jinja2 templates under ``template/``)."""

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATE_DIR = Path(__file__).resolve().parent / "template"


def audience_label(audience_focus: str) -> str:
    if audience_focus == "both":
        return "travellers and teachers"
    return audience_focus


@lru_cache(maxsize=1)
def _get_env() -> Environment:
    # Plain-text prompts: no autoescaping, and missing variables are errors.
    loader = FileSystemLoader(str(TEMPLATE_DIR))
    return Environment(
        loader=loader,
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_prompt(name: str, **context: Any) -> str:
    template = _get_env().get_template(f"{name}.txt.j2")
    return template.render(**context)
