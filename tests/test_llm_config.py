from types import SimpleNamespace

import pytest
from google.api_core import exceptions
from jinja2.exceptions import UndefinedError

from news_topic_pipeline import llm
from news_topic_pipeline.config import Settings, get_settings
from news_topic_pipeline.errors import ConfigurationError, GenerationError, GenerationParseError
from news_topic_pipeline.llm import GeminiGenerator, _to_generation_response, parse_json_object, strip_json_fences
from news_topic_pipeline.prompts import audience_label, render_prompt


# ── JSON handling ──

def test_strip_json_fences():
    assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_json_fences('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_json_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_json_object():
    assert parse_json_object('```json\n{"queries": ["a"]}\n```') == {"queries": ["a"]}
    with pytest.raises(GenerationParseError):
        parse_json_object("Sure, here you go")
    with pytest.raises(GenerationParseError):
        parse_json_object('["not", "an", "object"]')


# ── Response conversion ──

def test_response_text_and_token_count():
    response = SimpleNamespace(
        candidates=[object()],
        text='{"ok": true}',
        usage_metadata=SimpleNamespace(total_token_count=42),
    )
    result = _to_generation_response(response)
    assert result.text == '{"ok": true}'
    assert result.token_count == 42


def test_blocked_response_raises():
    response = SimpleNamespace(
        candidates=[],
        prompt_feedback=SimpleNamespace(block_reason=SimpleNamespace(name="SAFETY")),
    )
    with pytest.raises(GenerationError, match="SAFETY"):
        _to_generation_response(response)


def test_empty_response_raises():
    with pytest.raises(GenerationError, match="empty"):
        _to_generation_response(SimpleNamespace(candidates=[], prompt_feedback=None))


# ── Client ──

def test_generator_requires_api_key():
    with pytest.raises(ConfigurationError):
        GeminiGenerator(Settings(gemini_api_key=""))


class _FakeModel:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls = []

    def generate_content(self, prompt, request_options=None):
        self.calls.append(request_options)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _generator(monkeypatch, outcomes, **kwargs):
    model = _FakeModel(outcomes)
    monkeypatch.setattr(llm.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(llm.genai, "GenerativeModel", lambda **kwargs: model)
    monkeypatch.setattr(llm.time, "sleep", lambda seconds: None)
    return GeminiGenerator(Settings(gemini_api_key="key", generation_timeout=60.0), **kwargs), model


def test_transient_error_is_retried(monkeypatch):
    ok = SimpleNamespace(candidates=[object()], text="{}", usage_metadata=None)
    gen, model = _generator(monkeypatch, [exceptions.ServiceUnavailable("busy"), ok])

    assert gen.generate("prompt").text == "{}"
    assert len(model.calls) == 2
    assert model.calls[0] == {"timeout": 60.0}


def test_persistent_transient_error_raises(monkeypatch):
    gen, _ = _generator(monkeypatch, [exceptions.ResourceExhausted("quota"), exceptions.ResourceExhausted("quota")])
    with pytest.raises(GenerationError, match="unavailable"):
        gen.generate("prompt")


def test_timeout_is_not_retried(monkeypatch):
    gen, model = _generator(monkeypatch, [exceptions.DeadlineExceeded("slow")])
    with pytest.raises(GenerationError, match="timed out after 60s"):
        gen.generate("prompt")
    assert len(model.calls) == 1


def test_zero_retries_still_makes_one_call(monkeypatch):
    ok = SimpleNamespace(candidates=[object()], text="{}", usage_metadata=None)
    gen, model = _generator(monkeypatch, [ok], max_retries=0)

    assert gen.generate("prompt").text == "{}"
    assert len(model.calls) == 1


# ── Settings and prompts ──

def test_get_settings_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("TITLE_SOURCE", "Generator")
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path))
    monkeypatch.setenv("SEARCH_TIMEOUT", "5")
    settings = get_settings()
    assert settings.title_source == "generator"
    assert settings.static_posts_path == tmp_path / "posts.json"
    assert settings.search_timeout == 5.0


def test_get_settings_rejects_unknown_title_source(monkeypatch):
    monkeypatch.setenv("TITLE_SOURCE", "magic")
    with pytest.raises(RuntimeError, match="TITLE_SOURCE"):
        get_settings()


def test_prompts_fail_on_missing_variables():
    assert audience_label("both") == "travellers and teachers"
    assert audience_label("teachers") == "teachers"
    with pytest.raises(UndefinedError):
        render_prompt("title_repair")
    assert "raw output" in render_prompt("title_repair", bad_output="raw output")
