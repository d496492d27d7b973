import json

import pytest

from news_topic_pipeline.models import GenerationResponse
from news_topic_pipeline.search import WebSearchHit


class FakeGenerator:
    """Replays scripted responses; dicts are sent as JSON, exceptions are raised."""

    def __init__(self, responses, token_count=10):
        self.responses = list(responses)
        self.prompts = []
        self.token_count = token_count

    def generate(self, prompt, json_mode=True):
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeGenerator ran out of scripted responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return GenerationResponse(text=text, token_count=self.token_count)


class FakeSearchClient:
    """Per-query scripted hits; ``default`` builds hits for unscripted queries."""

    def __init__(self, hits_by_query=None, default=None):
        self.hits_by_query = hits_by_query or {}
        self.default = default
        self.calls = []

    def search(self, query, count=10):
        self.calls.append(query)
        hits = self.hits_by_query.get(query)
        if hits is None:
            hits = self.default(query) if self.default else []
        if isinstance(hits, Exception):
            raise hits
        return list(hits)


def make_hit(url, title="Cambodia travel update for visitors", snippet=None):
    return WebSearchHit(
        title=title,
        url=url,
        snippet=snippet or "Officials in Cambodia announced new guidance for visitors this month.",
    )


@pytest.fixture
def fake_generator():
    return FakeGenerator


@pytest.fixture
def fake_search_client():
    return FakeSearchClient


@pytest.fixture
def hit():
    return make_hit
