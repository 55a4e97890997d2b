import json
from types import SimpleNamespace

import pytest

from querypilot.models import ExplanationOptions, HistoryAction, RegenerationContext, SystemConfig
from querypilot.services.openai_provider import OpenAIQueryProvider, parse_model_response
from querypilot.utils.exceptions import ConfigurationError, ProviderError


class FakeCompletions:

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content, finish_reason = reply
        return SimpleNamespace(choices=[
            SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)
        ])


def make_provider(*replies):
    completions = FakeCompletions(replies)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIQueryProvider(SystemConfig(openai_api_key="test-key"), client=client), completions


def test_parse_json_response():
    content = json.dumps({"query": "requests | count", "confidence": 0.9, "reasoning": "count"})
    assert parse_model_response(content) == ("requests | count", 0.9, "count")


def test_parse_json_embedded_in_prose():
    content = 'Here you go:\n{"kql": "traces | take 5", "reasoning": "sample"}\nEnjoy.'
    assert parse_model_response(content) == ("traces | take 5", None, "sample")


def test_parse_code_block():
    query, confidence, _ = parse_model_response("```kql\nexceptions | count\n```")
    assert query == "exceptions | count"
    assert confidence is None


def test_parse_plain_text():
    assert parse_model_response("  requests | take 1 ")[0] == "requests | take 1"


@pytest.mark.asyncio
async def test_generate_query_uses_reported_confidence():
    provider, completions = make_provider(
        (json.dumps({"query": "requests | count", "confidence": 0.95, "reasoning": "count"}), "stop")
    )
    candidate = await provider.generate_query("how many requests?", schema={"tables": ["requests"]})

    assert candidate.text == "requests | count"
    assert candidate.confidence == 0.95
    assert candidate.attempt_number == 1
    call = completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert "how many requests?" in call["messages"][1]["content"]
    assert "requests" in call["messages"][0]["content"]


@pytest.mark.asyncio
async def test_generate_query_confidence_from_finish_reason():
    provider, _ = make_provider(("requests | count", "length"))
    candidate = await provider.generate_query("how many requests?")
    assert candidate.confidence == 0.6


@pytest.mark.asyncio
async def test_regenerate_scales_confidence():
    provider, completions = make_provider(
        (json.dumps({"query": "requests | summarize count()", "confidence": 0.9}), "stop")
    )
    context = RegenerationContext(previous_query="requests | count", previous_reasoning="count", attempt_number=2)

    candidate = await provider.regenerate_query("how many requests?", context)

    assert candidate.text == "requests | summarize count()"
    assert candidate.confidence == pytest.approx(0.72)
    assert candidate.provenance is HistoryAction.REGENERATED
    assert completions.calls[0]["temperature"] == 0.5
    assert "requests | count" in completions.calls[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_regenerate_identical_returns_none():
    provider, _ = make_provider((json.dumps({"query": " requests | count "}), "stop"))
    context = RegenerationContext(previous_query="requests | count", attempt_number=2)
    assert await provider.regenerate_query("how many requests?", context) is None


@pytest.mark.asyncio
async def test_explain_query():
    provider, completions = make_provider(("It counts requests.", "stop"))
    explanation = await provider.explain_query("requests | count", ExplanationOptions(language="zh"))
    assert explanation == "It counts requests."
    assert "中文" in completions.calls[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_upstream_errors_become_provider_errors():
    provider, _ = make_provider(RuntimeError("rate limited"))
    with pytest.raises(ProviderError):
        await provider.generate_query("how many requests?")


@pytest.mark.asyncio
async def test_empty_content_is_an_error():
    provider, _ = make_provider((None, "stop"))
    with pytest.raises(ProviderError):
        await provider.explain_query("requests", ExplanationOptions())


def test_missing_api_key():
    provider = OpenAIQueryProvider(SystemConfig())
    with pytest.raises(ConfigurationError):
        provider.client
