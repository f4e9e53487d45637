import pytest

from llm_core.api import service
from llm_core.domain.exceptions import UnsupportedOperationError
from llm_core.providers.openai_client import OpenAIClient
from llm_core.providers.perplexity_client import PerplexityClient


@pytest.fixture
def clients(monkeypatch):
    cache = {}
    monkeypatch.setattr(service, "_clients", cache)
    return cache


def _install(cache, name, cls, transport):
    cfg = cls.default_config()
    cfg.api_token = "test-key-123"
    cache[name] = cls(cfg, transport)


def test_run_chat_creates_session(clients, fake_transport, make_chat_payload):
    _install(clients, "openai", OpenAIClient, fake_transport([make_chat_payload("hi!")]))
    result = service.run_chat("hello", provider="openai")
    assert result["text"] == "hi!"
    assert result["message_count"] == 2
    assert result["usage"]["total_tokens"] == 4
    assert result["chat"].messages[0].content == "hello"


def test_run_completion(clients, fake_transport, make_chat_payload):
    _install(clients, "openai", OpenAIClient, fake_transport([make_chat_payload("42")]))
    result = service.run_completion("meaning of life?", system="be terse", provider="openai")
    assert result["text"] == "42"
    assert "citations" not in result


def test_run_web_search(clients, fake_transport, make_chat_payload):
    payload = make_chat_payload("news", citations=["https://n.example"], id="pplx-9")
    _install(clients, "perplexity", PerplexityClient, fake_transport([payload]))
    result = service.run_web_search("today?")
    assert result["citations"] == ["https://n.example"]
    assert result["chat_id"] == "pplx-9"


def test_run_web_search_requires_search_provider(clients, fake_transport):
    _install(clients, "openai", OpenAIClient, fake_transport([]))
    with pytest.raises(UnsupportedOperationError):
        service.run_web_search("today?", provider="openai")


def test_list_models(clients, fake_transport):
    _install(clients, "perplexity", PerplexityClient, fake_transport([]))
    models = service.list_models("perplexity")
    sonar = next(m for m in models if m["name"] == "sonar")
    assert "WEBSEARCH" in sonar["capabilities"]
