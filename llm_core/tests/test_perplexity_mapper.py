from llm_core.domain.models import SearchContextSize, SearchMode
from llm_core.providers.params import ParameterSet
from llm_core.providers.perplexity_mapper import PerplexityJsonMapper


def _params():
    p = ParameterSet(model="sonar", temperature=0.7).search_mode("web").search_recency_filter("week")
    p["unknown_flag"] = True
    return p


def test_completion_endpoint_drops_unknown_keys():
    req = PerplexityJsonMapper().encode_completion_request(None, "news?", _params())
    assert req["search_mode"] == "web"
    assert req["search_recency_filter"] == "week"
    assert "unknown_flag" not in req


def test_chat_endpoint_passes_unknown_keys():
    req = PerplexityJsonMapper().encode_chat_request(None, "news?", _params())
    assert req["unknown_flag"] is True
    assert list(req)[:3] == ["model", "messages", "temperature"]


def test_decode_extensions():
    payload = {
        "id": "pplx-1",
        "model": "sonar",
        "choices": [{"message": {"content": "answer"}, "finish_reason": "stop"}],
        "citations": ["https://a", "https://b"],
        "search_results": [{"title": "A", "url": "https://a", "date": "2025-01-01"}],
        "related_questions": ["why?"],
        "images": [{"image_url": "https://img", "origin_url": "https://a"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3, "num_search_queries": 2},
    }
    res = PerplexityJsonMapper().decode_response(payload)
    assert res.chat_id == "pplx-1"
    assert res.citations == ["https://a", "https://b"]
    assert res.search_results[0].title == "A"
    assert res.related_questions == ["why?"]
    assert res.images[0].url == "https://img"
    assert res.search_queries_count == 2
    meta = res.search_metadata()
    assert meta.citations == res.citations


def test_absent_extensions_stay_none():
    res = PerplexityJsonMapper().decode_response({
        "choices": [{"message": {"content": "x"}}],
        "citations": [],
    })
    assert res.citations is None
    assert res.search_results is None
    assert res.related_questions is None
    assert res.images is None
    assert res.search_metadata() is None


def test_stream_chunk_carries_citations():
    events = PerplexityJsonMapper().decode_stream_chunk(
        '{"id":"p1","choices":[{"delta":{"content":"!"},"finish_reason":"stop"}],"citations":["https://c"]}'
    )
    assert [e.kind for e in events] == ["content", "finish"]
    assert events[-1].extensions.citations == ["https://c"]
    assert events[-1].chat_id == "p1"


def test_search_enums_on_the_wire():
    p = ParameterSet(model="sonar").search_mode(SearchMode.ACADEMIC).search_context_size(SearchContextSize.LOW)
    req = PerplexityJsonMapper().encode_completion_request(None, "papers?", p)
    assert req["search_mode"] == "academic"
    assert req["web_search_options"] == {"search_context_size": "low"}
