import base64
import struct

import pytest

from llm_core.domain.chat import ChatSession
from llm_core.domain.exceptions import (
    InvalidRequestError,
    RateLimitError,
    ResponseParseError,
    UpstreamServiceError,
)
from llm_core.domain.models import ImageResult, Model, ModelType, ReasoningEffort
from llm_core.providers.openai_mapper import OpenAIJsonMapper
from llm_core.providers.params import ParameterSet


def test_chat_request_orders_keys_and_appends_query():
    chat = ChatSession()
    chat.add_system("be brief")
    chat.add_user("first")
    chat.add_assistant("answer")
    params = ParameterSet(model="gpt-4o-mini", temperature=0.2, stream=True,
                          reasoning_effort=ReasoningEffort.LOW)
    params["seed"] = 7
    req = OpenAIJsonMapper().encode_chat_request(chat, "  second  ", params)
    assert list(req)[:4] == ["model", "reasoning_effort", "messages", "temperature"]
    assert req["reasoning_effort"] == "low"
    assert req["seed"] == 7
    assert [m["role"] for m in req["messages"]] == ["system", "user", "assistant", "user"]
    assert req["messages"][-1]["content"] == "second"


def test_chat_request_uses_chat_model_when_params_have_none():
    chat = ChatSession(model="chat-model")
    req = OpenAIJsonMapper().encode_chat_request(chat, "hi", ParameterSet())
    assert req["model"] == "chat-model"


def test_request_without_model_is_invalid():
    with pytest.raises(InvalidRequestError):
        OpenAIJsonMapper().encode_completion_request("sys", "hi", ParameterSet())


def test_completion_request_puts_system_first_and_skips_blank():
    mapper = OpenAIJsonMapper()
    req = mapper.encode_completion_request(" sys ", "q", ParameterSet(model="m"))
    assert req["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "q"}]
    req = mapper.encode_completion_request("   ", "q", ParameterSet(model="m"))
    assert req["messages"] == [{"role": "user", "content": "q"}]


def test_unknown_keys_pass_through_unless_strict():
    params = ParameterSet(model="m")
    params["custom_flag"] = True
    params["model_obj"] = object()
    req = OpenAIJsonMapper().encode_completion_request(None, "q", params)
    assert req["custom_flag"] is True
    assert "model_obj" not in req
    strict = OpenAIJsonMapper(strict=True).encode_completion_request(None, "q", params)
    assert "custom_flag" not in strict


def test_image_message_is_multimodal():
    chat = ChatSession(model="gpt-4o")
    chat.add_user("what is this?", image=ImageResult(data=b"\x89PNG", mime_type="image/png"))
    req = OpenAIJsonMapper().encode_chat_request(chat, None, ParameterSet())
    content = req["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "what is this?"}
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_decode_response_echo():
    payload = {
        "model": "gpt-4o-mini",
        "choices": [{"message": {"role": "assistant", "content": "echo"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }
    res = OpenAIJsonMapper().decode_response(payload)
    assert res.text == "echo"
    assert res.finish_reason == "stop"
    assert res.usage.total_tokens == 2
    assert res.citations is None
    assert res.has_extensions() is False


def test_decode_response_reasoning_key_order():
    payload = {"choices": [{"message": {"content": "x", "thinking": "t", "reasoning": "r"}}]}
    assert OpenAIJsonMapper().decode_response(payload).reasoning == "r"


def test_decode_legacy_text_choice():
    res = OpenAIJsonMapper().decode_response({"choices": [{"text": "legacy", "finish_reason": "length"}]})
    assert res.text == "legacy"
    assert res.finish_reason == "length"


@pytest.mark.parametrize("payload", [
    {},
    {"choices": []},
    {"choices": ["nope"]},
    {"choices": [{"message": "nope"}]},
    ["not", "a", "dict"],
])
def test_decode_malformed_response(payload):
    with pytest.raises(ResponseParseError):
        OpenAIJsonMapper().decode_response(payload)


def test_decode_stream_chunk():
    mapper = OpenAIJsonMapper()
    assert mapper.decode_stream_chunk("") == []
    assert mapper.decode_stream_chunk("[DONE]") == []
    events = mapper.decode_stream_chunk('{"choices":[{"delta":{"content":"Hel","reasoning_content":"r"}}]}')
    assert [(e.kind, e.text) for e in events] == [("reasoning", "r"), ("content", "Hel")]
    events = mapper.decode_stream_chunk('{"choices":[{"delta":{},"finish_reason":"stop"}]}')
    assert events[0].kind == "finish"
    assert events[0].finish_reason == "stop"
    with pytest.raises(ResponseParseError):
        mapper.decode_stream_chunk("{broken")


def test_embeddings_request_and_base64_response():
    mapper = OpenAIJsonMapper()
    model = Model.of("text-embedding-3-small", 8000, ModelType.EMBEDDING)
    req = mapper.encode_embeddings_request(["a"], model, dimensions=256, encoding_format="base64")
    assert req == {"input": ["a"], "model": "text-embedding-3-small", "dimensions": 256, "encoding_format": "base64"}

    raw = base64.b64encode(struct.pack("<2f", 3.0, 4.0)).decode()
    vectors = mapper.decode_embeddings_response({"data": [{"index": 1, "embedding": [0.0, 2.0]},
                                                          {"index": 0, "embedding": raw}]})
    assert vectors[0] == pytest.approx([0.6, 0.8])
    assert vectors[1] == pytest.approx([0.0, 1.0])
    with pytest.raises(ResponseParseError):
        mapper.decode_embeddings_response({"data": []})


def test_models_response_detects_capabilities():
    models = OpenAIJsonMapper().decode_models_response({
        "data": [{"id": "nomic-embed-text"}, {"name": "llava:7b", "context_length": 4096}, {"id": ""}]
    })
    assert [m.name for m in models] == ["nomic-embed-text", "llava:7b"]
    assert models[0].has(ModelType.EMBEDDING)
    assert models[0].embedding_dimensions == 1024
    assert models[1].has(ModelType.VISION)
    assert models[1].context_length == 4096


def test_image_response_url_and_b64():
    mapper = OpenAIJsonMapper()
    res = mapper.decode_image_response({"data": [{"url": "http://img", "revised_prompt": "a cat"}]})
    assert res.images[0].url == "http://img"
    assert res.finish_reason == "image_generated"
    assert res.text == "a cat"
    res = mapper.decode_image_response({"data": [{"b64_json": base64.b64encode(b"png").decode()}]})
    assert res.images[0].data == b"png"
    assert res.images[0].mime_type == "image/png"
    with pytest.raises(ResponseParseError):
        mapper.decode_image_response({"data": []})


def test_error_payload_is_classified():
    mapper = OpenAIJsonMapper()
    with pytest.raises(UpstreamServiceError, match="overloaded"):
        mapper.decode_response({"error": {"message": "overloaded", "type": "server_error"}})
    with pytest.raises(RateLimitError):
        mapper.decode_stream_chunk('{"error": {"message": "slow down", "code": 429}}')
    with pytest.raises(UpstreamServiceError, match="boom"):
        mapper.decode_stream_chunk('{"error": "boom"}')
