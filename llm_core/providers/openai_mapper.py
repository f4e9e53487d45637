"""OpenAI 兼容协议的 JSON 映射。

本模块负责“统一模型 ⇄ OpenAI JSON”的双向转换，不做任何网络调用：

1. 把 ChatSession / system+query 与合并后的 ParameterSet 编码成
   /chat/completions 请求体（固定键顺序，枚举转小写字符串）。
2. 把非流式响应解析为 NormalizedResponse，把 SSE 数据块解析为 StreamEvent。
3. 嵌入、模型列表、图片生成/编辑/变体的请求与响应。

Ollama、LM Studio 使用同一套协议，直接复用此映射；Perplexity 在此基础上
扩展了搜索相关字段（见 perplexity_mapper.py）。
"""

import base64
import json
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from llm_core.domain.chat import ChatSession, Message
from llm_core.domain.exceptions import InvalidRequestError, ResponseParseError
from llm_core.domain.models import (
    END_REASON_IMAGE_GENERATED,
    ImageResult,
    Model,
    ModelType,
    NormalizedResponse,
    StreamEvent,
    Usage,
)
from llm_core.infrastructure.logging.logger import get_logger, log_event
from llm_core.providers.capabilities import detect_capabilities
from llm_core.providers.embeddings import to_vector
from llm_core.providers.params import ParameterSet, plain_value, resolve_model_name
from llm_core.providers.transport import classify_payload_error


log = get_logger(__name__)

CHAT = "chat"
COMPLETION = "completion"

DEFAULT_EMBEDDING_DIMENSIONS = 1024


class OpenAIJsonMapper:
    """OpenAI 兼容 Provider 的 Wire Mapper。

    - allowed_keys: 已知会被 Provider 接受的参数，原样转发。
    - key_order: 请求体中键的固定顺序，未列出的键按出现顺序排在后面。
    - reasoning_keys: 推理内容的候选字段，取第一个存在的。
    - unsupported_keys: 按端点声明的不支持参数，编码时丢弃。
    - drop_unknown: 按端点声明是否丢弃 allowed_keys 以外的参数。
    """

    name = "openai"

    allowed_keys: Tuple[str, ...] = (
        "temperature",
        "max_tokens",
        "max_completion_tokens",
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "stop",
        "stream",
        "n",
        "seed",
        "response_format",
        "tools",
        "tool_choice",
        "reasoning_effort",
    )
    key_order: Tuple[str, ...] = (
        "model",
        "reasoning_effort",
        "messages",
        "temperature",
        "max_tokens",
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "stop",
        "stream",
    )
    reasoning_keys: Tuple[str, ...] = ("reasoning_content", "reasoning", "thinking", "thoughts", "think")
    unsupported_keys: Dict[str, FrozenSet[str]] = {
        CHAT: frozenset({"model_obj"}),
        COMPLETION: frozenset({"model_obj"}),
    }
    drop_unknown: Dict[str, bool] = {CHAT: False, COMPLETION: False}

    def __init__(self, strict: bool = False):
        # strict=True 时所有端点都只转发 allowed_keys
        self.strict = strict

    # ---- 请求编码 ----

    def encode_chat_request(
        self, chat: Optional[ChatSession], query: Optional[str], params: ParameterSet
    ) -> Dict[str, Any]:
        model = resolve_model_name(params, chat.model if chat is not None else None)
        if not model:
            raise InvalidRequestError("Model must be specified for chat completion request")
        messages: List[Dict[str, Any]] = []
        if chat is not None:
            messages.extend(self.message_to_payload(m) for m in chat.messages)
        if query is not None and query.strip():
            messages.append({"role": "user", "content": query.strip()})
        request: Dict[str, Any] = {"model": model, "messages": messages}
        self._apply_params(request, params, CHAT)
        return self._order(request)

    def encode_completion_request(
        self, system: Optional[str], query: Optional[str], params: ParameterSet
    ) -> Dict[str, Any]:
        model = resolve_model_name(params, None)
        if not model:
            raise InvalidRequestError("Model must be specified for completion request")
        messages: List[Dict[str, Any]] = []
        if system is not None and system.strip():
            messages.append({"role": "system", "content": system.strip()})
        if query is not None and query.strip():
            messages.append({"role": "user", "content": query.strip()})
        request: Dict[str, Any] = {"model": model, "messages": messages}
        self._apply_params(request, params, COMPLETION)
        return self._order(request)

    def _apply_params(self, request: Dict[str, Any], params: Optional[ParameterSet], endpoint: str) -> None:
        if params is None:
            return
        unsupported = self.unsupported_keys.get(endpoint, frozenset())
        drop_unknown = self.strict or self.drop_unknown.get(endpoint, False)
        for key, value in params.items():
            if key == "model" or value is None:
                continue
            if key in unsupported:
                log_event(log, logging.DEBUG, "Dropping unsupported parameter",
                          provider=self.name, endpoint=endpoint, key=key)
                continue
            if drop_unknown and key not in self.allowed_keys:
                level = logging.WARNING if self.strict else logging.DEBUG
                log_event(log, level, "Dropping unknown parameter",
                          provider=self.name, endpoint=endpoint, key=key)
                continue
            request[key] = plain_value(value)

    def _order(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ordered: Dict[str, Any] = {}
        for key in self.key_order:
            if key in request:
                ordered[key] = request.pop(key)
        ordered.update(request)
        return ordered

    def message_to_payload(self, message: Message) -> Dict[str, Any]:
        """把一条 Message 转成 OpenAI 消息；带图片时使用多模态 content 数组。"""

        if message.image is None:
            return {"role": message.role, "content": message.content}
        parts: List[Dict[str, Any]] = []
        if message.content and message.content.strip():
            parts.append({"type": "text", "text": message.content.strip()})
        parts.append(self.image_part(message.image, message.meta.get("detail")))
        return {"role": message.role, "content": parts}

    @staticmethod
    def image_part(image: ImageResult, detail: Optional[str] = None) -> Dict[str, Any]:
        if image.url:
            image_url: Dict[str, Any] = {"url": image.url}
        elif image.data is not None:
            mime = image.mime_type or "image/jpeg"
            encoded = base64.b64encode(image.data).decode("ascii")
            image_url = {"url": f"data:{mime};base64,{encoded}"}
        else:
            raise InvalidRequestError("Image content must contain either url or data")
        if detail:
            image_url["detail"] = detail
        return {"type": "image_url", "image_url": image_url}

    # ---- 响应解码 ----

    def decode_response(self, payload: Dict[str, Any]) -> NormalizedResponse:
        """解析非流式响应；结构不合法时抛 ResponseParseError，不返回半成品。"""

        if not isinstance(payload, dict):
            raise ResponseParseError(f"{self.name} response is not a JSON object")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            if payload.get("error"):
                raise classify_payload_error(payload["error"], self.name)
            raise ResponseParseError(f"{self.name} response has no choices", payload=_preview(payload))
        first = choices[0]
        if not isinstance(first, dict):
            raise ResponseParseError(f"{self.name} response choice is not an object")

        text: Optional[str] = None
        reasoning: Optional[str] = None
        message = first.get("message")
        if message is not None:
            if not isinstance(message, dict):
                raise ResponseParseError(f"{self.name} response message is not an object")
            text = _as_text(message.get("content"))
            reasoning = self._reasoning(message)
        elif "text" in first:
            # 旧版 /completions 返回 choices[].text
            text = _as_text(first.get("text"))
        else:
            raise ResponseParseError(f"{self.name} response choice has no message")

        usage_raw = payload.get("usage")
        response = NormalizedResponse(
            text=text,
            reasoning=reasoning,
            finish_reason=first.get("finish_reason"),
            usage=Usage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None,
            model=payload.get("model"),
            chat_id=self._response_id(payload),
            raw=payload,
        )
        self.extract_extensions(payload, response)
        return response

    def _reasoning(self, message: Dict[str, Any]) -> Optional[str]:
        for key in self.reasoning_keys:
            value = message.get(key)
            if value is not None:
                return _as_text(value)
        return None

    def _response_id(self, payload: Dict[str, Any]) -> Optional[str]:
        return None

    def extract_extensions(self, payload: Dict[str, Any], response: NormalizedResponse) -> None:
        """OpenAI 没有搜索扩展字段，子类覆盖。"""

    def decode_stream_chunk(self, data: str) -> List[StreamEvent]:
        """解析一个 SSE data 内容（已去掉 "data:" 前缀）。

        空行和 [DONE] 返回空列表；JSON 不合法抛 ResponseParseError。
        """

        if data is None or not data.strip() or data.strip() == "[DONE]":
            return []
        try:
            chunk = json.loads(data)
        except ValueError as e:
            raise ResponseParseError(f"Failed to parse streaming chunk: {e}", cause=e, chunk=data[:200])
        if not isinstance(chunk, dict):
            raise ResponseParseError("Streaming chunk is not a JSON object", chunk=data[:200])
        # 流中途的失败以 {"error": {...}} 数据块下发，不带 choices
        if chunk.get("error"):
            raise classify_payload_error(chunk["error"], self.name)

        events: List[StreamEvent] = []
        model = chunk.get("model")
        chat_id = self._response_id(chunk)
        choices = chunk.get("choices")
        finish_reason = None
        if isinstance(choices, list) and choices:
            first = choices[0]
            if not isinstance(first, dict):
                raise ResponseParseError("Streaming choice is not an object", chunk=data[:200])
            delta = first.get("delta")
            if delta is None and "text" in first:
                delta = {"content": first.get("text")}
            if isinstance(delta, dict):
                reasoning = self._reasoning(delta)
                if reasoning:
                    events.append(StreamEvent(kind="reasoning", text=reasoning, model=model, chat_id=chat_id))
                content = delta.get("content")
                if isinstance(content, str) and content:
                    events.append(StreamEvent(kind="content", text=content, model=model, chat_id=chat_id))
            finish_reason = first.get("finish_reason")

        usage_raw = chunk.get("usage")
        usage = Usage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None
        extensions = NormalizedResponse()
        self.extract_extensions(chunk, extensions)
        ext = extensions if extensions.has_extensions() or extensions.search_queries_count is not None else None

        if finish_reason:
            events.append(StreamEvent(kind="finish", finish_reason=finish_reason, usage=usage,
                                      extensions=ext, model=model, chat_id=chat_id))
        elif usage is not None or ext is not None or (chat_id and not events):
            events.append(StreamEvent(kind="metadata", usage=usage, extensions=ext, model=model, chat_id=chat_id))
        return events

    # ---- 嵌入 ----

    def encode_embeddings_request(
        self,
        inputs: Any,
        model: Model,
        dimensions: Optional[int] = None,
        encoding_format: Optional[str] = None,
    ) -> Dict[str, Any]:
        if model is None:
            raise InvalidRequestError("Model must be specified for embeddings request")
        request: Dict[str, Any] = {"input": inputs, "model": model.name}
        if dimensions is not None:
            request["dimensions"] = dimensions
        if encoding_format is not None:
            request["encoding_format"] = encoding_format
        return request

    def decode_embeddings_response(self, payload: Dict[str, Any], size: Optional[int] = None) -> List[List[float]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data:
            raise ResponseParseError("No embedding data found in response")
        vectors: List[List[float]] = []
        # data[].index 存在时按 index 排序，保证与输入顺序一致
        items = sorted(
            (d for d in data if isinstance(d, dict)),
            key=lambda d: d.get("index", 0) if isinstance(d.get("index"), int) else 0,
        )
        for item in items:
            if item.get("embedding") is None:
                continue
            vectors.append(to_vector(item["embedding"], size))
        if not vectors:
            raise ResponseParseError("No embedding vectors found in response")
        return vectors

    # ---- 模型列表 ----

    def decode_models_response(self, payload: Dict[str, Any]) -> List[Model]:
        """解析 GET /models，按模型名推断能力标签。"""

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ResponseParseError("No model data found in response")
        models: List[Model] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            model_id = item.get("id") or item.get("name")
            if not model_id:
                continue
            context = item.get("context_length") or item.get("max_context_length")
            caps = detect_capabilities(model_id, item)
            dims = DEFAULT_EMBEDDING_DIMENSIONS if ModelType.EMBEDDING in caps else None
            models.append(Model.of(
                model_id,
                int(context) if isinstance(context, (int, float)) else None,
                *caps,
                embedding_dimensions=dims,
            ))
        return models

    # ---- 图片 ----

    def encode_image_generation_request(self, prompt: str, params: ParameterSet) -> Dict[str, Any]:
        request: Dict[str, Any] = {"prompt": prompt}
        for key, value in params.items():
            request[key] = plain_value(value)
        return request

    def encode_image_edit_request(self, prompt: Optional[str], params: ParameterSet) -> Dict[str, Any]:
        """编辑/变体请求的表单字段；图片本身作为 multipart 文件另行发送。"""

        form: Dict[str, Any] = {}
        if prompt is not None:
            form["prompt"] = prompt
        for key, value in params.items():
            if isinstance(value, (dict, list)):
                form[key] = json.dumps(value)
            else:
                form[key] = plain_value(value)
        return form

    def decode_image_response(self, payload: Dict[str, Any]) -> NormalizedResponse:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data:
            raise ResponseParseError("No image data found in response")
        images: List[ImageResult] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            if item.get("url"):
                image = ImageResult(url=item["url"])
            elif item.get("b64_json"):
                try:
                    raw = base64.b64decode(item["b64_json"])
                except (ValueError, TypeError) as e:
                    raise ResponseParseError(f"Failed to decode base64 image data: {e}", cause=e)
                image = ImageResult(data=raw, mime_type="image/png")
            else:
                continue
            image.revised_prompt = item.get("revised_prompt")
            images.append(image)
        if not images:
            raise ResponseParseError("No valid image data found in response")
        usage_raw = payload.get("usage")
        return NormalizedResponse(
            text=images[0].revised_prompt,
            finish_reason=END_REASON_IMAGE_GENERATED,
            usage=Usage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None,
            raw=payload,
            images=images,
        )


def _as_text(value: Any) -> Optional[str]:
    """content 可能是字符串，也可能是 [{"type": "text", "text": ...}] 数组。"""

    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(_part_text(p) for p in value)
    return str(value)


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return ""


def _preview(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)[:200]


def string_list(value: Any) -> Optional[List[str]]:
    """非空字符串列表，否则 None。"""

    if not isinstance(value, list):
        return None
    items = [str(v) for v in value if v is not None]
    return items or None


def dict_items(value: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]
