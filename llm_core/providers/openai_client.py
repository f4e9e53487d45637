"""OpenAI 兼容 Provider 客户端。

本模块负责：

1. 合并默认参数与调用方参数，确定本次使用的模型。
2. 通过 OpenAIJsonMapper 编码请求 / 解码响应。
3. 通过 Transport 发送 HTTP 请求（错误分类在传输层完成）。
4. 调用成功后更新 ChatSession（失败时会话保持不变）。

Ollama、LM Studio 只是换了默认配置的子类；Perplexity 在此基础上
替换了 Wire Mapper 并禁用了嵌入与图片操作。
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from llm_core.domain.chat import ChatSession
from llm_core.domain.exceptions import (
    InvalidRequestError,
    LLMError,
    ResponseParseError,
    UnsupportedOperationError,
)
from llm_core.domain.models import EmbeddingOp, Model, ModelType, NormalizedResponse
from llm_core.infrastructure.logging.logger import get_logger, log_event
from llm_core.providers.base import ResponseStream
from llm_core.providers.capabilities import detect_capabilities
from llm_core.providers.embeddings import cosine_similarity, format_embedding_input
from llm_core.providers.openai_mapper import OpenAIJsonMapper
from llm_core.providers.params import ParameterSet, merge, resolve_model_name
from llm_core.providers.registry import ProviderConfig, default_openai_config
from llm_core.providers.streaming import StreamCall, StreamReassembler, run_stream
from llm_core.providers.transport import HttpTransport, Transport


log = get_logger(__name__)

Params = Union[ParameterSet, Mapping[str, Any], None]

DEFAULT_SUMMARY_PROMPT = "Please provide a concise summary of the following conversation:"
UNKNOWN_CATEGORY = "Unknown"

_RESPONSES_API_PREFIXES = ("gpt-5", "o3", "o4")
_RESPONSES_API_NAMES = ("o1-preview", "o1-mini")


class OpenAIClient:
    """OpenAI 及其兼容服务的客户端。

    - config: ProviderConfig，未传入时使用 default_config() 生成的新配置。
    - transport: 默认 HttpTransport，测试中可替换为假实现。
    """

    name = "openai"
    mapper_class = OpenAIJsonMapper
    # 未在注册表中的模型是否按名称推断能力
    detect_unknown_models = False
    supports_responses_api = True
    supports_images = True

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[Transport] = None,
        mapper: Optional[OpenAIJsonMapper] = None,
    ):
        self.config = config if config is not None else self.default_config()
        self.mapper = mapper if mapper is not None else self.mapper_class(strict=self.config.strict_params)
        self.transport: Transport = transport if transport is not None else HttpTransport(
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            write_timeout=self.config.write_timeout,
            provider=self.config.name,
        )

    @staticmethod
    def default_config() -> ProviderConfig:
        return default_openai_config()

    # ---- 模型管理 ----

    def registered_models(self) -> Dict[str, Model]:
        return self.config.registry.registered()

    def installed_models(self) -> Dict[str, Model]:
        """查询 GET /models，并写入注册表的 installed 分区。"""

        data = self.transport.get_json(self.config.url("models"), self._headers())
        models = self.mapper.decode_models_response(data)
        self.config.registry.register_installed(models)
        log_event(log, logging.DEBUG, "Installed models refreshed", provider=self.name, count=len(models))
        return self.config.registry.installed()

    def all_models(self) -> Dict[str, Model]:
        return self.config.registry.all()

    def is_online(self) -> bool:
        try:
            self.installed_models()
        except LLMError as e:
            log_event(log, logging.INFO, "Provider is offline", provider=self.name, error=str(e))
            return False
        return True

    def default_model_name(self) -> str:
        return self.config.default_model or ""

    def find_model(self, *tags: ModelType) -> Optional[Model]:
        return self.config.registry.resolve(*tags)

    def find_model_name(self, params: Params = None) -> str:
        return resolve_model_name(ParameterSet.coerce(params), self.default_model_name()) or ""

    def model_info(self, name: Optional[str]) -> Optional[Model]:
        """注册表中的模型；找不到时按名称推断一个临时 Model。"""

        if not name:
            return None
        model = self.config.registry.by_name(name)
        if model is not None:
            return model
        return Model.of(name, None, *detect_capabilities(name))

    def is_model_type(self, name: Optional[str], tag: ModelType) -> bool:
        model = self.model_info(name) if self.detect_unknown_models else self.config.registry.by_name(name)
        return model is not None and model.has(tag)

    # ---- 对话 ----

    def completion(self, system: Optional[str], query: str, params: Params = None) -> NormalizedResponse:
        _require_text(query, "Query")
        p = self._prepare(params)
        p.stream = None
        payload = self.mapper.encode_completion_request(system, query, p)
        data = self._post("chat/completions", payload)
        return self.mapper.decode_response(data)

    def chat_completion(self, chat: ChatSession, query: Optional[str], params: Params = None) -> NormalizedResponse:
        _require_chat(chat, query)
        p = self._prepare(params, chat.model)
        p.stream = None
        payload = self.mapper.encode_chat_request(chat, query, p)
        data = self._post("chat/completions", payload)
        response = self.mapper.decode_response(data)
        self._record(chat, query, response)
        return response

    def completion_stream(
        self,
        stream: ResponseStream,
        system: Optional[str],
        query: str,
        params: Params = None,
        call: Optional[StreamCall] = None,
    ) -> NormalizedResponse:
        """流式 completion；阻塞直到流结束，增量通过 stream 回调推送。"""

        _require_sink(stream)
        _require_text(query, "Query")
        p = self._prepare(params)
        p.stream = True
        payload = self.mapper.encode_completion_request(system, query, p)
        return self._stream("chat/completions", payload, stream, call)

    def chat_completion_stream(
        self,
        stream: ResponseStream,
        chat: ChatSession,
        query: Optional[str],
        params: Params = None,
        call: Optional[StreamCall] = None,
    ) -> NormalizedResponse:
        _require_sink(stream)
        _require_chat(chat, query)
        p = self._prepare(params, chat.model)
        p.stream = True
        payload = self.mapper.encode_chat_request(chat, query, p)
        response = self._stream("chat/completions", payload, stream, call)
        self._record(chat, query, response)
        return response

    # ---- 嵌入 ----

    def embeddings(
        self, text: str, params: Params = None, op: EmbeddingOp = EmbeddingOp.DEFAULT
    ) -> List[float]:
        _require_text(text, "Text")
        return self.embeddings_batch([text], params, op)[0]

    def embeddings_batch(
        self, texts: Sequence[str], params: Params = None, op: EmbeddingOp = EmbeddingOp.DEFAULT
    ) -> List[List[float]]:
        if not texts:
            raise InvalidRequestError("Texts cannot be empty")
        for t in texts:
            _require_text(t, "Text")
        p = merge(self.config.default_params, params)
        model = self._embedding_model(p)
        dimensions = p.get("dimensions")
        size = p.get("vec_size") or dimensions
        inputs = [format_embedding_input(t.strip(), model, op) for t in texts]
        payload = self.mapper.encode_embeddings_request(
            inputs, model, dimensions=dimensions, encoding_format=p.get("encoding_format")
        )
        data = self._post("embeddings", payload)
        vectors = self.mapper.decode_embeddings_response(data, size)
        if len(vectors) != len(texts):
            raise ResponseParseError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}", provider=self.name
            )
        return vectors

    def rerank(self, subject: str, candidates: Sequence[str], params: Params = None) -> List[float]:
        """按余弦相似度给候选文本打分，顺序与 candidates 一致。"""

        if not candidates:
            return []
        query_vec = self.embeddings(subject, params, EmbeddingOp.QUERY)
        doc_vecs = self.embeddings_batch(candidates, params, EmbeddingOp.DOCUMENT)
        return [cosine_similarity(query_vec, d) for d in doc_vecs]

    def _embedding_model(self, params: ParameterSet) -> Model:
        """在发起网络请求之前确定嵌入模型并校验能力。"""

        if params.model:
            model = self.model_info(params.model)
        else:
            model = self.find_model(ModelType.EMBEDDING)
            if model is None or not model.has(ModelType.EMBEDDING):
                raise UnsupportedOperationError(
                    f"No embedding model registered for {self.name}", provider=self.name
                )
        if model is None or not model.has(ModelType.EMBEDDING):
            raise UnsupportedOperationError(
                f"Model {params.model} does not support embeddings", provider=self.name
            )
        return model

    # ---- 图片 ----

    def generate_image(self, prompt: str, params: Params = None) -> NormalizedResponse:
        _require_text(prompt, "Prompt")
        p = self._image_params(params)
        payload = self.mapper.encode_image_generation_request(prompt.strip(), p)
        return self.mapper.decode_image_response(self._post("images/generations", payload))

    def edit_image(
        self, image: bytes, prompt: str, mask: Optional[bytes] = None, params: Params = None
    ) -> NormalizedResponse:
        _require_text(prompt, "Prompt")
        if not image:
            raise InvalidRequestError("Image data cannot be empty")
        p = self._image_params(params)
        files: Dict[str, Any] = {"image": ("image.png", image, "image/png")}
        if mask:
            files["mask"] = ("mask.png", mask, "image/png")
        form = self.mapper.encode_image_edit_request(prompt.strip(), p)
        return self._post_images("images/edits", form, files)

    def create_image_variation(self, image: bytes, params: Params = None) -> NormalizedResponse:
        if not image:
            raise InvalidRequestError("Image data cannot be empty")
        p = self._image_params(params)
        files = {"image": ("image.png", image, "image/png")}
        form = self.mapper.encode_image_edit_request(None, p)
        return self._post_images("images/variations", form, files)

    def _image_params(self, params: Params) -> ParameterSet:
        if not self.supports_images:
            raise UnsupportedOperationError(f"{self.name} does not support image operations", provider=self.name)
        p = ParameterSet.coerce(params)
        if not p.model:
            model = self.find_model(ModelType.IMAGE)
            if model is not None and model.has(ModelType.IMAGE):
                p.model = model.name
        elif not self.model_info(p.model).has(ModelType.IMAGE):
            raise UnsupportedOperationError(f"Model {p.model} does not support image generation", provider=self.name)
        return p

    def _post_images(self, endpoint: str, form: Dict[str, Any], files: Dict[str, Any]) -> NormalizedResponse:
        headers = self._headers()
        headers.pop("Content-Type", None)
        data = self.transport.post_multipart(self.config.url(endpoint), form, files, headers)
        return self.mapper.decode_image_response(data)

    # ---- 工具操作 ----

    def token_count(self, text: Optional[str], model: Optional[str] = None) -> int:
        """粗略估算：约 4 个字符 1 个 token。"""

        if not text:
            return 0
        return math.ceil(len(text) / 4)

    def summarize_text(self, text: str, summary_prompt: Optional[str] = None, params: Params = None) -> str:
        _require_text(text, "Text")
        prompt = summary_prompt or DEFAULT_SUMMARY_PROMPT
        response = self.completion(None, f"{prompt}\n\n{text.strip()}", params)
        return (response.text or "").strip()

    def summarize_chat(
        self, chat: ChatSession, summary_prompt: Optional[str] = None, params: Params = None
    ) -> ChatSession:
        """把会话压缩成一条助手消息，返回新会话；原会话不变。"""

        if chat is None:
            raise InvalidRequestError("Chat session cannot be None")
        summary = self.summarize_text(chat.transcript(), summary_prompt, params)
        result = ChatSession(model=chat.model)
        for message in chat.messages:
            if message.role == "system":
                result.add_system(message.content)
        result.add_assistant(summary)
        return result

    def classify_content(
        self, markdown: str, names: Sequence[str], descriptions: Optional[Sequence[str]] = None
    ) -> str:
        """把内容归入给定类别之一，无法归类时返回 "Unknown"。"""

        if not markdown or not names:
            return UNKNOWN_CATEGORY
        lines = "\n".join(f"- {d}" for d in (descriptions or names))
        system = (
            "You are an expert content classifier. Given a piece of content in markdown format, "
            "classify it into one of the provided categories. Respond with only the category name, "
            "no explanations nor descriptions. If none fit, respond with 'Unknown'.\n\n"
            f"Categories - Descriptions:\n{lines}"
        )
        query = f"Classify the following content:\n\n{markdown}\n\nChoose one of the categories above."
        answer = (self.completion(system, query).text or "").strip()
        for name in names:
            if name.lower() == answer.lower():
                return name
        # 先匹配较长的类别名，避免被较短的名字截胡
        for name in sorted(names, key=len, reverse=True):
            if name in answer:
                return name
        return UNKNOWN_CATEGORY

    # ---- 内部工具 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.resolve_api_token()}",
            "Content-Type": "application/json",
        }

    def _prepare(self, params: Params, chat_model: Optional[str] = None) -> ParameterSet:
        """合并默认参数并确定模型：params.model > 会话模型 > 配置默认模型。"""

        p = merge(self.config.default_params, params)
        p.model = resolve_model_name(p, chat_model or self.config.default_model)
        if self._uses_responses_api(p.model):
            p.rename("max_tokens", "max_completion_tokens")
        return p

    def _uses_responses_api(self, model: Optional[str]) -> bool:
        if not model or not self.supports_responses_api:
            return False
        if "openai" not in self.config.base_url.lower():
            return False
        known = self.config.registry.by_name(model)
        if known is not None:
            return known.has(ModelType.RESPONSES_API)
        return model.startswith(_RESPONSES_API_PREFIXES) or model in _RESPONSES_API_NAMES

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self.config.url(endpoint)
        try:
            return self.transport.post_json(url, payload, self._headers())
        except LLMError as e:
            log_event(log, logging.ERROR, "Provider request failed", provider=self.name,
                      url=url, model=payload.get("model"), code=e.code, status=e.http_status)
            raise

    def _stream(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        sink: ResponseStream,
        call: Optional[StreamCall],
    ) -> NormalizedResponse:
        url = self.config.url(endpoint)
        reassembler = StreamReassembler(self.mapper, sink, self.name)
        return run_stream(
            lambda: self.transport.stream_lines(url, payload, self._headers()),
            reassembler,
            call,
        )

    def _record(self, chat: ChatSession, query: Optional[str], response: NormalizedResponse) -> None:
        """调用成功后把用户问题和助手回复追加到会话。"""

        if query is not None and query.strip():
            chat.add_user(query)
        chat.add_assistant(response.text or "", response.reasoning, response.search_metadata())
        if response.chat_id:
            chat.id = response.chat_id


def _require_text(value: Optional[str], label: str) -> None:
    if value is None or not str(value).strip():
        raise InvalidRequestError(f"{label} cannot be empty")


def _require_chat(chat: Optional[ChatSession], query: Optional[str]) -> None:
    if chat is None:
        raise InvalidRequestError("Chat session cannot be None")
    if (query is None or not query.strip()) and not chat.messages:
        raise InvalidRequestError("Query cannot be empty when the chat has no messages")


def _require_sink(stream: Optional[ResponseStream]) -> None:
    if stream is None:
        raise InvalidRequestError("Response stream cannot be None")
