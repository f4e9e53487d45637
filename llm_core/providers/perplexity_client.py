"""Perplexity 搜索型 Provider 客户端。

对话接口与 OpenAI 兼容，响应额外携带引用、搜索结果、相关问题等字段，
这些字段会随助手消息一起写入 ChatSession。

Perplexity 没有公开的 /models 与嵌入、图片接口：installed_models()
返回注册表中的模型，嵌入与图片操作在发起请求前直接抛出
UnsupportedOperationError。
"""

from typing import Dict, List, Optional, Sequence

from llm_core.domain.chat import ChatSession
from llm_core.domain.exceptions import UnsupportedOperationError
from llm_core.domain.models import EmbeddingOp, Model, ModelType, NormalizedResponse
from llm_core.providers.base import ResponseStream
from llm_core.providers.openai_client import OpenAIClient, Params
from llm_core.providers.perplexity_mapper import PerplexityJsonMapper
from llm_core.providers.registry import ProviderConfig, default_perplexity_config
from llm_core.providers.streaming import StreamCall


class PerplexityClient(OpenAIClient):
    name = "perplexity"
    mapper_class = PerplexityJsonMapper
    supports_responses_api = False
    supports_images = False

    @staticmethod
    def default_config() -> ProviderConfig:
        return default_perplexity_config()

    def installed_models(self) -> Dict[str, Model]:
        return self.registered_models()

    def embeddings(self, text: str, params: Params = None, op: EmbeddingOp = EmbeddingOp.DEFAULT) -> List[float]:
        raise UnsupportedOperationError("Perplexity does not support embeddings", provider=self.name)

    def embeddings_batch(
        self, texts: Sequence[str], params: Params = None, op: EmbeddingOp = EmbeddingOp.DEFAULT
    ) -> List[List[float]]:
        raise UnsupportedOperationError("Perplexity does not support embeddings", provider=self.name)

    # ---- 搜索 ----

    def web_search(self, query: str, params: Params = None) -> NormalizedResponse:
        return self.completion(None, query, params)

    def web_search_chat(self, chat: ChatSession, query: Optional[str], params: Params = None) -> NormalizedResponse:
        return self.chat_completion(chat, query, params)

    def web_search_stream(
        self,
        stream: ResponseStream,
        query: str,
        params: Params = None,
        call: Optional[StreamCall] = None,
    ) -> NormalizedResponse:
        return self.completion_stream(stream, None, query, params, call)

    def web_search_chat_stream(
        self,
        stream: ResponseStream,
        chat: ChatSession,
        query: Optional[str],
        params: Params = None,
        call: Optional[StreamCall] = None,
    ) -> NormalizedResponse:
        return self.chat_completion_stream(stream, chat, query, params, call)

    def supports_web_search(self, model: Optional[str]) -> bool:
        return self.is_model_type(model, ModelType.WEBSEARCH)

    def supports_citations(self, model: Optional[str]) -> bool:
        return self.is_model_type(model, ModelType.CITATIONS)
