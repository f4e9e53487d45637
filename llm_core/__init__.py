"""LLM Core 顶层包。

该包提供多家 LLM Provider（OpenAI、Perplexity、Ollama、LM Studio）的统一适配层，
包括配置加载、领域模型、模型注册表、参数合并、Wire Mapper、
HTTP 传输与错误分类、SSE 流式重组等能力。
"""

from llm_core.domain.chat import ChatSession, Message
from llm_core.domain.models import Model, ModelType, NormalizedResponse
from llm_core.providers import create_provider
from llm_core.providers.params import ParameterSet

__all__ = [
    "ChatSession",
    "Message",
    "Model",
    "ModelType",
    "NormalizedResponse",
    "ParameterSet",
    "create_provider",
]
