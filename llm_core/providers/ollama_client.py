"""Ollama 客户端。

Ollama 提供 OpenAI 兼容端点（默认 http://localhost:11434/v1），
本地服务不校验密钥，未配置时使用占位值 "ollama"。
"""

from llm_core.providers.openai_client import OpenAIClient
from llm_core.providers.registry import ProviderConfig, default_ollama_config


class OllamaClient(OpenAIClient):
    name = "ollama"
    detect_unknown_models = True
    supports_responses_api = False
    supports_images = False

    @staticmethod
    def default_config() -> ProviderConfig:
        return default_ollama_config()
