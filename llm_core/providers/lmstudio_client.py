"""LM Studio 客户端（OpenAI 兼容端点，默认 http://localhost:1234/v1）。"""

from llm_core.providers.openai_client import OpenAIClient
from llm_core.providers.registry import ProviderConfig, default_lmstudio_config


class LMStudioClient(OpenAIClient):
    name = "lmstudio"
    detect_unknown_models = True
    supports_responses_api = False
    supports_images = False

    @staticmethod
    def default_config() -> ProviderConfig:
        return default_lmstudio_config()
