"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护模型注册表与 Provider 配置 (registry、capabilities)。
- 参数合并 (params)、Wire Mapper (openai_mapper、perplexity_mapper)。
- HTTP 传输与错误分类 (transport)、流式重组 (streaming)。
- 提供各厂商的具体实现 (openai_client、ollama_client、lmstudio_client、perplexity_client)。
"""

from typing import Dict, Literal, Optional, Type

from llm_core.config.settings import settings
from llm_core.domain.exceptions import ConfigurationError
from llm_core.providers.lmstudio_client import LMStudioClient
from llm_core.providers.ollama_client import OllamaClient
from llm_core.providers.openai_client import OpenAIClient
from llm_core.providers.perplexity_client import PerplexityClient
from llm_core.providers.registry import ProviderConfig, get_provider_config
from llm_core.providers.transport import Transport


PROVIDERS: Dict[str, Type[OpenAIClient]] = {
    "openai": OpenAIClient,
    "ollama": OllamaClient,
    "lmstudio": LMStudioClient,
    "perplexity": PerplexityClient,
}


def create_provider(
    name: Optional[str] = None,
    config: Optional[ProviderConfig] = None,
    transport: Optional[Transport] = None,
) -> OpenAIClient:
    """根据名称创建 Provider 实例，默认取配置中的 default_provider。"""

    provider_name = (name or settings.default_provider).strip().lower().replace("_", "").replace("-", "")
    cls = PROVIDERS.get(provider_name)
    if cls is None:
        raise ConfigurationError(f"Unknown provider: {name!r}")
    if config is None:
        config = get_provider_config(provider_name, settings)
    return cls(config=config, transport=transport)


ProviderName = Literal["openai", "ollama", "lmstudio", "perplexity"]
