"""模型注册表与 Provider 配置。

本模块负责两件事：

1. ModelRegistry：保存已知模型及其能力标签，分为 registered（用户声明）
   和 installed（Provider 上报）两个分区，并按能力选出“最合适”的模型。
2. ProviderConfig：某个 Provider 的运行时配置（地址、凭证、默认模型、默认参数、
   注册表）。每次调用 default_*_config() 都会得到一份新的配置值，
   由调用方显式传给客户端，不存在进程级可变单例。

注册表在配置阶段写入，请求处理期间只读，因此读取不加锁；
register() 不应与 resolve() 并发调用。
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from llm_core.config.settings import Settings, settings as default_settings
from llm_core.domain.exceptions import AuthenticationError, ConfigurationError
from llm_core.domain.models import Model, ModelType, SearchMode
from llm_core.providers.params import ParameterSet


class ModelRegistry:
    """模型注册表。

    - registered: 用户声明的模型，按注册顺序保存。
    - installed: Provider 上报的模型（如 /models 接口）。
    - all(): 两者并集，同名时 registered 覆盖 installed，
      installed 独有的模型不会被丢弃。
    """

    def __init__(self, models: Iterable[Model] = ()):
        self._registered: Dict[str, Model] = {}
        self._installed: Dict[str, Model] = {}
        for m in models:
            self.register(m)

    def register(self, model: Optional[Model]) -> bool:
        """注册模型；同名模型已存在时返回 False 且不覆盖。"""

        if model is None or not isinstance(model, Model):
            raise ConfigurationError("Cannot register an empty model")
        if not model.name or not model.name.strip():
            raise ConfigurationError("Model name must not be blank", model=repr(model))
        if model.name in self._registered:
            return False
        self._registered[model.name] = model
        return True

    def register_installed(self, models: Iterable[Model]) -> None:
        """用 Provider 上报的模型替换 installed 分区。"""

        installed: Dict[str, Model] = {}
        for m in models:
            if m is None or not m.name:
                raise ConfigurationError("Provider reported a model without name")
            installed.setdefault(m.name, m)
        self._installed = installed

    def resolve(self, *tags: ModelType) -> Optional[Model]:
        """返回覆盖请求标签数量最多的已注册模型。

        只有严格更多的匹配数才会替换当前候选，因此平局时先注册者胜出。
        没有任何模型匹配时返回 None。
        """

        selected: Optional[Model] = None
        best = 0
        for model in self._registered.values():
            score = model.count_matches(tags)
            if score > best:
                best = score
                selected = model
        return selected

    def by_name(self, name: Optional[str]) -> Optional[Model]:
        if not name:
            return None
        key = name.strip()
        merged = self.all()
        if key in merged:
            return merged[key]
        for model in merged.values():
            if model.alias and model.alias == key:
                return model
        return None

    def registered(self) -> Dict[str, Model]:
        return dict(self._registered)

    def installed(self) -> Dict[str, Model]:
        return dict(self._installed)

    def all(self) -> Dict[str, Model]:
        merged = dict(self._installed)
        merged.update(self._registered)
        return merged

    def names(self) -> List[str]:
        return list(self.all().keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.by_name(name) is not None

    def __len__(self) -> int:
        return len(self.all())


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。

    - api_token / api_token_env: 显式凭证优先，其次读取该环境变量。
    - fallback_token: 本地服务（Ollama、LM Studio）不校验密钥时使用的占位值。
    - strict_params: 为 True 时丢弃 Wire Mapper 不认识的参数键。
    """

    name: str
    base_url: str
    registry: ModelRegistry = field(default_factory=ModelRegistry)
    api_token: Optional[str] = None
    api_token_env: Optional[str] = None
    fallback_token: Optional[str] = None
    default_model: Optional[str] = None
    default_params: ParameterSet = field(default_factory=ParameterSet)
    connect_timeout: float = 30.0
    read_timeout: float = 120.0
    write_timeout: float = 30.0
    strict_params: bool = False

    def resolve_api_token(self) -> str:
        token = (self.api_token or "").strip()
        if not token and self.api_token_env:
            token = (os.getenv(self.api_token_env) or "").strip()
        if not token and self.fallback_token:
            token = self.fallback_token
        if not token:
            raise AuthenticationError(
                f"API token not configured for {self.name}. "
                f"Set {self.api_token_env or 'an API token'} or provide api_token in ProviderConfig.",
                code="MISSING_API_KEY",
            )
        return token

    def url(self, endpoint: str) -> str:
        return f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"


def _timeouts(cfg: Settings) -> Dict[str, float]:
    return {
        "connect_timeout": cfg.connect_timeout,
        "read_timeout": cfg.read_timeout,
        "write_timeout": cfg.write_timeout,
    }


def default_openai_config(cfg: Settings = default_settings) -> ProviderConfig:
    T = ModelType
    registry = ModelRegistry([
        Model.of("gpt-5-nano", 400000, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS, T.RESPONSES_API, T.FAST),
        Model.of("gpt-5-mini", 400000, T.REASONING, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS, T.RESPONSES_API),
        Model.of("gpt-5", 400000, T.REASONING, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS, T.RESPONSES_API),
        Model.of("gpt-4.1", 1047576, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS),
        Model.of("gpt-4o-mini", 128000, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS, T.FAST),
        Model.of("gpt-4.1-mini", 1047576, T.LANGUAGE, T.VISION, T.CODING, T.BATCH, T.TOOLS, T.FAST),
        Model.of("text-embedding-3-small", 8000, T.EMBEDDING, T.EMBEDDING_DIMENSION, T.BATCH, embedding_dimensions=1536),
        Model.of("o3-mini", 128000, T.REASONING, T.LANGUAGE, T.CODING, T.BATCH, T.TOOLS, T.RESPONSES_API),
        Model.of("dall-e-3", 4000, T.IMAGE),
    ])
    return ProviderConfig(
        name="openai",
        base_url=cfg.openai_base_url,
        registry=registry,
        api_token=cfg.openai_api_key,
        api_token_env="OPENAI_API_KEY",
        default_model="gpt-4o-mini",
        **_timeouts(cfg),
    )


def default_ollama_config(cfg: Settings = default_settings) -> ProviderConfig:
    T = ModelType
    registry = ModelRegistry([
        Model.of("snowflake-arctic-embed2:latest", 8000, T.EMBEDDING, T.EMBEDDING_DIMENSION,
                 alias="snowflake", embedding_dimensions=1024),
        Model.of("nomic-embed-text:latest", 8000, T.EMBEDDING, T.EMBEDDING_DIMENSION,
                 alias="nomic", embedding_dimensions=768),
        Model.of("phi3.5:3.8b-mini-instruct-q5_K_M", 16000, T.LANGUAGE, T.FAST, alias="phi3.5-mini"),
        Model.of("qwen3:8b", 32000, T.LANGUAGE, T.REASONING, T.CODING, alias="qwen3"),
    ])
    return ProviderConfig(
        name="ollama",
        base_url=cfg.ollama_base_url,
        registry=registry,
        api_token=cfg.ollama_api_key,
        api_token_env="OLLAMA_API_KEY",
        fallback_token="ollama",
        default_model="phi3.5:3.8b-mini-instruct-q5_K_M",
        **_timeouts(cfg),
    )


def default_lmstudio_config(cfg: Settings = default_settings) -> ProviderConfig:
    T = ModelType
    registry = ModelRegistry([
        Model.of("llama-3.1-8b-instruct", 128000, T.LANGUAGE, T.REASONING, T.CODING, alias="llama3.1-8b"),
        Model.of("llama-3.2-3b-instruct", 128000, T.LANGUAGE, T.CODING, T.FAST, alias="llama3.2-3b"),
        Model.of("mistral-7b-instruct-v0.3", 32000, T.LANGUAGE, T.CODING, alias="mistral-7b"),
        Model.of("phi-3.5-mini-instruct", 128000, T.LANGUAGE, T.REASONING, alias="phi3.5-mini"),
        Model.of("llava-1.5-7b", 4096, T.LANGUAGE, T.VISION, alias="llava-7b"),
        Model.of("nomic-embed-text-v1.5", 8192, T.EMBEDDING, T.EMBEDDING_DIMENSION,
                 alias="nomic-embed", embedding_dimensions=768),
    ])
    return ProviderConfig(
        name="lmstudio",
        base_url=cfg.lmstudio_base_url,
        registry=registry,
        api_token=cfg.lmstudio_api_key,
        api_token_env="LMSTUDIO_API_KEY",
        fallback_token="lm-studio",
        default_model="llama-3.1-8b-instruct",
        **_timeouts(cfg),
    )


def default_perplexity_config(cfg: Settings = default_settings) -> ProviderConfig:
    T = ModelType
    registry = ModelRegistry([
        Model.of("sonar", 128000, T.LANGUAGE, T.FAST, T.WEBSEARCH, T.CITATIONS, alias="sonar"),
        Model.of("sonar-pro", 200000, T.LANGUAGE, T.WEBSEARCH, T.CITATIONS, alias="sonar-pro"),
        Model.of("sonar-deep-research", 128000, T.LANGUAGE, T.WEBSEARCH, T.CITATIONS, T.DEEP_RESEARCH,
                 alias="deep-research"),
        Model.of("sonar-reasoning", 128000, T.LANGUAGE, T.WEBSEARCH, T.CITATIONS, T.REASONING, alias="reasoning"),
        Model.of("sonar-reasoning-pro", 128000, T.LANGUAGE, T.WEBSEARCH, T.CITATIONS, T.REASONING,
                 alias="reasoning-pro"),
        Model.of("r1-1776", 128000, T.LANGUAGE, T.REASONING, alias="r1"),
    ])
    defaults = (
        ParameterSet(temperature=0.7)
        .search_mode(SearchMode.WEB)
        .return_related_questions(True)
        .search_domain_filter(["-facebook.com", "-twitter.com", "-instagram.com"])
    )
    return ProviderConfig(
        name="perplexity",
        base_url=cfg.perplexity_base_url,
        registry=registry,
        api_token=cfg.perplexity_api_key,
        api_token_env="PERPLEXITY_API_KEY",
        default_model="sonar",
        default_params=defaults,
        **_timeouts(cfg),
    )


PROVIDER_CONFIGS: Mapping[str, Callable[[Settings], ProviderConfig]] = {
    "openai": default_openai_config,
    "ollama": default_ollama_config,
    "lmstudio": default_lmstudio_config,
    "perplexity": default_perplexity_config,
}


def get_provider_config(name: str, cfg: Settings = default_settings) -> ProviderConfig:
    """根据名称构造一份新的 ProviderConfig，名称不区分大小写。"""

    key = name.strip().lower().replace("_", "").replace("-", "")
    factory = PROVIDER_CONFIGS.get(key)
    if factory is None:
        raise ConfigurationError(f"Unknown provider: {name!r}")
    return factory(cfg)
