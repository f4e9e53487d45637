"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

这里只保存“环境级”配置（密钥、地址、超时、日志）。每个 Provider 客户端
运行时使用的 ProviderConfig 由 providers.registry 中的工厂函数根据本配置
构造，并显式传入客户端实例。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("LLM_CORE_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 名称，例如 openai、perplexity、ollama、lmstudio",
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    # Perplexity
    perplexity_api_key: Optional[str] = Field(default=None, description="Perplexity API 密钥")
    perplexity_base_url: str = Field(default="https://api.perplexity.ai", description="Perplexity API 基础URL")
    # Ollama（本地服务，密钥可省略）
    ollama_api_key: Optional[str] = Field(default=None, description="Ollama API 密钥")
    ollama_base_url: str = Field(default="http://localhost:11434/v1", description="Ollama OpenAI 兼容端点")
    # LM Studio
    lmstudio_api_key: Optional[str] = Field(default=None, description="LM Studio API 密钥")
    lmstudio_base_url: str = Field(default="http://localhost:1234/v1", description="LM Studio OpenAI 兼容端点")

    # ---- 传输层 ----
    connect_timeout: float = Field(default=30.0, gt=0, description="连接超时（秒）")
    read_timeout: float = Field(default=120.0, gt=0, description="读取超时（秒）")
    write_timeout: float = Field(default=30.0, gt=0, description="写入超时（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_to_file: bool = Field(default=False, description="是否写入 log_dir/llm_core.log")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "perplexity_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> Settings:
    """构造一份新的配置值，overrides 优先级最高。

    同时把 .env 中的变量载入进程环境（不覆盖已有值），
    ProviderConfig.api_token_env 才能通过 os.getenv 读到其中的密钥。
    """

    load_dotenv(find_dotenv(usecwd=True), override=False)
    return Settings(**overrides)


settings = load_settings()
