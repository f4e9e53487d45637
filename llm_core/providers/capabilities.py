"""根据模型名推断能力标签。

Provider 的 /models 接口通常只返回模型 ID，没有能力描述。这里按规则表
（关键字、前缀、后缀、正则）和模型家族推断能力，用于：

- 把 Provider 上报的模型放进注册表的 installed 分区；
- 对注册表中不存在的模型名做 is_model_type 判断。
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence

from llm_core.domain.models import ModelType


@dataclass
class DetectionRule:
    keywords: Sequence[str] = ()
    exact: Sequence[str] = ()
    prefixes: Sequence[str] = ()
    suffixes: Sequence[str] = ()
    patterns: List[Pattern[str]] = field(default_factory=list)

    def matches(self, model_name: str) -> bool:
        name = model_name.lower()
        if name in self.exact:
            return True
        if any(name.startswith(p) for p in self.prefixes):
            return True
        if any(name.endswith(s) for s in self.suffixes):
            return True
        if any(k in name for k in self.keywords):
            return True
        return any(p.search(name) for p in self.patterns)


def _rule(keywords=(), exact=(), prefixes=(), suffixes=(), patterns=()) -> DetectionRule:
    return DetectionRule(
        keywords=tuple(keywords),
        exact=tuple(exact),
        prefixes=tuple(prefixes),
        suffixes=tuple(suffixes),
        patterns=[re.compile(p) for p in patterns],
    )


DETECTION_RULES: Dict[ModelType, DetectionRule] = {
    ModelType.EMBEDDING: _rule(
        keywords=("embed", "bge", "nomic", "gte", "sentence"),
        prefixes=("text-embedding-", "embedding-"),
        patterns=(r"(^|[-_/])e5([-_.]|$)",),
    ),
    ModelType.EMBEDDING_DIMENSION: _rule(
        keywords=("snowflake-arctic-embed", "qwen3-embedding", "embedding-3", "embeddinggemma"),
        patterns=(r"(?=.*nomic)(?=.*v1\.5)", r"(?=.*snowflake)(?=.*v2)"),
    ),
    ModelType.VISION: _rule(
        keywords=("vision", "llava", "moondream", "cogvlm", "qwen-vl", "internvl", "minicpm-v", "pixtral"),
        prefixes=("gpt-4o", "claude-3"),
        patterns=(r"vl-",),
    ),
    ModelType.CODING: _rule(
        keywords=("code", "deepseek", "starcoder", "magicoder", "phind", "sqlcoder"),
        patterns=(r"coder", r"coding"),
    ),
    ModelType.REASONING: _rule(
        keywords=("reason", "think", "qwen", "gemma", "llama", "mistral", "phi"),
        exact=("o1-preview", "o1-mini", "o3-mini"),
        prefixes=("o1", "o3", "o4", "gemini-1.5-"),
    ),
    ModelType.FAST: _rule(
        keywords=("fast", "mini", "nano", "lite", "small", "quick", "turbo", "tiny"),
        patterns=(r"(^|[-:_])(0\.6|1|1\.7|2|3|3\.8|4)b([-:_.]|$)",),
    ),
    ModelType.IMAGE: _rule(
        keywords=("dall-e", "dalle", "imagen", "ideogram", "stable-diffusion", "gpt-image"),
        prefixes=("sd-", "flux"),
        patterns=(r"image.*gen", r"diffusion"),
    ),
    ModelType.AUDIO: _rule(
        keywords=("whisper", "audio", "speech", "tts", "voice"),
    ),
    ModelType.WEBSEARCH: _rule(
        keywords=("search", "sonar", "perplexity", "online"),
    ),
    ModelType.GPT5_CLASS: _rule(
        prefixes=("gpt-5", "o1", "o3", "claude-4", "gemini-2"),
        patterns=(r"gpt-?5",),
    ),
    ModelType.TOOLS: _rule(
        keywords=("tool", "function", "agent"),
    ),
}

MODEL_FAMILIES: Dict[str, Sequence[ModelType]] = {
    "gpt": (ModelType.LANGUAGE, ModelType.TOOLS),
    "claude": (ModelType.LANGUAGE, ModelType.REASONING, ModelType.TOOLS),
    "gemini": (ModelType.LANGUAGE, ModelType.REASONING, ModelType.VISION),
    "llama": (ModelType.LANGUAGE, ModelType.REASONING),
    "mistral": (ModelType.LANGUAGE, ModelType.REASONING, ModelType.CODING),
    "qwen": (ModelType.LANGUAGE, ModelType.REASONING, ModelType.CODING),
    "deepseek": (ModelType.LANGUAGE, ModelType.CODING, ModelType.REASONING),
    "sonar": (ModelType.LANGUAGE, ModelType.CITATIONS),
}

_NON_LANGUAGE = (ModelType.EMBEDDING, ModelType.IMAGE, ModelType.AUDIO)


def detect_capabilities(model_name: Optional[str], metadata: Optional[Mapping[str, Any]] = None) -> List[ModelType]:
    """推断模型能力，返回有序、去重的标签列表。"""

    caps: List[ModelType] = []
    if not model_name or not model_name.strip():
        return caps
    name = model_name.strip()
    lower = name.lower()

    for tag, rule in DETECTION_RULES.items():
        if rule.matches(name):
            caps.append(tag)

    if ModelType.EMBEDDING in caps:
        # 嵌入模型名里常带 "mini"/"small"，但不应被当作对话模型
        caps = [c for c in caps if c in (ModelType.EMBEDDING, ModelType.EMBEDDING_DIMENSION, ModelType.FAST)]
    else:
        for family, tags in MODEL_FAMILIES.items():
            if family in lower:
                for tag in tags:
                    if tag not in caps:
                        caps.append(tag)

    if not any(c in caps for c in _NON_LANGUAGE) and ModelType.LANGUAGE not in caps:
        caps.append(ModelType.LANGUAGE)

    if metadata:
        _detect_from_metadata(caps, metadata)
    return caps


def _detect_from_metadata(caps: List[ModelType], metadata: Mapping[str, Any]) -> None:
    context = metadata.get("context_length") or metadata.get("max_context_length")
    if context is not None:
        try:
            if int(context) > 100000 and ModelType.BATCH not in caps:
                caps.append(ModelType.BATCH)
        except (TypeError, ValueError):
            pass
    description = metadata.get("description")
    if isinstance(description, str):
        desc = description.lower()
        if "vision" in desc and ModelType.VISION not in caps:
            caps.append(ModelType.VISION)
        if "code" in desc and ModelType.CODING not in caps:
            caps.append(ModelType.CODING)
