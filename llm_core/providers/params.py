"""请求参数集合与合并规则。

ParameterSet 把常用选项（model、temperature、max_tokens、top_p、stream、
reasoning_effort）作为强类型字段保存，其余 Provider 扩展参数（搜索过滤、
时间范围、域名列表等）放在有序的 extra 字典中原样透传。

合并规则：overrides 中提供的键（值不为 None）一律覆盖 defaults，
只存在于 defaults 的键被复制过来；结果是新对象，输入不会被修改。
"""

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from llm_core.domain.models import Model, ReasoningEffort, SearchContextSize, SearchMode


KNOWN_KEYS: Tuple[str, ...] = (
    "model",
    "temperature",
    "max_tokens",
    "top_p",
    "stream",
    "reasoning_effort",
)


@dataclass
class ParameterSet:
    """一次请求的有效参数。None 表示“未提供”。"""

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stream: Optional[bool] = None
    reasoning_effort: Optional[Union[ReasoningEffort, str]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # ---- 构造 ----

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ParameterSet":
        """从普通 dict 构造；已知选项的键名不区分大小写。"""

        params = cls()
        if not mapping:
            return params
        for key, value in mapping.items():
            params.set(key, value)
        return params

    @classmethod
    def coerce(cls, value: Union["ParameterSet", Mapping[str, Any], None]) -> "ParameterSet":
        if isinstance(value, ParameterSet):
            return value.copy()
        return cls.from_mapping(value)

    def copy(self) -> "ParameterSet":
        return copy.deepcopy(self)

    # ---- 类 Mapping 访问 ----

    def set(self, key: str, value: Any) -> "ParameterSet":
        norm = key.lower()
        if norm in KNOWN_KEYS:
            if norm == "model" and isinstance(value, Model):
                value = value.name
            setattr(self, norm, value)
        else:
            self.extra[key] = value
        return self

    def get(self, key: str, default: Any = None) -> Any:
        norm = key.lower()
        if norm in KNOWN_KEYS:
            value = getattr(self, norm)
            return default if value is None else value
        return self.extra.get(key, default)

    def pop(self, key: str, default: Any = None) -> Any:
        value = self.get(key, default)
        norm = key.lower()
        if norm in KNOWN_KEYS:
            setattr(self, norm, None)
        else:
            self.extra.pop(key, None)
        return value

    def rename(self, old_key: str, new_key: str) -> None:
        """把 old_key 的值挪到 new_key 下（如 max_tokens -> max_completion_tokens）。"""

        if old_key in self:
            self.set(new_key, self.pop(old_key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __getitem__(self, key: str) -> Any:
        if key not in self:
            raise KeyError(key)
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def items(self) -> Iterator[Tuple[str, Any]]:
        for name in KNOWN_KEYS:
            value = getattr(self, name)
            if value is not None:
                yield name, value
        for key, value in self.extra.items():
            if value is not None:
                yield key, value

    def keys(self) -> List[str]:
        return [k for k, _ in self.items()]

    def as_dict(self) -> Dict[str, Any]:
        return {k: plain_value(v) for k, v in self.items()}

    def __len__(self) -> int:
        return len(self.keys())

    # ---- 常用 Provider 扩展参数 ----

    def search_mode(self, mode: Union[str, SearchMode]) -> "ParameterSet":
        return self.set("search_mode", plain_value(mode))

    def search_domain_filter(self, domains: List[str]) -> "ParameterSet":
        return self.set("search_domain_filter", list(domains))

    def search_recency_filter(self, recency: str) -> "ParameterSet":
        return self.set("search_recency_filter", recency)

    def return_related_questions(self, flag: bool = True) -> "ParameterSet":
        return self.set("return_related_questions", flag)

    def return_images(self, flag: bool = True) -> "ParameterSet":
        return self.set("return_images", flag)

    def search_context_size(self, size: Union[str, SearchContextSize]) -> "ParameterSet":
        options = dict(self.extra.get("web_search_options") or {})
        options["search_context_size"] = plain_value(size)
        return self.set("web_search_options", options)

    def user_location(self, latitude: float, longitude: float, country: str) -> "ParameterSet":
        options = dict(self.extra.get("web_search_options") or {})
        options["user_location"] = {
            "latitude": latitude,
            "longitude": longitude,
            "country": country,
        }
        return self.set("web_search_options", options)


def plain_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return str(value.value).lower()
    return value


def merge(
    defaults: Union[ParameterSet, Mapping[str, Any], None],
    overrides: Union[ParameterSet, Mapping[str, Any], None],
) -> ParameterSet:
    """合并默认参数与调用方参数，调用方提供的键总是优先。"""

    base = ParameterSet.coerce(defaults)
    over = ParameterSet.coerce(overrides)
    result = ParameterSet()
    for f in fields(ParameterSet):
        if f.name == "extra":
            continue
        value = getattr(over, f.name)
        if value is None:
            value = getattr(base, f.name)
        setattr(result, f.name, value)
    merged_extra: Dict[str, Any] = dict(base.extra)
    for key, value in over.extra.items():
        if value is not None:
            merged_extra[key] = value
    result.extra = merged_extra
    return result


def resolve_model_name(params: Union[ParameterSet, Mapping[str, Any], None], fallback: Optional[str]) -> Optional[str]:
    """返回 params 中非空白的 model，否则返回 fallback（配置的默认模型）。"""

    if params is None:
        return fallback
    value = params.get("model")
    if isinstance(value, Model):
        value = value.name
    if value is not None and str(value).strip():
        return str(value).strip()
    return fallback
