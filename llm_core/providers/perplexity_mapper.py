"""Perplexity 的 JSON 映射。

Perplexity 的 /chat/completions 与 OpenAI 协议基本一致，额外返回：

- citations: 引用 URL 列表；
- search_results: 搜索结果（title/url/date/snippet）；
- related_questions: 相关问题；
- images: 图片结果（return_images=True 时）；
- usage.num_search_queries: 本次调用执行的搜索次数；
- id: 响应标识，作为 chat_id 回写到会话。

completion 端点会拒绝它不认识的参数，因此在该端点丢弃未知键；
chat 端点仍然透传。
"""

from typing import Any, Dict, FrozenSet, Optional, Tuple

from llm_core.domain.models import ImageResult, NormalizedResponse, SearchResult
from llm_core.providers.openai_mapper import CHAT, COMPLETION, OpenAIJsonMapper, dict_items, string_list


class PerplexityJsonMapper(OpenAIJsonMapper):
    name = "perplexity"

    allowed_keys: Tuple[str, ...] = (
        "temperature",
        "max_tokens",
        "top_p",
        "top_k",
        "stream",
        "presence_penalty",
        "frequency_penalty",
        "reasoning_effort",
        "search_domain_filter",
        "search_recency_filter",
        "return_images",
        "return_related_questions",
        "search_mode",
        "search_context_size",
        "web_search_options",
        "user_location",
    )
    key_order: Tuple[str, ...] = (
        "model",
        "messages",
        "temperature",
        "max_tokens",
        "top_p",
        "stream",
        "search_domain_filter",
        "search_recency_filter",
        "return_images",
        "return_related_questions",
        "search_context_size",
        "reasoning_effort",
    )
    reasoning_keys: Tuple[str, ...] = ("reasoning_content", "reasoning", "thinking")
    unsupported_keys: Dict[str, FrozenSet[str]] = {
        CHAT: frozenset({"model_obj"}),
        COMPLETION: frozenset({"model_obj"}),
    }
    drop_unknown: Dict[str, bool] = {CHAT: False, COMPLETION: True}

    def _response_id(self, payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get("id")
        return str(value) if value else None

    def extract_extensions(self, payload: Dict[str, Any], response: NormalizedResponse) -> None:
        """只有字段存在且非空时才赋值，否则保持 None。"""

        response.citations = string_list(payload.get("citations"))

        results = [
            SearchResult(
                title=r.get("title"),
                url=r.get("url"),
                date=r.get("date"),
                snippet=r.get("snippet"),
            )
            for r in dict_items(payload.get("search_results"))
        ]
        response.search_results = results or None

        response.related_questions = string_list(payload.get("related_questions"))

        images = []
        for item in payload.get("images") or ():
            if isinstance(item, str):
                images.append(ImageResult(url=item))
            elif isinstance(item, dict):
                images.append(ImageResult(
                    url=item.get("image_url") or item.get("url"),
                    title=item.get("title"),
                    alt=item.get("alt") or item.get("origin_url"),
                ))
        response.images = images or None

        usage = payload.get("usage")
        if isinstance(usage, dict) and isinstance(usage.get("num_search_queries"), (int, float)):
            response.search_queries_count = int(usage["num_search_queries"])
