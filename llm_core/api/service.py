"""对外 API 服务模块。

提供简化的函数接口供上层应用调用，返回可直接序列化的 dict。
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from llm_core.config.settings import settings
from llm_core.domain.chat import ChatSession
from llm_core.domain.exceptions import UnsupportedOperationError
from llm_core.domain.models import NormalizedResponse
from llm_core.infrastructure.logging.logger import get_logger, log_event
from llm_core.providers import OpenAIClient, create_provider
from llm_core.providers.perplexity_client import PerplexityClient


log = get_logger(__name__)

_clients: Dict[str, OpenAIClient] = {}


def get_provider(name: Optional[str] = None) -> OpenAIClient:
    """按名称获取 Provider 客户端，同名只创建一次。"""

    key = (name or settings.default_provider).lower()
    if key not in _clients:
        _clients[key] = create_provider(key)
    return _clients[key]


def response_to_dict(response: NormalizedResponse) -> Dict[str, Any]:
    usage = response.usage
    data: Dict[str, Any] = {
        "text": response.text,
        "reasoning": response.reasoning,
        "finish_reason": response.finish_reason,
        "model": response.model,
        "chat_id": response.chat_id,
        "usage": {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        } if usage else None,
    }
    if response.citations:
        data["citations"] = list(response.citations)
    if response.search_results:
        data["search_results"] = [
            {"title": r.title, "url": r.url, "date": r.date, "snippet": r.snippet}
            for r in response.search_results
        ]
    if response.related_questions:
        data["related_questions"] = list(response.related_questions)
    if response.search_queries_count is not None:
        data["search_queries_count"] = response.search_queries_count
    return data


def run_completion(
    query: str,
    system: Optional[str] = None,
    provider: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """执行一次无状态 completion。

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        client = get_provider(provider)
        return response_to_dict(client.completion(system, query, params))
    except Exception as e:
        log_event(log, logging.ERROR, f"Completion failed: {e}", provider=provider, error=str(e))
        raise


def run_chat(
    user_input: str,
    chat: Optional[ChatSession] = None,
    provider: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """在会话中进行一轮对话。

    Args:
        user_input: 用户输入内容
        chat: 会话（可选，不提供则创建新会话）
        provider: Provider 名称（可选，默认取配置）
        params: 请求参数（可选）

    Returns:
        包含会话对象、助手回复和使用统计的字典
    """
    session = chat if chat is not None else ChatSession()
    try:
        client = get_provider(provider)
        response = client.chat_completion(session, user_input, params)
    except Exception as e:
        log_event(log, logging.ERROR, f"Chat failed: {e}", provider=provider,
                  chat_id=session.id, error=str(e))
        raise
    result = response_to_dict(response)
    result["chat"] = session
    result["message_count"] = len(session)
    return result


def run_web_search(
    query: str,
    provider: str = "perplexity",
    params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    client = get_provider(provider)
    if not isinstance(client, PerplexityClient):
        raise UnsupportedOperationError(f"{client.name} does not support web search", provider=client.name)
    try:
        return response_to_dict(client.web_search(query, params))
    except Exception as e:
        log_event(log, logging.ERROR, f"Web search failed: {e}", provider=provider, error=str(e))
        raise


def list_models(provider: Optional[str] = None, installed: bool = False) -> List[Dict[str, Any]]:
    """列出模型。

    Returns:
        模型列表，每项包含 name, alias, context_length, capabilities
    """
    client = get_provider(provider)
    models = client.installed_models() if installed else client.registered_models()
    return [
        {
            "name": m.name,
            "alias": m.alias,
            "context_length": m.context_length,
            "capabilities": sorted(c.value for c in m.capabilities),
        }
        for m in models.values()
    ]
