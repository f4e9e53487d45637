"""统一业务异常模型。

所有 Provider 适配层抛出的错误都继承自 LLMError，
上层只需要捕获这一套类型，而不必关心底层是哪家厂商或哪个 HTTP 库。
"""

from typing import Optional


class LLMError(Exception):
    """异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
        message: 用户可读错误信息。
        http_status: 来自 HTTP 响应的状态码（若有）。
        cause: 原始异常（若有）。
        extra: 其他补充字段（例如 provider、url 等）。
    """

    default_code = "LLM_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **extra,
    ):
        self.code = code or self.default_code
        self.message = message
        self.http_status = http_status
        self.cause = cause
        self.extra = extra
        super().__init__(message)

    def __str__(self) -> str:
        if self.http_status is not None:
            return f"[{self.code} {self.http_status}] {self.message}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(LLMError):
    """模型注册或 Provider 配置不完整。"""

    default_code = "CONFIGURATION_ERROR"


class AuthenticationError(LLMError):
    """凭证缺失或被服务端拒绝（HTTP 401）。"""

    default_code = "AUTHENTICATION_ERROR"


class RateLimitError(LLMError):
    """Provider 限流错误，由上层负责重试/退避策略。"""

    default_code = "RATE_LIMIT"


class ProviderTimeoutError(LLMError):
    """请求超时：HTTP 408/504 或传输层超时。"""

    default_code = "TIMEOUT"


class NetworkError(LLMError):
    """网络层错误，例如连接失败、DNS 解析失败、连接被中断等。"""

    default_code = "NETWORK_ERROR"


class UpstreamServiceError(LLMError):
    """上游服务故障（HTTP 500/502/503）。"""

    default_code = "UPSTREAM_ERROR"


class InvalidRequestError(LLMError):
    """请求参数校验失败，在发起网络调用之前抛出。"""

    default_code = "INVALID_REQUEST"


class ResponseParseError(LLMError):
    """响应结构无法解析（缺少 choices、JSON 损坏等）。"""

    default_code = "RESPONSE_PARSE_ERROR"


class UnsupportedOperationError(LLMError):
    """当前 Provider 或模型不支持该操作。"""

    default_code = "UNSUPPORTED_OPERATION"


class GenericProviderError(LLMError):
    """其他非 2xx 响应，message 中包含状态码与响应体。"""

    default_code = "API_ERROR"

    def __init__(self, message: str, http_status: Optional[int] = None, body: str = "", **kwargs):
        super().__init__(message, http_status=http_status, **kwargs)
        self.body = body
