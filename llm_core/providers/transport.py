"""HTTP 传输层与错误分类。

所有 Provider 客户端都通过 HttpTransport 发送请求：

- 统一设置连接/读取/写入超时；
- 把非 2xx 状态码按固定规则映射为统一异常（与 Provider 无关）；
- 把 httpx 的网络异常映射为 NetworkError / ProviderTimeoutError。

本层从不重试，重试策略由调用方决定。
"""

import json
import logging
import socket
import threading
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

import httpx

from llm_core.domain.exceptions import (
    AuthenticationError,
    GenericProviderError,
    LLMError,
    NetworkError,
    ProviderTimeoutError,
    RateLimitError,
    ResponseParseError,
    UpstreamServiceError,
)
from llm_core.infrastructure.logging.logger import get_logger, log_event


log = get_logger(__name__)


class Transport(Protocol):
    """Provider 客户端依赖的传输协议，测试中可用假实现替换。"""

    def post_json(self, url: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        ...

    def get_json(self, url: str, headers: Mapping[str, str]) -> Dict[str, Any]:
        ...

    def post_multipart(
        self,
        url: str,
        data: Dict[str, Any],
        files: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> Dict[str, Any]:
        ...

    def stream_lines(self, url: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> "StreamHandle":
        ...


class StreamHandle(Protocol):
    """一次流式响应：可迭代的 SSE 文本行，close() 会切断底层连接。"""

    def __iter__(self) -> Iterator[str]:
        ...

    def close(self) -> None:
        ...


def classify_status(status: int, body: str = "", provider: Optional[str] = None) -> LLMError:
    """把非 2xx 状态码映射为统一异常，只取决于状态码本身。"""

    detail = _error_detail(body)
    prefix = f"{provider} API error" if provider else "API error"
    message = f"{prefix} (HTTP {status}): {detail}" if detail else f"{prefix} (HTTP {status})"
    if status == 401:
        return AuthenticationError(message, http_status=status)
    if status == 429:
        return RateLimitError(message, http_status=status)
    if status in (408, 504):
        return ProviderTimeoutError(message, http_status=status)
    if status in (500, 502, 503):
        return UpstreamServiceError(message, http_status=status)
    return GenericProviderError(message, http_status=status, body=body)


def _error_detail(body: str) -> str:
    """从 {"error": {"message", "type"}} 形式的错误体中提取可读信息。"""

    if not body:
        return ""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()
    if isinstance(data, dict):
        detail = _error_message(data.get("error"))
        if detail:
            return detail
    return body.strip()


def _error_message(err: Any) -> str:
    if isinstance(err, dict) and err.get("message"):
        if err.get("type"):
            return f"[{err['type']}] {err['message']}"
        return str(err["message"])
    if isinstance(err, str):
        return err
    return ""


def classify_payload_error(err: Any, provider: Optional[str] = None) -> LLMError:
    """HTTP 200 响应体（或 SSE 数据块）中携带的 {"error": ...}。

    带有 4xx/5xx 数值 code/status 时按状态码分类，否则视为上游服务故障。
    """

    detail = _error_message(err) or json.dumps(err, ensure_ascii=False, default=str)
    status = None
    if isinstance(err, dict):
        for key in ("status", "code"):
            value = err.get(key)
            if isinstance(value, int) and 400 <= value < 600:
                status = value
                break
    if status is not None:
        return classify_status(status, json.dumps({"error": err}, default=str), provider)
    prefix = f"{provider} returned an error" if provider else "Provider returned an error"
    return UpstreamServiceError(f"{prefix}: {detail}")


def map_transport_error(exc: httpx.HTTPError, url: str) -> LLMError:
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(f"Request to {url} timed out: {exc}", cause=exc)
    return NetworkError(f"Network error calling {url}: {exc}", cause=exc)


def _decode_json(text: str, url: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ResponseParseError(f"Response from {url} is not valid JSON: {e}", cause=e)
    if not isinstance(data, dict):
        raise ResponseParseError(f"Response from {url} is not a JSON object")
    return data


class _HttpxStream:
    """把 httpx 的流式响应包装成 StreamHandle。

    close() 可以在其他线程调用（取消）：先 shutdown 底层 socket，
    让阻塞在 iter_lines() 中的读取立即返回，再退出 response 与 client。
    """

    def __init__(self, client: httpx.Client, response: Any, cm: Any):
        self._client = client
        self._response = response
        self._cm = cm
        self._closed = False
        self._lock = threading.Lock()

    def __iter__(self) -> Iterator[str]:
        try:
            for line in self._response.iter_lines():
                yield line
        except httpx.HTTPError as e:
            raise map_transport_error(e, str(getattr(self._response, "url", "")))
        finally:
            self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._shutdown_socket()
        try:
            self._cm.__exit__(None, None, None)
        finally:
            self._client.__exit__(None, None, None)

    def _shutdown_socket(self) -> None:
        extensions = getattr(self._response, "extensions", None) or {}
        network_stream = extensions.get("network_stream")
        sock = network_stream.get_extra_info("socket") if network_stream is not None else None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # 对端已经关闭连接
            log_event(log, logging.DEBUG, "Socket shutdown skipped", error=str(e))


class HttpTransport:
    """基于 httpx 的同步传输实现。"""

    def __init__(
        self,
        connect_timeout: float = 30.0,
        read_timeout: float = 120.0,
        write_timeout: float = 30.0,
        provider: Optional[str] = None,
    ):
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=connect_timeout,
        )
        self._provider = provider

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, trust_env=False)

    def _check(self, resp: Any, url: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        body = resp.text if hasattr(resp, "text") else ""
        err = classify_status(resp.status_code, body, self._provider)
        log_event(log, logging.WARNING, "Provider returned error status", url=url,
                  status=resp.status_code, provider=self._provider, code=err.code)
        raise err

    def post_json(self, url: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        log_event(log, logging.DEBUG, "POST", url=url, model=payload.get("model"), provider=self._provider)
        try:
            with self._client() as client:
                resp = client.post(url, json=payload, headers=dict(headers))
        except httpx.HTTPError as e:
            raise map_transport_error(e, url)
        self._check(resp, url)
        return _decode_json(resp.text, url)

    def get_json(self, url: str, headers: Mapping[str, str]) -> Dict[str, Any]:
        log_event(log, logging.DEBUG, "GET", url=url, provider=self._provider)
        try:
            with self._client() as client:
                resp = client.get(url, headers=dict(headers))
        except httpx.HTTPError as e:
            raise map_transport_error(e, url)
        self._check(resp, url)
        return _decode_json(resp.text, url)

    def post_multipart(
        self,
        url: str,
        data: Dict[str, Any],
        files: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> Dict[str, Any]:
        log_event(log, logging.DEBUG, "POST multipart", url=url, provider=self._provider)
        form = {k: str(v) for k, v in data.items() if v is not None}
        try:
            with self._client() as client:
                resp = client.post(url, data=form, files=files, headers=dict(headers))
        except httpx.HTTPError as e:
            raise map_transport_error(e, url)
        self._check(resp, url)
        return _decode_json(resp.text, url)

    def stream_lines(self, url: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> StreamHandle:
        log_event(log, logging.DEBUG, "POST (stream)", url=url, model=payload.get("model"), provider=self._provider)
        stream_headers = dict(headers)
        stream_headers["Accept"] = "text/event-stream"
        client = self._client()
        client.__enter__()
        try:
            cm = client.stream("POST", url, json=payload, headers=stream_headers)
            resp = cm.__enter__()
        except httpx.HTTPError as e:
            client.__exit__(None, None, None)
            raise map_transport_error(e, url)
        if not 200 <= resp.status_code < 300:
            try:
                resp.read()
                body = resp.text
            except httpx.HTTPError:
                body = ""
            finally:
                cm.__exit__(None, None, None)
                client.__exit__(None, None, None)
            err = classify_status(resp.status_code, body, self._provider)
            log_event(log, logging.WARNING, "Provider returned error status", url=url,
                      status=resp.status_code, provider=self._provider, code=err.code)
            raise err
        return _HttpxStream(client, resp, cm)
