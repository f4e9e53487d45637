"""SSE 流式响应的重组。

StreamReassembler 是一个小状态机：

    OPEN → ACCUMULATING → CLOSED_OK | CLOSED_ERROR

- 正文增量追加到缓冲区，并立即按到达顺序同步回调 sink.on_token()；
- 推理增量同样累积，只有 sink.accepts_reasoning 为 True 时才推送；
- 观察到 finish_reason 或传输结束（EOF / [DONE]）时进入 CLOSED_OK，
  调用一次 sink.on_complete()；之后到达的 usage、citations 等元数据仍会合并，
  迟到的正文被忽略；
- 数据块无法解析或传输失败时进入 CLOSED_ERROR：丢弃缓冲区，
  调用 sink.on_error()，异常再从阻塞调用处抛出。

run_stream() 把“后台线程读取 + 推送回调”桥接成一次阻塞调用：
后台线程读取传输层并驱动状态机，调用方阻塞在 Future 上直到终态。
"""

import logging
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from llm_core.domain.exceptions import LLMError, NetworkError
from llm_core.domain.models import ContentType, NormalizedResponse, StreamEvent, Usage
from llm_core.infrastructure.logging.logger import get_logger, log_event
from llm_core.providers.base import WireMapper
from llm_core.providers.transport import StreamHandle


log = get_logger(__name__)

DONE = "[DONE]"


class StreamState(str, Enum):
    OPEN = "OPEN"
    ACCUMULATING = "ACCUMULATING"
    CLOSED_OK = "CLOSED_OK"
    CLOSED_ERROR = "CLOSED_ERROR"


def sse_data(line: Optional[str]) -> Optional[str]:
    """从一行 SSE 文本中取出 data 内容。

    注释行（以 ":" 开头）和 event/id/retry 字段返回 None；
    不带 "data:" 前缀的行按原样返回（部分兼容服务直接输出 JSON 行）。
    """

    if line is None:
        return None
    text = line.strip()
    if not text or text.startswith(":"):
        return None
    if text.startswith("data:"):
        return text[5:].strip()
    for prefix in ("event:", "id:", "retry:"):
        if text.startswith(prefix):
            return None
    return text


def ordered_unique(*lists: Optional[Sequence[str]]) -> Optional[List[str]]:
    seen: List[str] = []
    for items in lists:
        for item in items or ():
            if item not in seen:
                seen.append(item)
    return seen or None


class StreamReassembler:
    """把一次流式响应重组为 NormalizedResponse。

    只应由读取传输层的那个线程调用。
    """

    def __init__(self, mapper: WireMapper, sink: Any, provider: Optional[str] = None):
        self.mapper = mapper
        self.sink = sink
        self.provider = provider or getattr(mapper, "name", None)
        self.state = StreamState.OPEN
        self._text: List[str] = []
        self._reasoning: List[str] = []
        self._finish_reason: Optional[str] = None
        self._usage: Optional[Usage] = None
        self._model: Optional[str] = None
        self._chat_id: Optional[str] = None
        self._extensions = NormalizedResponse()
        self._completed = False

    @property
    def closed(self) -> bool:
        return self.state in (StreamState.CLOSED_OK, StreamState.CLOSED_ERROR)

    def feed_line(self, line: str) -> bool:
        """处理一行 SSE 文本；遇到 [DONE] 时返回 False。"""

        data = sse_data(line)
        if data is None:
            return True
        if data == DONE:
            return False
        self.feed(data)
        return True

    def feed(self, data: str) -> None:
        if self.state == StreamState.CLOSED_ERROR:
            return
        for event in self.mapper.decode_stream_chunk(data):
            self.apply(event)

    def apply(self, event: StreamEvent) -> None:
        if self.state == StreamState.OPEN:
            self.state = StreamState.ACCUMULATING
        self._merge_metadata(event)

        if event.kind == "content" and event.text:
            if self.state != StreamState.ACCUMULATING:
                log_event(log, logging.DEBUG, "Ignoring content after finish", provider=self.provider)
                return
            self._text.append(event.text)
            self.sink.on_token(event.text, ContentType.TEXT)
        elif event.kind == "reasoning" and event.text:
            if self.state != StreamState.ACCUMULATING:
                return
            self._reasoning.append(event.text)
            if getattr(self.sink, "accepts_reasoning", False) is True:
                self.sink.on_token(event.text, ContentType.REASONING)
        elif event.kind == "finish":
            if self._finish_reason is None:
                self._finish_reason = event.finish_reason
            self._complete()

    def _merge_metadata(self, event: StreamEvent) -> None:
        if event.model and not self._model:
            self._model = event.model
        if event.chat_id and not self._chat_id:
            self._chat_id = event.chat_id
        if event.usage is not None:
            self._usage = event.usage
        ext = event.extensions
        if ext is None:
            return
        merged = self._extensions
        merged.citations = ordered_unique(merged.citations, ext.citations)
        if not merged.search_results and ext.search_results:
            merged.search_results = list(ext.search_results)
        if not merged.related_questions and ext.related_questions:
            merged.related_questions = list(ext.related_questions)
        if not merged.images and ext.images:
            merged.images = list(ext.images)
        if merged.search_queries_count is None and ext.search_queries_count is not None:
            merged.search_queries_count = ext.search_queries_count

    def _complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        self.state = StreamState.CLOSED_OK
        self.sink.on_complete()

    def finish(self) -> NormalizedResponse:
        """传输正常结束（EOF 或 [DONE]）。"""

        if self.state == StreamState.CLOSED_ERROR:
            raise NetworkError("Stream already failed", provider=self.provider)
        self._complete()
        return self.result()

    def fail(self, error: BaseException) -> bool:
        """进入 CLOSED_ERROR 并通知 sink。

        若流已经正常结束（收到过 finish_reason），错误只记录日志，返回 False。
        """

        if self.state == StreamState.CLOSED_ERROR:
            return True
        if self._completed:
            log_event(log, logging.WARNING, "Error after stream completed, ignored",
                      provider=self.provider, error=str(error))
            return False
        self.state = StreamState.CLOSED_ERROR
        self._text = []
        self._reasoning = []
        self._extensions = NormalizedResponse()
        self.sink.on_error(error)
        return True

    def result(self) -> NormalizedResponse:
        ext = self._extensions
        return NormalizedResponse(
            text="".join(self._text),
            reasoning="".join(self._reasoning) or None,
            finish_reason=self._finish_reason,
            usage=self._usage,
            model=self._model,
            chat_id=self._chat_id,
            citations=ext.citations,
            search_results=ext.search_results,
            related_questions=ext.related_questions,
            images=ext.images,
            search_queries_count=ext.search_queries_count,
        )


class StreamCall:
    """一次进行中的流式调用句柄。

    cancel() 会关闭底层连接，正在阻塞的调用方随后收到 NetworkError。
    可在任意线程调用。
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._handle: Optional[StreamHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def attach(self, handle: StreamHandle) -> None:
        with self._lock:
            self._handle = handle
        if self.cancelled:
            handle.close()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            handle = self._handle
        if handle is not None:
            handle.close()


def run_stream(
    open_stream: Callable[[], StreamHandle],
    reassembler: StreamReassembler,
    call: Optional[StreamCall] = None,
    timeout: Optional[float] = None,
) -> NormalizedResponse:
    """在后台线程中读取流并驱动 reassembler，当前线程阻塞直到终态。"""

    future: "Future[NormalizedResponse]" = Future()
    provider = reassembler.provider

    def _cancelled_error(cause: Optional[BaseException] = None) -> NetworkError:
        return NetworkError("Stream cancelled", code="STREAM_CANCELLED", cause=cause, provider=provider)

    def _worker() -> None:
        handle: Optional[StreamHandle] = None
        # 为 True 时异常来自解析或 sink 回调，而不是传输层
        feeding = False
        try:
            handle = open_stream()
            if call is not None:
                call.attach(handle)
            for line in handle:
                if call is not None and call.cancelled:
                    break
                feeding = True
                more = reassembler.feed_line(line)
                feeding = False
                if not more:
                    break
            if call is not None and call.cancelled and not reassembler.closed:
                raise _cancelled_error()
            feeding = True
            future.set_result(reassembler.finish())
        except Exception as e:
            if call is not None and call.cancelled and not feeding:
                err: BaseException = e if getattr(e, "code", None) == "STREAM_CANCELLED" else _cancelled_error(e)
            elif isinstance(e, LLMError) or feeding:
                err = e
            else:
                err = NetworkError(f"Stream failed: {e}", cause=e, provider=provider)
            if reassembler.fail(err):
                log_event(log, logging.WARNING, "Stream failed", provider=provider,
                          code=getattr(err, "code", None), error=str(err))
                future.set_exception(err)
            else:
                future.set_result(reassembler.result())
        finally:
            if handle is not None:
                handle.close()
            if not future.done():
                future.set_exception(NetworkError("Stream worker exited without a result", provider=provider))

    thread = threading.Thread(target=_worker, name=f"llm-core-stream-{provider or 'provider'}", daemon=True)
    thread.start()
    return future.result(timeout=timeout)
