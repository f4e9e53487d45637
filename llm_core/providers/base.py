"""Provider 抽象接口。

上层调用方不直接依赖具体厂商的 HTTP 细节，而是依赖此处的协议：

- WireMapper：在统一模型与某家 Provider 的 JSON 之间做双向转换。
- ResponseStream：流式调用时接收增量的回调接口（CollectingStream 为内存实现）。
- ProviderClient：每个厂商实现一个客户端（如 OpenAIClient），组合
  参数合并、模型解析、Wire Mapper、传输层与流式重组，对外提供统一操作集。

这样可以在不改调用方代码的前提下接入更多厂商。
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from llm_core.domain.chat import ChatSession
from llm_core.domain.models import ContentType, Model, ModelType, NormalizedResponse, StreamEvent
from llm_core.providers.params import ParameterSet


class WireMapper(Protocol):
    """单个 Provider 的请求编码 / 响应解码规则。"""

    name: str

    def encode_chat_request(
        self, chat: Optional[ChatSession], query: Optional[str], params: ParameterSet
    ) -> Dict[str, Any]:
        ...

    def encode_completion_request(
        self, system: Optional[str], query: Optional[str], params: ParameterSet
    ) -> Dict[str, Any]:
        ...

    def decode_response(self, payload: Dict[str, Any]) -> NormalizedResponse:
        ...

    def decode_stream_chunk(self, data: str) -> List[StreamEvent]:
        ...


class ResponseStream(Protocol):
    """流式回调接口。

    - on_token: 每个增量调用一次，按到达顺序同步调用。
    - on_complete: 流正常结束时调用一次。
    - on_error: 流异常结束时调用一次，随后异常也会从阻塞调用处抛出。

    若实现类设置 accepts_reasoning = True，推理增量也会以
    ContentType.REASONING 通道推送。
    """

    def on_token(self, text: str, content_type: ContentType = ContentType.TEXT) -> None:
        ...

    def on_complete(self) -> None:
        ...

    def on_error(self, error: BaseException) -> None:
        ...


class ProviderClient(Protocol):
    """统一操作集。"""

    name: str

    def registered_models(self) -> Dict[str, Model]:
        ...

    def installed_models(self) -> Dict[str, Model]:
        ...

    def default_model_name(self) -> str:
        ...

    def find_model(self, *tags: ModelType) -> Optional[Model]:
        ...

    def completion(self, system: Optional[str], query: str, params: Any = None) -> NormalizedResponse:
        ...

    def chat_completion(self, chat: ChatSession, query: Optional[str], params: Any = None) -> NormalizedResponse:
        ...

    def completion_stream(
        self, stream: ResponseStream, system: Optional[str], query: str, params: Any = None
    ) -> NormalizedResponse:
        ...

    def chat_completion_stream(
        self, stream: ResponseStream, chat: ChatSession, query: Optional[str], params: Any = None
    ) -> NormalizedResponse:
        ...

    def embeddings(self, text: str, params: Any = None) -> List[float]:
        ...

    def embeddings_batch(self, texts: Sequence[str], params: Any = None) -> List[List[float]]:
        ...

    def generate_image(self, prompt: str, params: Any = None) -> NormalizedResponse:
        ...

    def token_count(self, text: str, model: Optional[str] = None) -> int:
        ...

    def summarize_text(self, text: str, summary_prompt: Optional[str] = None, params: Any = None) -> str:
        ...

    def summarize_chat(
        self, chat: ChatSession, summary_prompt: Optional[str] = None, params: Any = None
    ) -> ChatSession:
        ...


class CollectingStream:
    """把增量收集到内存中的 ResponseStream 实现。

    events 按调用顺序记录 ("token", text, content_type) / ("complete",) / ("error", exc)，
    适合测试与不需要实时展示的场景。
    """

    def __init__(self, accepts_reasoning: bool = False):
        self.accepts_reasoning = accepts_reasoning
        self.events: List[Tuple[Any, ...]] = []
        self.tokens: List[str] = []
        self.reasoning: List[str] = []
        self.completed = 0
        self.error: Optional[BaseException] = None

    def on_token(self, text: str, content_type: ContentType = ContentType.TEXT) -> None:
        self.events.append(("token", text, content_type))
        if content_type == ContentType.REASONING:
            self.reasoning.append(text)
        else:
            self.tokens.append(text)

    def on_complete(self) -> None:
        self.events.append(("complete",))
        self.completed += 1

    def on_error(self, error: BaseException) -> None:
        self.events.append(("error", error))
        self.error = error

    @property
    def text(self) -> str:
        return "".join(self.tokens)
