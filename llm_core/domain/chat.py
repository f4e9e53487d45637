"""内存中的聊天会话模型。

ChatSession 由调用方创建并持有，Provider 客户端只会在一次调用成功后
向末尾追加消息，不会重排或删除已有消息。会话对象本身不是线程安全的，
多个请求共享同一会话时需要调用方自行串行化。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from llm_core.domain.models import ImageResult, SearchMetadata


Role = Literal["system", "user", "assistant", "developer"]


@dataclass
class Message:
    """一条对话消息。

    - content: 纯文本内容；当 image 非空时会按多模态格式发给 Provider。
    - reasoning: 模型返回的推理过程（如有）。
    - search: 搜索类 Provider 返回的引用、搜索结果等元数据。
    """

    role: Role
    content: str
    reasoning: Optional[str] = None
    search: Optional[SearchMetadata] = None
    image: Optional[ImageResult] = None
    id: str = field(default_factory=lambda: f"m-{uuid4().hex}")
    meta: Dict[str, Any] = field(default_factory=dict)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatSession:
    """一次多轮对话。

    - id: Provider 返回的会话/响应标识（首次调用成功后写入）。
    - model: 会话绑定的模型名，参数中未指定模型时使用。
    """

    id: Optional[str] = None
    model: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    last_access: datetime = field(default_factory=_now)

    def add_message(self, message: Message) -> Message:
        self.messages.append(message)
        self.last_access = _now()
        return message

    def add_system(self, content: str) -> Message:
        return self.add_message(Message(role="system", content=content.strip()))

    def add_developer(self, content: str) -> Message:
        return self.add_message(Message(role="developer", content=content.strip()))

    def add_user(self, content: Union[str, None], image: Optional[ImageResult] = None) -> Message:
        text = (content or "").strip()
        return self.add_message(Message(role="user", content=text, image=image))

    def add_assistant(
        self,
        content: str,
        reasoning: Optional[str] = None,
        search: Optional[SearchMetadata] = None,
    ) -> Message:
        return self.add_message(
            Message(role="assistant", content=content, reasoning=reasoning, search=search)
        )

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def __len__(self) -> int:
        return len(self.messages)

    def transcript(self) -> str:
        """把会话拼成 "role: content" 形式的纯文本，用于摘要。"""

        return "\n".join(f"{m.role}: {m.content}" for m in self.messages)
