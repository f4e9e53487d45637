"""统一的模型、响应与流式事件数据结构。

本模块定义了不同 Provider 之间共享的标准数据结构：

- ModelType / Model: 模型身份与能力标签。
- Usage / NormalizedResponse: 从 Provider 解析后的统一响应结果。
- StreamEvent: 流式返回中的单个增量单元。

所有 Wire Mapper（如 OpenAIJsonMapper）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Optional


class ModelType(str, Enum):
    """模型能力标签。"""

    LANGUAGE = "LANGUAGE"
    EMBEDDING = "EMBEDDING"
    EMBEDDING_DIMENSION = "EMBEDDING_DIMENSION"
    FAST = "FAST"
    REASONING = "REASONING"
    CODING = "CODING"
    TEXT = "TEXT"
    VISION = "VISION"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    RESPONSES_API = "RESPONSES_API"
    BATCH = "BATCH"
    TOOLS = "TOOLS"
    WEBSEARCH = "WEBSEARCH"
    CITATIONS = "CITATIONS"
    DEEP_RESEARCH = "DEEP_RESEARCH"
    INSTRUCT = "INSTRUCT"
    GPT5_CLASS = "GPT5_CLASS"


class ContentType(str, Enum):
    """流式回调的内容通道。"""

    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    METADATA = "metadata"


class ReasoningEffort(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    NONE = "none"


class SearchMode(str, Enum):
    """Perplexity 的搜索范围。"""

    WEB = "web"
    ACADEMIC = "academic"


class SearchContextSize(str, Enum):
    """web_search_options.search_context_size：检索上下文的多少。"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EmbeddingOp(str, Enum):
    """嵌入用途，不同模型家族会据此给输入文本加前缀。"""

    QUERY = "query"
    DOCUMENT = "document"
    QUESTION = "question"
    FACT_CHECK = "fact_check"
    CLASSIFICATION = "classification"
    CLUSTERING = "clustering"
    SEMANTIC_SIMILARITY = "semantic_similarity"
    CODE_RETRIEVAL = "code_retrieval"
    DEFAULT = "default"


@dataclass(frozen=True)
class Model:
    """单个模型的描述，注册后不可变。

    - name: 注册表中的唯一键，同时也是发给 Provider 的模型 ID。
    - alias: 可选别名，例如 "deep-research"。
    - context_length: 上下文窗口大小（token）。
    - capabilities: 能力标签集合。
    - embedding_dimensions: 嵌入模型的向量维度（仅 EMBEDDING 模型使用）。
    """

    name: str
    context_length: Optional[int] = None
    capabilities: FrozenSet[ModelType] = frozenset()
    alias: Optional[str] = None
    embedding_dimensions: Optional[int] = None

    @classmethod
    def of(
        cls,
        name: str,
        context_length: Optional[int],
        *capabilities: ModelType,
        alias: Optional[str] = None,
        embedding_dimensions: Optional[int] = None,
    ) -> "Model":
        return cls(
            name=name,
            context_length=context_length,
            capabilities=frozenset(capabilities),
            alias=alias,
            embedding_dimensions=embedding_dimensions,
        )

    def has(self, tag: ModelType) -> bool:
        return tag in self.capabilities

    def count_matches(self, tags: Iterable[ModelType]) -> int:
        return sum(1 for t in tags if t in self.capabilities)

    def __str__(self) -> str:
        return self.name


@dataclass
class Usage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Usage":
        return cls(
            prompt_tokens=int(payload.get("prompt_tokens") or 0),
            completion_tokens=int(payload.get("completion_tokens") or 0),
            total_tokens=int(payload.get("total_tokens") or 0),
            raw=dict(payload),
        )


@dataclass
class SearchResult:
    """搜索结果元数据。"""

    title: Optional[str] = None
    url: Optional[str] = None
    date: Optional[str] = None
    snippet: Optional[str] = None


@dataclass
class ImageResult:
    """图片结果：搜索返回的图片，或生成/编辑接口返回的图片。"""

    url: Optional[str] = None
    title: Optional[str] = None
    alt: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    revised_prompt: Optional[str] = None


@dataclass
class SearchMetadata:
    """随助手消息保存的搜索附加信息。"""

    citations: Optional[List[str]] = None
    search_results: Optional[List[SearchResult]] = None
    related_questions: Optional[List[str]] = None
    images: Optional[List[ImageResult]] = None
    search_queries_count: Optional[int] = None


END_REASON_STOP = "stop"
END_REASON_LENGTH = "length"
END_REASON_CONTENT_FILTER = "content_filter"
END_REASON_IMAGE_GENERATED = "image_generated"


@dataclass
class NormalizedResponse:
    """一次调用的最终归一化结果。

    扩展字段（citations、search_results、related_questions、images、
    search_queries_count）只有在 Provider 真正返回时才会被赋值，
    未返回时保持 None，而不是空列表。
    """

    text: Optional[str] = None
    reasoning: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    model: Optional[str] = None
    chat_id: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None
    citations: Optional[List[str]] = None
    search_results: Optional[List[SearchResult]] = None
    related_questions: Optional[List[str]] = None
    images: Optional[List[ImageResult]] = None
    search_queries_count: Optional[int] = None

    def has_citations(self) -> bool:
        return bool(self.citations)

    def has_search_results(self) -> bool:
        return bool(self.search_results)

    def has_related_questions(self) -> bool:
        return bool(self.related_questions)

    def has_images(self) -> bool:
        return bool(self.images)

    def has_extensions(self) -> bool:
        return (
            self.has_citations()
            or self.has_search_results()
            or self.has_related_questions()
            or self.has_images()
        )

    def search_metadata(self) -> Optional[SearchMetadata]:
        if not self.has_extensions():
            return None
        return SearchMetadata(
            citations=self.citations,
            search_results=self.search_results,
            related_questions=self.related_questions,
            images=self.images,
            search_queries_count=self.search_queries_count,
        )


StreamEventKind = Literal["content", "reasoning", "finish", "metadata"]


@dataclass
class StreamEvent:
    """流式响应中的单个增量。

    kind:
        - "content": 正文增量，text 为本次新增文本。
        - "reasoning": 推理过程增量。
        - "finish": 终止事件，finish_reason 非空。
        - "metadata": 仅携带 usage / 扩展字段 / id 的事件。

    同一个 SSE 数据块可能被拆成多条事件，扩展字段统一挂在 extensions 上。
    """

    kind: StreamEventKind
    text: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    extensions: Optional[NormalizedResponse] = None
    chat_id: Optional[str] = None
    model: Optional[str] = None
