"""嵌入向量工具。

- 不同嵌入模型家族对输入有约定的任务前缀（如 nomic 的 "search_query: "），
  format_embedding_input() 按 EmbeddingOp 补上前缀。
- Provider 返回的向量可能是数字列表，也可能是 base64 编码的 float32
  小端字节串；统一解码后做 L2 归一化。
"""

import base64
import binascii
import math
import struct
from typing import Dict, List, Optional, Sequence, Union

from llm_core.domain.exceptions import ResponseParseError
from llm_core.domain.models import EmbeddingOp, Model


Op = EmbeddingOp

# 每个家族：{用途: 模板}，模板中的 %s 为原文；缺省用途取 DEFAULT
EMBEDDING_PREFIXES: Dict[str, Dict[EmbeddingOp, str]] = {
    "nomic": {
        Op.QUERY: "search_query: %s",
        Op.DOCUMENT: "search_document: %s",
        Op.DEFAULT: "search_document: %s",
        Op.QUESTION: "search_document: %s",
        Op.FACT_CHECK: "search_document: %s",
        Op.CODE_RETRIEVAL: "search_document: %s",
        Op.CLASSIFICATION: "classification: %s",
        Op.CLUSTERING: "clustering: %s",
        Op.SEMANTIC_SIMILARITY: "clustering: %s",
    },
    "snowflake": {
        Op.QUERY: "query: %s",
        Op.DEFAULT: "%s",
    },
    "qwen3": {
        Op.QUERY: "Instruct: \n Query: %s <|endoftext|>",
        Op.DEFAULT: "%s <|endoftext|>",
    },
    "bge": {
        Op.QUERY: "Represent this sentence for searching relevant passages: %s",
        Op.DEFAULT: "%s",
    },
    "gemma": {
        Op.QUERY: "task: search result | query: %s",
        Op.DOCUMENT: "title: none | text: %s",
        Op.DEFAULT: "title: none | text: %s",
        Op.QUESTION: "task: question answering | query: %s",
        Op.FACT_CHECK: "task: fact checking | query: %s",
        Op.CLASSIFICATION: "task: classification | query: %s",
        Op.CLUSTERING: "task: clustering | query: %s",
        Op.SEMANTIC_SIMILARITY: "task: sentence similarity | query: %s",
        Op.CODE_RETRIEVAL: "task: code retrieval | query: %s",
    },
    "openai": {
        Op.DEFAULT: "%s",
    },
}


def embedding_family(model_name: Optional[str]) -> str:
    name = (model_name or "").lower()
    if "nomic" in name:
        return "nomic"
    if "snowflake" in name or "arctic" in name:
        return "snowflake"
    if "qwen3" in name:
        return "qwen3"
    if "bge" in name:
        return "bge"
    if "gemma" in name:
        return "gemma"
    return "openai"


def format_embedding_input(
    text: str,
    model: Union[Model, str, None],
    op: Union[EmbeddingOp, str, None] = EmbeddingOp.DEFAULT,
) -> str:
    """按模型家族和用途给文本加上任务前缀。"""

    name = model.name if isinstance(model, Model) else model
    if isinstance(op, str) and not isinstance(op, EmbeddingOp):
        op = EmbeddingOp(op.lower())
    op = op or EmbeddingOp.DEFAULT
    templates = EMBEDDING_PREFIXES[embedding_family(name)]
    template = templates.get(op, templates[EmbeddingOp.DEFAULT])
    return template.replace("%s", text)


def normalize(vec: Sequence[float]) -> List[float]:
    """L2 归一化；零向量原样返回。"""

    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0.0:
        return [float(v) for v in vec]
    return [float(v) / norm for v in vec]


def resize(vec: Sequence[float], size: Optional[int]) -> List[float]:
    """截断或补零到指定维度；size 小于 16 视为未指定。"""

    values = list(vec)
    if size is None or size < 16 or len(values) == size:
        return values
    if len(values) > size:
        return values[:size]
    return values + [0.0] * (size - len(values))


def decode_base64_floats(data: str) -> List[float]:
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ResponseParseError(f"Invalid base64 embedding: {e}", cause=e)
    if len(raw) % 4:
        raise ResponseParseError(f"Base64 embedding has {len(raw)} bytes, not a multiple of 4")
    return list(struct.unpack(f"<{len(raw) // 4}f", raw))


def to_vector(embedding: object, size: Optional[int] = None) -> List[float]:
    """把 Provider 返回的 embedding 字段转换为归一化后的 float 列表。"""

    if isinstance(embedding, str):
        values = decode_base64_floats(embedding)
    elif isinstance(embedding, (list, tuple)):
        try:
            values = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise ResponseParseError(f"Embedding contains non-numeric values: {e}", cause=e)
    else:
        raise ResponseParseError(f"Unexpected embedding format: {type(embedding).__name__}")
    return normalize(resize(values, size))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector sizes differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return dot / (na * nb)
