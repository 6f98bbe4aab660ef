"""统一的对话、流式增量与图片结果数据模型。

本模块定义了客户端内部共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），创建后不可变。
- ChatRequest: 发给 Venice chat/completions 的完整请求。
- ChatResult: 解析后的非流式响应结果。
- ContentDelta: 流式响应中的一个文本增量。
- RateLimitInfo: 从响应头中解析出的限流 / 余额遥测。
- ImageResult: 图片接口归一化后的结果（远程 URL 或内联字节）。

Provider 适配器（VeniceClient）只依赖这些模型，
并负责在 API JSON 和这些模型之间做转换。
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。追加后不再修改。"""

    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    model 可以是 registry 中的逻辑模型名，也可以直接是 Venice 的模型 ID。
    options 中的字段原样合并进请求体（例如 venice_parameters、stop 等）。
    """

    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前通常只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次非流式对话调用的最终结果。

    - model: 请求使用的模型名。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content


@dataclass
class ContentDelta:
    """流式返回中的一个文本增量，按到达顺序发给调用方。"""

    content: str
    index: int = 0
    finish_reason: Optional[str] = None


@dataclass
class RateLimitInfo:
    """响应头中的限流与余额信息，仅用于观测和退避决策。"""

    limit_requests: Optional[int] = None
    remaining_requests: Optional[int] = None
    remaining_tokens: Optional[int] = None
    reset_requests: Optional[float] = None
    reset_tokens: Optional[float] = None
    balance_usd: Optional[float] = None
    balance_diem: Optional[float] = None


ImageShape = Literal["binary", "direct-url", "nested-url", "inline-encoded"]


@dataclass
class ImageResult:
    """图片生成 / 编辑结果的统一引用。

    url 与 data 二者必有其一：远程结果保存 URL，内联结果保存解码后的字节。
    shape 记录命中的响应结构，便于排查问题。
    """

    shape: ImageShape
    url: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "image/png"

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def to_data_url(self) -> str:
        if self.data is None:
            raise ValueError("remote image result has no inline data")
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"
