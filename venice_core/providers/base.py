"""Provider 抽象接口。

上层 Conversation / CardSession 不直接依赖具体的 HTTP 实现，而是依赖此协议：

- VeniceClient 是当前唯一的实现。
- 负责：将 ChatRequest 转成 API 请求，并把响应解析为 ChatResult / ContentDelta / ImageResult。

测试中可以用一个满足协议的假对象替换真实客户端。
"""

from typing import AsyncIterator, Callable, Optional, Protocol

from venice_core.domain.models import ChatRequest, ChatResult, ContentDelta, ImageResult


DeltaCallback = Callable[[ContentDelta], None]


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    - chat_stream(req): 流式对话调用，逐个产出 ContentDelta。
    """

    name: str

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def chat_stream(
        self, req: ChatRequest, on_delta: Optional[DeltaCallback] = None
    ) -> AsyncIterator[ContentDelta]:
        ...

    async def edit_image(self, image_b64: str, prompt: str) -> ImageResult:
        ...

    async def fetch_image_bytes(self, result: ImageResult) -> bytes:
        ...
