"""多轮对话状态。

Conversation 维护一个按时间排序、长度有上限的消息列表：

- add_message 追加后若超过 max_messages，从最早的一端裁剪。
- send / send_stream 把完整列表（可选 system prompt 置于最前，不计入上限）
  发给 Provider，并把回答作为 assistant 消息追加。

同一实例同一时间只允许一个 send 在途，并发调用会直接抛出 UserInputError。
"""

import logging
from contextlib import aclosing
from typing import Any, Dict, List, Optional, Tuple

from venice_core.config.settings import settings
from venice_core.domain.exceptions import UserInputError
from venice_core.domain.models import ROLES, ChatMessage, ChatRequest, Role
from venice_core.infrastructure.logging.logger import logger
from venice_core.providers.base import DeltaCallback, ProviderClient

_REQUEST_FIELDS = ("temperature", "top_p", "max_tokens")


class Conversation:
    def __init__(
        self,
        client: ProviderClient,
        max_messages: Optional[int] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ):
        self._client = client
        if max_messages is None:
            max_messages = getattr(settings, "max_context_messages", 20)
        self.max_messages = max_messages
        if self.max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self.model = model or getattr(settings, "default_model", "chat")
        self.system_prompt = system_prompt
        self._messages: List[ChatMessage] = []
        self._in_flight = False

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_message(self, role: Role, content: str) -> ChatMessage:
        if role not in ROLES:
            raise UserInputError(code="INVALID_ROLE", message=f"Unknown message role: {role!r}")
        message = ChatMessage(role=role, content=content)
        self._messages.append(message)
        overflow = len(self._messages) - self.max_messages
        if overflow > 0:
            del self._messages[:overflow]
            self._log(logging.INFO, "Truncated context", trimmed=overflow, max_messages=self.max_messages)
        return message

    def clear(self) -> None:
        self._messages.clear()

    async def send(self, user_text: str, **options: Any) -> str:
        """发送一条用户消息并等待完整（非流式）回答。"""

        self._begin()
        try:
            self.add_message("user", user_text)
            result = await self._client.chat(self._build_request(options))
            content = result.content
            self.add_message("assistant", content)
            if result.usage:
                self._log(logging.INFO, "Token usage", total_tokens=result.usage.total_tokens)
            return content
        finally:
            self._in_flight = False

    async def send_stream(self, user_text: str, on_delta: Optional[DeltaCallback] = None, **options: Any) -> str:
        """流式发送；增量通过 on_delta 回调，结束后把完整回答写入历史。"""

        self._begin()
        try:
            self.add_message("user", user_text)
            parts: List[str] = []
            async with aclosing(self._client.chat_stream(self._build_request(options), on_delta)) as deltas:
                async for delta in deltas:
                    parts.append(delta.content)
            content = "".join(parts)
            self.add_message("assistant", content)
            return content
        finally:
            self._in_flight = False

    def _begin(self) -> None:
        if self._in_flight:
            raise UserInputError(code="CONVERSATION_BUSY", message="Conversation already has a request in flight")
        self._in_flight = True

    def _build_request(self, options: Dict[str, Any]) -> ChatRequest:
        extra = dict(options)
        fields = {name: extra.pop(name) for name in _REQUEST_FIELDS if name in extra}
        model = extra.pop("model", self.model)
        messages = list(self._messages)
        if self.system_prompt:
            messages.insert(0, ChatMessage(role="system", content=self.system_prompt))
        return ChatRequest(model=model, messages=messages, options=extra, **fields)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        logger.log(level, message, extra={"extra": {"component": "conversation", **fields}})
