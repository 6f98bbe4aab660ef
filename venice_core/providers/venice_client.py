"""Venice Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest / 图片参数。
2. 将其转换为 Venice 的 HTTP API 请求格式（OpenAI 兼容的 chat/completions，
   以及 image/edit、image/generate）。
3. 通过 RetryController 调用 Transport，处理限流 / 网络错误的退避重试。
4. 将响应 JSON 解析为 ChatResult / ContentDelta / ImageResult。

流式调用只对“打开流”这一步做重试；一旦开始产出增量就不再重试，
避免把已经发给调用方的内容重复发送。
"""

import asyncio
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from venice_core.config.settings import settings
from venice_core.domain.exceptions import ApiError, BusinessError, UserInputError
from venice_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
    ContentDelta,
    ImageResult,
)
from venice_core.imaging.normalizer import normalize_image_response
from venice_core.providers.base import DeltaCallback
from venice_core.providers.registry import VENICE_CONFIG, resolve_model
from venice_core.providers.retry import RetryController, RetryPolicy
from venice_core.providers.stream_decoder import StreamDecoder, iter_deltas
from venice_core.providers.transport import Transport


class VeniceClient:
    """Venice 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - api_key: 显式传入时覆盖配置中的 venice_api_key（例如用户在页面上填写的 Key）。
    - http_transport: 可选的 httpx 传输层，测试时传入 httpx.MockTransport。
    """

    name = "venice"

    def __init__(
        self,
        cfg=settings,
        api_key: Optional[str] = None,
        http_transport=None,
        retry: Optional[RetryController] = None,
    ):
        self._settings = cfg
        self._api_key = api_key
        self._http_transport = http_transport
        self._retry = retry or RetryController(RetryPolicy.from_settings(cfg))

    @property
    def retry(self) -> RetryController:
        return self._retry

    def _require_key(self) -> str:
        key = (self._api_key or getattr(self._settings, "venice_api_key", None) or "").strip()
        if not key:
            # 配置缺失走 UserInputError，方便上层统一提示
            raise UserInputError(code="MISSING_API_KEY", message="Please provide a Venice API key (VENICE_API_KEY not set)")
        return key

    def _transport(self, key: str) -> Transport:
        base = getattr(self._settings, "venice_base_url", None) or VENICE_CONFIG.base_url
        return Transport(
            base_url=base,
            api_key=key,
            timeout=self._settings.http_timeout,
            http_transport=self._http_transport,
            on_response=self._retry.observe,
        )

    # ---- 对话 ----

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用（带重试）。"""

        transport = self._transport(self._require_key())
        payload = self._build_payload(req)
        async with transport.client() as http:
            resp = await self._retry.run(
                lambda: transport.post_json(http, "/chat/completions", payload),
                label="chat",
            )
        return self._parse_response(self._decode_json(resp), req)

    async def chat_stream(self, req: ChatRequest, on_delta: Optional[DeltaCallback] = None) -> AsyncIterator[ContentDelta]:
        """执行一次流式对话调用，按到达顺序逐个 yield ContentDelta。

        提前退出时请用 contextlib.aclosing 包裹迭代器，保证底层连接立即释放。
        """

        transport = self._transport(self._require_key())
        payload = self._build_payload(req)
        payload["stream"] = True
        async with transport.client() as http:
            resp = await self._retry.run(
                lambda: transport.open_stream(http, "/chat/completions", payload),
                label="chat_stream",
            )
            decoder = StreamDecoder(on_delta)
            async with aclosing(iter_deltas(resp, decoder)) as deltas:
                async for delta in deltas:
                    yield delta

    async def complete_stream(self, req: ChatRequest, on_delta: Optional[DeltaCallback] = None) -> str:
        """流式调用并返回拼接后的完整回答。"""

        parts: List[str] = []
        async with aclosing(self.chat_stream(req, on_delta)) as deltas:
            async for delta in deltas:
                parts.append(delta.content)
        return "".join(parts)

    async def chat_many(self, requests: Sequence[ChatRequest]) -> List[Union[ChatResult, BusinessError]]:
        """并发执行多个独立请求（例如多模型对比）。

        返回列表与输入按下标一一对应；单个请求的业务错误放在对应位置，不影响其他请求。
        """

        results = await asyncio.gather(*(self.chat(r) for r in requests), return_exceptions=True)
        for item in results:
            if isinstance(item, BaseException) and not isinstance(item, BusinessError):
                raise item
        return list(results)

    # ---- 图片 ----

    async def edit_image(self, image_b64: str, prompt: str) -> ImageResult:
        """调用 image/edit，返回归一化后的 ImageResult。"""

        transport = self._transport(self._require_key())
        payload = {"image": image_b64, "prompt": prompt}
        async with transport.client(timeout=self._settings.image_timeout) as http:
            resp = await self._retry.run(
                lambda: transport.post_json(http, "/image/edit", payload),
                label="image_edit",
            )
        return normalize_image_response(resp)

    async def generate_image(
        self,
        prompt: str,
        model: str = "image",
        width: int = 1024,
        height: int = 1024,
        negative_prompt: Optional[str] = None,
        **options: Any,
    ) -> ImageResult:
        """调用 image/generate（文生图）。"""

        transport = self._transport(self._require_key())
        payload: Dict[str, Any] = {
            "model": resolve_model(model).provider_model,
            "prompt": prompt,
            "width": width,
            "height": height,
            "format": "png",
        }
        if negative_prompt:
            payload["negative_prompt"] = negative_prompt
        payload.update(options)
        async with transport.client(timeout=self._settings.image_timeout) as http:
            resp = await self._retry.run(
                lambda: transport.post_json(http, "/image/generate", payload),
                label="image_generate",
            )
        return normalize_image_response(resp)

    async def fetch_image_bytes(self, result: ImageResult) -> bytes:
        """内联结果直接返回字节，远程结果下载 URL。"""

        if result.data is not None:
            return result.data
        transport = self._transport(self._require_key())
        async with transport.client(timeout=self._settings.image_timeout) as http:
            resp = await self._retry.run(lambda: transport.get(http, result.url), label="image_fetch")
        return resp.content

    # ---- 请求 / 响应转换 ----

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        model_cfg = resolve_model(req.model)
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [m.to_payload() for m in req.messages],
        }
        temperature = req.temperature if req.temperature is not None else model_cfg.default_temperature
        if temperature is not None:
            payload["temperature"] = temperature
        max_tokens = req.max_tokens or model_cfg.max_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if req.top_p is not None:
            payload["top_p"] = req.top_p
        payload.update(req.options)
        return payload

    @staticmethod
    def _decode_json(resp) -> dict:
        """2xx 响应体必须是 JSON 对象，否则视为 API 错误。"""

        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(
                code="INVALID_RESPONSE",
                message=f"API returned a non-JSON body (status {resp.status_code})",
                http_status=502,
            ) from e
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="API response is not a JSON object", http_status=502)
        return data

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list) or not all(isinstance(ch, dict) for ch in raw_choices):
            raise ApiError(code="INVALID_RESPONSE", message="API response choices are malformed", http_status=502)
        choices: List[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise ApiError(code="INVALID_RESPONSE", message="API response message is malformed", http_status=502)
            cm = ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or "")
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = None
        if isinstance(usage_raw, dict) and usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(model=data.get("model") or req.model, choices=choices, usage=usage, raw=data)
