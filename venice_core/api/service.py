"""对外 API 服务模块。

提供简化的异步函数接口供上层应用（脚本、Web 服务）调用，
每次调用按需构造客户端，不持有全局状态。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from venice_core.config.settings import settings
from venice_core.domain.exceptions import BusinessError
from venice_core.domain.models import ChatMessage, ChatRequest
from venice_core.imaging.pipeline import CardSession
from venice_core.infrastructure.logging.logger import logger
from venice_core.providers.base import DeltaCallback
from venice_core.providers.venice_client import VeniceClient


async def run_chat(
    user_input: str,
    model: Optional[str] = None,
    system_prompt: Optional[str] = None,
    client: Optional[VeniceClient] = None,
) -> Dict[str, Any]:
    """运行一次单轮对话。

    Returns:
        包含模型、回答内容和使用统计的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    client = client or VeniceClient(settings)
    req = ChatRequest(model=model or settings.default_model, messages=_messages(user_input, system_prompt))
    try:
        result = await client.chat(req)
    except BusinessError as e:
        logger.error(f"Chat failed: {e.message}", extra={"extra": {"code": e.code, "model": req.model}})
        raise
    usage = None
    if result.usage:
        usage = {
            "prompt_tokens": result.usage.prompt_tokens,
            "completion_tokens": result.usage.completion_tokens,
            "total_tokens": result.usage.total_tokens,
        }
    return {"model": result.model, "content": result.content, "usage": usage}


async def stream_chat(
    user_input: str,
    on_delta: DeltaCallback,
    model: Optional[str] = None,
    system_prompt: Optional[str] = None,
    client: Optional[VeniceClient] = None,
) -> str:
    """流式单轮对话，增量通过 on_delta 回调，返回完整回答。"""

    client = client or VeniceClient(settings)
    req = ChatRequest(model=model or settings.default_model, messages=_messages(user_input, system_prompt))
    return await client.complete_stream(req, on_delta)


async def compare_models(
    prompt: str,
    models: Sequence[str],
    client: Optional[VeniceClient] = None,
) -> List[Dict[str, Any]]:
    """把同一个问题并发发给多个模型，结果按 models 的顺序返回。"""

    client = client or VeniceClient(settings)
    requests = [ChatRequest(model=m, messages=_messages(prompt, None)) for m in models]
    results = await client.chat_many(requests)
    rows: List[Dict[str, Any]] = []
    for model, result in zip(models, results):
        if isinstance(result, BusinessError):
            rows.append({"model": model, "content": None, "error": result.message})
        else:
            rows.append({"model": model, "content": result.content, "error": None})
    return rows


async def create_holiday_card(
    photo: Union[str, Path, bytes],
    output: Union[str, Path, None] = None,
    caption: Optional[str] = None,
    api_key: Optional[str] = None,
    client: Optional[VeniceClient] = None,
) -> Path:
    """上传照片 -> 生成水彩节日卡片 -> 写入 PNG 文件，返回文件路径。"""

    credential = api_key or settings.venice_api_key
    async with CardSession(credential, client=client) as session:
        await session.load_photo(photo)
        await session.create_card(caption=caption)
        return session.download(output)


def _messages(user_input: str, system_prompt: Optional[str]) -> List[ChatMessage]:
    msgs: List[ChatMessage] = []
    if system_prompt:
        msgs.append(ChatMessage(role="system", content=system_prompt))
    msgs.append(ChatMessage(role="user", content=user_input))
    return msgs
