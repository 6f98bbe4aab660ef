"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- HTTP 传输、重试退避与流式解码 (transport / retry / stream_decoder)。
- 提供 Venice 的具体实现 (venice_client)。
"""

from typing import Literal, Optional

from venice_core.config.settings import settings
from venice_core.providers.base import ProviderClient
from venice_core.providers.registry import get_provider_config
from venice_core.providers.venice_client import VeniceClient


def create_provider(name: Optional[str] = None, api_key: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例；目前只有 venice。"""

    cfg = get_provider_config(name or "venice")
    if cfg.name == "venice":
        return VeniceClient(settings, api_key=api_key)
    raise KeyError(f"No client implementation for provider: {cfg.name!r}")


DefaultProviderName = Literal["venice"]
