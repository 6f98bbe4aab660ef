"""Venice Core 顶层包。

该包提供调用 Venice AI API 的客户端核心实现，
包括配置加载、领域模型、带退避重试的传输层、流式响应解码、
多轮对话状态，以及节日卡片图片流水线。
"""

from venice_core.agents.conversation import Conversation
from venice_core.imaging.pipeline import CardSession, generate_stylized_image
from venice_core.providers.venice_client import VeniceClient

__all__ = ["CardSession", "Conversation", "VeniceClient", "generate_stylized_image"]
