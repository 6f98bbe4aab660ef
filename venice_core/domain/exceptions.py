"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在调用方（脚本 / 服务层）做统一捕获与用户提示。

错误分类与重试关系：
- AuthenticationError / ApiError / UserInputError：首次出现即抛出，不重试。
- RateLimitError / NetworkError：瞬时错误，由 RetryController 退避重试。
- ServerError：默认不重试，可通过 retry_server_errors 配置开启。
- MalformedFrameError：单帧错误，流式解码器记录日志后跳过。
"""

from typing import Any, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 retry_after、payload 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等（没有拿到任何响应）。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx 且不属于下列特殊情况时抛出。"""


class AuthenticationError(ApiError):
    """凭证无效（HTTP 401），永不重试。"""


class RateLimitError(ApiError):
    """Provider 限流错误（HTTP 429），由 RetryController 负责退避。"""

    @property
    def retry_after(self) -> Optional[float]:
        """服务端给出的重置提示（秒），没有时为 None。"""

        return self.extra.get("retry_after")


class ServerError(ApiError):
    """服务端 5xx 错误。"""


class MalformedFrameError(BusinessError):
    """流式响应中的单帧无法解析。"""


class UnrecognizedResponseShapeError(BusinessError):
    """图片接口返回了无法识别的响应结构，payload 保存在 extra 中。"""

    @property
    def payload(self) -> Any:
        return self.extra.get("payload")


class UserInputError(BusinessError):
    """调用方输入缺失或非法（缺少 API Key、缺少原图等）。"""


class ImageDecodeError(BusinessError):
    """图片字节无法被解码。"""
