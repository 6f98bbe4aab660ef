"""重试 / 退避控制器。

对一次“逻辑调用”（可能包含多次 HTTP 尝试）做失败分类：

- RateLimitError：指数退避 min(2^(attempt-1) * base, cap)，服务端给出 reset 提示时优先使用。
- NetworkError：线性退避 attempt * base。
- ServerError：仅当 retry_server_errors 开启时按线性退避重试。
- 其他错误（含 AuthenticationError）：立即抛出。

达到 max_attempts 后抛出最后一次观察到的错误，最后一次失败之后不再等待。
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from venice_core.domain.exceptions import BusinessError, NetworkError, RateLimitError, ServerError
from venice_core.domain.models import RateLimitInfo
from venice_core.infrastructure.logging.logger import logger

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_server_errors: bool = False
    low_water_requests: int = 5
    low_water_tokens: int = 1000

    @classmethod
    def from_settings(cls, cfg) -> "RetryPolicy":
        return cls(
            max_attempts=getattr(cfg, "retry_max_attempts", 3),
            base_delay=getattr(cfg, "retry_base_delay", 1.0),
            max_delay=getattr(cfg, "retry_max_delay", 30.0),
            retry_server_errors=getattr(cfg, "retry_server_errors", False),
            low_water_requests=getattr(cfg, "rate_limit_low_water_requests", 5),
            low_water_tokens=getattr(cfg, "rate_limit_low_water_tokens", 1000),
        )


@dataclass
class RetryState:
    """单次 run() 期间的重试状态，成功或最终失败后丢弃。"""

    attempt: int = 0
    last_error: Optional[BusinessError] = None
    next_delay: float = 0.0


class RetryController:
    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: Optional[Sleep] = None):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        # 最近一次响应头里的限流遥测
        self.telemetry: Optional[RateLimitInfo] = None

    def observe(self, info: RateLimitInfo) -> None:
        self.telemetry = info

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "request") -> T:
        """执行 operation，按错误分类决定重试、等待或放弃。"""

        state = RetryState()
        while True:
            state.attempt += 1
            self._warn_if_low_quota(label)
            try:
                return await operation()
            except BusinessError as e:
                state.last_error = e
                delay = self.delay_for(e, state.attempt)
                if delay is None:
                    raise
                if state.attempt >= self.policy.max_attempts:
                    logger.error(
                        f"{label} failed after {state.attempt} attempts",
                        extra={"extra": {"label": label, "code": e.code, "attempts": state.attempt}},
                    )
                    raise
                state.next_delay = delay
                logger.warning(
                    f"{label} attempt {state.attempt} failed, retrying in {delay:.2f}s",
                    extra={"extra": {"label": label, "code": e.code, "attempt": state.attempt, "delay": delay}},
                )
                await self._sleep(delay)

    def delay_for(self, error: BusinessError, attempt: int) -> Optional[float]:
        """返回下一次尝试前的等待秒数；None 表示该错误不可重试。"""

        policy = self.policy
        if isinstance(error, RateLimitError):
            hint = error.retry_after
            if hint is not None:
                return min(hint, policy.max_delay)
            return min((2 ** (attempt - 1)) * policy.base_delay, policy.max_delay)
        if isinstance(error, NetworkError):
            return attempt * policy.base_delay
        if isinstance(error, ServerError) and policy.retry_server_errors:
            return attempt * policy.base_delay
        return None

    def _warn_if_low_quota(self, label: str) -> None:
        info = self.telemetry
        if info is None:
            return
        low_requests = (
            info.remaining_requests is not None and info.remaining_requests < self.policy.low_water_requests
        )
        low_tokens = info.remaining_tokens is not None and info.remaining_tokens < self.policy.low_water_tokens
        if low_requests or low_tokens:
            logger.warning(
                "Rate limit quota running low",
                extra={
                    "extra": {
                        "label": label,
                        "remaining_requests": info.remaining_requests,
                        "remaining_tokens": info.remaining_tokens,
                        "reset_requests": info.reset_requests,
                    }
                },
            )
