"""HTTP 传输层。

负责与 Venice API 的单次交互：

1. 按 base_url 构造 httpx.AsyncClient（每次逻辑调用一个 client）。
2. 附加 Bearer 凭证与 JSON 请求体。
3. 普通请求直接返回响应；流式请求返回尚未读取的响应（字节源），
   由调用方在所有退出路径上 aclose()。
4. 把状态码映射为 domain.exceptions 中的错误类型。
5. 解析限流 / 余额响应头，交给观测回调（通常是 RetryController.observe）。
"""

import time
from typing import Any, Callable, Dict, Optional

import httpx

from venice_core.domain.exceptions import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ServerError,
)
from venice_core.domain.models import RateLimitInfo


ResponseObserver = Callable[[RateLimitInfo], None]

# 大于该值的 reset 头按 Unix 时间戳处理，否则按剩余秒数处理
_EPOCH_THRESHOLD = 1_000_000_000


def _as_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _as_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _seconds_until(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """把 reset 提示转换为距当前的秒数，无法解析时返回 None。"""

    raw = _as_float(value)
    if raw is None:
        return None
    if raw > _EPOCH_THRESHOLD * 1000:
        raw = raw / 1000.0
    if raw > _EPOCH_THRESHOLD:
        current = time.time() if now is None else now
        return max(0.0, raw - current)
    return max(0.0, raw)


def parse_rate_limit_headers(headers: httpx.Headers) -> Optional[RateLimitInfo]:
    """从响应头解析 RateLimitInfo，没有任何相关头时返回 None。"""

    info = RateLimitInfo(
        limit_requests=_as_int(headers.get("x-ratelimit-limit-requests")),
        remaining_requests=_as_int(headers.get("x-ratelimit-remaining-requests")),
        remaining_tokens=_as_int(headers.get("x-ratelimit-remaining-tokens")),
        reset_requests=_seconds_until(headers.get("x-ratelimit-reset-requests")),
        reset_tokens=_seconds_until(headers.get("x-ratelimit-reset-tokens")),
        balance_usd=_as_float(headers.get("x-venice-balance-usd")),
        balance_diem=_as_float(headers.get("x-venice-balance-diem")),
    )
    if info == RateLimitInfo():
        return None
    return info


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if err:
            return str(err)
        if data.get("message"):
            return str(data["message"])
    return resp.text


def check_response(resp: httpx.Response) -> None:
    """非 2xx 响应转换为对应的业务异常；2xx 直接返回。"""

    status = resp.status_code
    if status < 400:
        return
    message = _error_message(resp)
    if status == 401:
        raise AuthenticationError(code="AUTH_FAILED", message=f"Authentication failed: {message}", http_status=401)
    if status == 429:
        retry_after = _seconds_until(resp.headers.get("retry-after"))
        if retry_after is None:
            retry_after = _seconds_until(resp.headers.get("x-ratelimit-reset-requests"))
        raise RateLimitError(
            code="RATE_LIMIT",
            message=f"Rate limit exceeded: {message}",
            http_status=429,
            retry_after=retry_after,
        )
    if status >= 500:
        raise ServerError(code="SERVER_ERROR", message=f"API Error: {status} - {message}", http_status=status)
    raise ApiError(code="API_ERROR", message=f"API Error: {status} - {message}", http_status=status)


class Transport:
    """面向单个 base_url 与凭证的请求执行器。"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        on_response: Optional[ResponseObserver] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        # 测试中注入 httpx.MockTransport
        self._http_transport = http_transport
        self._on_response = on_response

    def client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or self._timeout,
            trust_env=False,
            transport=self._http_transport,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _observe(self, resp: httpx.Response) -> None:
        if self._on_response is None:
            return
        info = parse_rate_limit_headers(resp.headers)
        if info is not None:
            self._on_response(info)

    async def post_json(self, http: httpx.AsyncClient, path: str, payload: Dict[str, Any]) -> httpx.Response:
        """发送一次 JSON POST，返回已读取完毕的 2xx 响应。"""

        try:
            resp = await http.post(path, json=payload, headers=self._headers())
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e)) from e
        self._observe(resp)
        check_response(resp)
        return resp

    async def get(self, http: httpx.AsyncClient, url: str) -> httpx.Response:
        """下载远程资源（图片 URL），不附加凭证。"""

        try:
            resp = await http.get(url)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e)) from e
        check_response(resp)
        return resp

    async def open_stream(self, http: httpx.AsyncClient, path: str, payload: Dict[str, Any]) -> httpx.Response:
        """发送流式请求并返回未读取的响应。

        错误状态码时先读取并释放响应再抛出；成功时响应的释放由调用方负责。
        """

        request = http.build_request("POST", path, json=payload, headers=self._headers())
        try:
            resp = await http.send(request, stream=True)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e)) from e
        self._observe(resp)
        if resp.status_code >= 400:
            try:
                await resp.aread()
            finally:
                await resp.aclose()
            check_response(resp)
        return resp
