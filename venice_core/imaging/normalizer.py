"""图片接口响应归一化。

Venice（以及兼容实现）的图片接口可能返回多种结构，这里用一组按优先级排列的
匹配器依次尝试，第一个命中的结果即为最终的 ImageResult：

1. BinaryImageShape：Content-Type 为 image/*，响应体就是图片。
2. DirectUrlShape：{"url": "..."}
3. NestedDataUrlShape：{"data": [{"url": "..."}]}
4. InlineEncodedShape：{"images": ["<base64>" | {"url"} | {"b64_json"}]}
   或 {"data": [{"b64_json": "..."}]}

全部不命中时抛出 UnrecognizedResponseShapeError，并把原始 payload 写入日志。
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import httpx

from venice_core.domain.exceptions import UnrecognizedResponseShapeError
from venice_core.domain.models import ImageResult
from venice_core.infrastructure.logging.logger import logger


@dataclass
class RawImageResponse:
    content_type: str
    body: bytes
    payload: Any = None

    @classmethod
    def from_httpx(cls, resp: httpx.Response) -> "RawImageResponse":
        content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        payload = None
        if not content_type.startswith("image/"):
            try:
                payload = resp.json()
            except ValueError:
                payload = None
        return cls(content_type=content_type, body=resp.content, payload=payload)


class ResponseShape(Protocol):
    name: str

    def match(self, raw: RawImageResponse) -> Optional[ImageResult]:
        ...


def _first(items: Any) -> Any:
    if isinstance(items, list) and items:
        return items[0]
    return None


def _decode_inline(value: str) -> Optional[bytes]:
    """解码内联 base64（允许带 data URI 前缀），非法内容返回 None。"""

    if "," in value and value.startswith("data:"):
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


class BinaryImageShape:
    name = "binary"

    def match(self, raw: RawImageResponse) -> Optional[ImageResult]:
        if raw.content_type.startswith("image/") and raw.body:
            return ImageResult(shape="binary", data=raw.body, content_type=raw.content_type)
        return None


class DirectUrlShape:
    name = "direct-url"

    def match(self, raw: RawImageResponse) -> Optional[ImageResult]:
        if isinstance(raw.payload, dict) and isinstance(raw.payload.get("url"), str):
            return ImageResult(shape="direct-url", url=raw.payload["url"])
        return None


class NestedDataUrlShape:
    name = "nested-url"

    def match(self, raw: RawImageResponse) -> Optional[ImageResult]:
        if not isinstance(raw.payload, dict):
            return None
        first = _first(raw.payload.get("data"))
        if isinstance(first, dict) and isinstance(first.get("url"), str):
            return ImageResult(shape="nested-url", url=first["url"])
        return None


class InlineEncodedShape:
    name = "inline-encoded"

    def match(self, raw: RawImageResponse) -> Optional[ImageResult]:
        if not isinstance(raw.payload, dict):
            return None
        image = _first(raw.payload.get("images"))
        if isinstance(image, dict) and isinstance(image.get("url"), str):
            return ImageResult(shape="inline-encoded", url=image["url"])
        candidate = None
        if isinstance(image, str):
            candidate = image
        elif isinstance(image, dict) and isinstance(image.get("b64_json"), str):
            candidate = image["b64_json"]
        else:
            first = _first(raw.payload.get("data"))
            if isinstance(first, dict) and isinstance(first.get("b64_json"), str):
                candidate = first["b64_json"]
        if candidate is None:
            return None
        data = _decode_inline(candidate)
        if not data:
            return None
        return ImageResult(shape="inline-encoded", data=data)


DEFAULT_SHAPES: List[ResponseShape] = [
    BinaryImageShape(),
    DirectUrlShape(),
    NestedDataUrlShape(),
    InlineEncodedShape(),
]


def normalize_raw(raw: RawImageResponse, shapes: Optional[List[ResponseShape]] = None) -> ImageResult:
    for shape in shapes or DEFAULT_SHAPES:
        result = shape.match(raw)
        if result is not None:
            return result
    diagnostic = raw.payload if raw.payload is not None else raw.body[:500].decode("utf-8", errors="replace")
    logger.error(
        "Unrecognized image response shape",
        extra={"extra": {"content_type": raw.content_type, "payload": diagnostic}},
    )
    raise UnrecognizedResponseShapeError(
        code="UNRECOGNIZED_RESPONSE",
        message="Image API response shape unrecognized",
        http_status=502,
        payload=diagnostic,
    )


def normalize_image_response(resp: httpx.Response, shapes: Optional[List[ResponseShape]] = None) -> ImageResult:
    """把 httpx 响应归一化为 ImageResult。"""

    return normalize_raw(RawImageResponse.from_httpx(resp), shapes)
