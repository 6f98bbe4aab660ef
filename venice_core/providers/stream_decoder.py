"""流式响应（server-sent events）解码器。

两种状态：STREAMING -> DONE。

- 收到字节块：追加到缓冲区，按行切分，末尾不完整的一行留到下一块再处理。
- 非 "data:" 开头的行直接丢弃。
- "data: [DONE]"：切换到 DONE，之后的行和字节块全部忽略，不可恢复。
- 其余 data 行按 JSON 解析；解析失败只丢弃该帧并记录日志，不中断整个流。
- 解析成功且包含 choices[i].delta.content 时，按到达顺序发出 ContentDelta。

iter_deltas() 负责在所有退出路径（正常结束、DONE、调用方提前 break、异常）
上释放底层响应。
"""

import codecs
import json
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Union

import httpx

from venice_core.domain.exceptions import MalformedFrameError
from venice_core.domain.models import ChatUsage, ContentDelta
from venice_core.infrastructure.logging.logger import logger

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class DecoderState(Enum):
    STREAMING = "streaming"
    DONE = "done"


class StreamDecoder:
    def __init__(self, on_delta: Optional[Callable[[ContentDelta], None]] = None):
        self.state = DecoderState.STREAMING
        self.usage: Optional[ChatUsage] = None
        self.finish_reason: Optional[str] = None
        self.malformed_frames = 0
        self._on_delta = on_delta
        self._buffer = ""
        # 多字节 UTF-8 字符可能被拆到两个字节块里
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def done(self) -> bool:
        return self.state is DecoderState.DONE

    def feed(self, chunk: Union[bytes, str]) -> List[ContentDelta]:
        """处理一个字节块，返回本块中解析出的所有增量。"""

        if self.done:
            return []
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._process_lines(lines)

    def finish(self) -> List[ContentDelta]:
        """字节源结束时调用：把缓冲区里最后一行（没有换行结尾）当作完整行处理。"""

        if self.done:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._process_lines([tail])

    def _process_lines(self, lines: List[str]) -> List[ContentDelta]:
        deltas: List[ContentDelta] = []
        for line in lines:
            if self.done:
                break
            deltas.extend(self._process_line(line.rstrip("\r")))
        return deltas

    def _process_line(self, line: str) -> List[ContentDelta]:
        if not line.startswith(DATA_PREFIX):
            return []
        data_str = line[len(DATA_PREFIX):].strip()
        if data_str == DONE_SENTINEL:
            self.state = DecoderState.DONE
            return []
        if not data_str:
            return []
        try:
            frame = self._parse_frame(data_str)
        except MalformedFrameError as e:
            self.malformed_frames += 1
            logger.warning(e.message, extra={"extra": {"code": e.code, "frame": data_str[:200]}})
            return []
        return self._emit(frame)

    @staticmethod
    def _parse_frame(data_str: str) -> dict:
        try:
            frame = json.loads(data_str)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(code="MALFORMED_FRAME", message=f"Malformed stream frame: {e}") from e
        if not isinstance(frame, dict):
            raise MalformedFrameError(code="MALFORMED_FRAME", message="Stream frame is not a JSON object")
        usage = frame.get("usage")
        if usage is not None and not isinstance(usage, dict):
            raise MalformedFrameError(code="MALFORMED_FRAME", message="Stream frame usage is not an object")
        choices = frame.get("choices")
        if choices is None:
            return frame
        if not isinstance(choices, list):
            raise MalformedFrameError(code="MALFORMED_FRAME", message="Stream frame choices is not a list")
        for ch in choices:
            if not isinstance(ch, dict):
                raise MalformedFrameError(code="MALFORMED_FRAME", message="Stream frame choice is not an object")
            delta = ch.get("delta")
            if delta is not None and not isinstance(delta, dict):
                raise MalformedFrameError(code="MALFORMED_FRAME", message="Stream frame delta is not an object")
        return frame

    def _emit(self, frame: dict) -> List[ContentDelta]:
        usage_raw = frame.get("usage")
        if usage_raw:
            self.usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        deltas: List[ContentDelta] = []
        for i, ch in enumerate(frame.get("choices") or []):
            finish_reason = ch.get("finish_reason")
            if finish_reason:
                self.finish_reason = finish_reason
            content = (ch.get("delta") or {}).get("content")
            if not content or not isinstance(content, str):
                continue
            delta = ContentDelta(content=content, index=ch.get("index", i), finish_reason=finish_reason)
            if self._on_delta is not None:
                self._on_delta(delta)
            deltas.append(delta)
        return deltas


async def iter_deltas(response: httpx.Response, decoder: StreamDecoder) -> AsyncIterator[ContentDelta]:
    """从已打开的流式响应中逐个产出增量，退出时总会关闭响应。"""

    try:
        async for chunk in response.aiter_bytes():
            for delta in decoder.feed(chunk):
                yield delta
            if decoder.done:
                break
        for delta in decoder.finish():
            yield delta
    finally:
        await response.aclose()
