"""流式响应帧解码。

把网络多次读取得到的文本拼接成缓冲区，按空行（"\\n\\n"）切分出完整帧，
末尾不完整的部分留到下一次读取。每个帧：

1. 去掉可选的 "event:" 行（记录事件名）以及 ":" 开头的注释行；
2. 去掉 "data:" 字段前缀得到载荷；
3. 空载荷视为 keep-alive 跳过；
4. "[DONE]" 立即结束，缓冲区中其后的内容不再解析；
5. 其余载荷按 JSON 解析，交给厂商变体提取增量文本并判断是否结束。

厂商差异被收敛为一个封闭的变体集合（见 VARIANTS），由配置选择。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from chat_core.domain.exceptions import FrameParseError, ModelError


FRAME_SEPARATOR = "\n\n"
DONE_SENTINEL = "[DONE]"
_SSE_FIELDS = ("event", "data", "id", "retry")


@dataclass
class DecodeResult:
    """一次 feed/close 的结果：本次解析出的增量（按顺序）以及流是否已结束。"""

    deltas: List[str] = field(default_factory=list)
    finished: bool = False


@dataclass
class Frame:
    event: Optional[str]
    payload: str


class DeltaExtractor(Protocol):
    """厂商变体：从已解析的 JSON 中提取增量文本，并判断是否为结束帧。"""

    name: str

    def extract(self, event: Optional[str], data: Dict[str, Any]) -> Tuple[str, bool]:
        ...


class OpenAIDeltaExtractor:
    """choices[0].delta.content；finish_reason 非空即结束（本帧内容仍然保留）。"""

    name = "openai"

    def extract(self, event: Optional[str], data: Dict[str, Any]) -> Tuple[str, bool]:
        choices = data.get("choices") or []
        if not choices:
            # 只带 usage 的尾帧
            return "", False
        choice = choices[0] or {}
        delta = choice.get("delta") or {}
        return delta.get("content") or "", choice.get("finish_reason") is not None


class AnthropicDeltaExtractor:
    """content_block_delta 携带文本；message_stop 结束；ping 等事件不含内容。"""

    name = "anthropic"

    def extract(self, event: Optional[str], data: Dict[str, Any]) -> Tuple[str, bool]:
        kind = data.get("type") or event
        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            return delta.get("text") or "", False
        return "", kind == "message_stop"


VARIANTS: Dict[str, type] = {
    "openai": OpenAIDeltaExtractor,
    "anthropic": AnthropicDeltaExtractor,
}


def get_variant(name: str) -> DeltaExtractor:
    try:
        return VARIANTS[name.lower()]()
    except KeyError:
        raise KeyError(f"Unknown decoder variant: {name!r}")


def split_frame(raw: str) -> Frame:
    """把一个原始帧拆成事件名与载荷。

    不带已知字段名的行（例如直接返回的 JSON 错误体）整行视为数据。
    """

    event: Optional[str] = None
    data_lines: List[str] = []
    for line in raw.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if sep and name in _SSE_FIELDS:
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event = value.strip()
            elif name == "data":
                data_lines.append(value)
            continue
        data_lines.append(line)
    return Frame(event=event, payload="\n".join(data_lines).strip())


class FrameDecoder:
    """有状态的帧解码器，一个实例只服务于一次流式响应。"""

    def __init__(self, variant: str = "openai"):
        self._variant = get_variant(variant)
        self._buffer = ""
        self._finished = False

    @property
    def variant(self) -> str:
        return self._variant.name

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def pending(self) -> str:
        """尚未凑成完整帧的缓冲内容。"""

        return self._buffer

    def feed(self, text: str) -> DecodeResult:
        """追加一次网络读取的文本，返回其中所有完整帧的解析结果。

        Raises:
            FrameParseError: 非空、非 [DONE] 的载荷不是合法 JSON。
            ModelError: 载荷是服务端错误对象。

        两种异常都会把流标记为结束；同一次 feed 中已解析出的增量放在
        异常的 extra["deltas"] 中，调用方据此保留已收到的文本。
        """

        if self._finished:
            return DecodeResult(finished=True)
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        result = DecodeResult()
        while not self._finished:
            idx = self._buffer.find(FRAME_SEPARATOR)
            if idx < 0:
                break
            raw = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(FRAME_SEPARATOR):]
            self._decode_into(raw, result)
        if self._finished:
            self._buffer = ""
        result.finished = self._finished
        return result

    def close(self) -> DecodeResult:
        """传输层已读到结尾：剩余内容按最后一帧处理，结果总是 finished。"""

        result = DecodeResult()
        if not self._finished and self._buffer.strip():
            raw, self._buffer = self._buffer, ""
            self._decode_into(raw.strip("\n"), result)
        self._buffer = ""
        self._finished = True
        result.finished = True
        return result

    def _decode_into(self, raw: str, result: DecodeResult) -> None:
        try:
            delta, done = self._decode_frame(raw)
        except (FrameParseError, ModelError) as e:
            self._finished = True
            self._buffer = ""
            e.extra["deltas"] = list(result.deltas)
            raise
        if delta:
            result.deltas.append(delta)
        if done:
            self._finished = True

    def _decode_frame(self, raw: str) -> Tuple[str, bool]:
        frame = split_frame(raw)
        if not frame.payload:
            return "", False
        if frame.payload == DONE_SENTINEL:
            return "", True
        try:
            data = json.loads(frame.payload)
        except json.JSONDecodeError as e:
            raise FrameParseError(frame.payload, message=f"Failed to parse stream frame ({e.msg})")
        error = ModelError.from_payload(data, frame.payload)
        if error is not None:
            raise error
        if not isinstance(data, dict):
            raise FrameParseError(frame.payload, message="Stream frame is not a JSON object")
        return self._variant.extract(frame.event, data)
