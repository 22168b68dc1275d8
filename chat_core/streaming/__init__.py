"""流式响应流水线。

- decoder: 事件流帧切分与厂商变体解析 (FrameDecoder)。
- session: 一次请求/响应周期的拉取式增量序列 (StreamSession)。
- state: 单轮流水线状态机 (TurnState)。
- pacing: 按字符速率释放文本 (PacingBuffer)。
- output: 写终端并检测完成 (OutputPump)。
"""

from chat_core.streaming.decoder import DecodeResult, FrameDecoder
from chat_core.streaming.output import OutputPump, TerminalWriter
from chat_core.streaming.pacing import PacingBuffer, chars_per_second, split_graphemes
from chat_core.streaming.session import StreamSession
from chat_core.streaming.state import TurnState

__all__ = [
    "DecodeResult",
    "FrameDecoder",
    "OutputPump",
    "PacingBuffer",
    "StreamSession",
    "TerminalWriter",
    "TurnState",
    "chars_per_second",
    "split_graphemes",
]
