"""OutputPump：把 PacingBuffer 释放的文本原样写到终端，并检测整轮完成。"""

from __future__ import annotations

import asyncio
import sys
from typing import Awaitable, Callable, Optional, Protocol, TextIO

from chat_core.domain.models import StreamState
from chat_core.streaming.state import TurnState


class OutputWriter(Protocol):
    def write(self, text: str) -> object:
        ...


class TerminalWriter:
    """终端输出：每次写入后立即 flush，保证逐字可见。"""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream or sys.stdout

    def write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()


class OutputPump:
    """取到空结果（None）且状态为 PACING_DONE 时触发一次 on_complete。

    flushed 标志保证 flush 只发生一次，flush 之后迟到的空结果不会再次触发。
    """

    def __init__(
        self,
        outbox: "asyncio.Queue[Optional[str]]",
        state: TurnState,
        writer: OutputWriter,
        on_complete: Callable[[], Awaitable[None]],
    ):
        self._outbox = outbox
        self._state = state
        self._writer = writer
        self._on_complete = on_complete
        self.flushed = False

    async def run(self) -> None:
        while not self.flushed:
            piece = await self._outbox.get()
            if piece:
                self._writer.write(piece)
                continue
            if self._state.is_(StreamState.PACING_DONE):
                await self.complete()

    async def complete(self) -> None:
        if self.flushed:
            return
        self.flushed = True
        await self._on_complete()
        self._state.advance(StreamState.PRINTED)
