"""PacingBuffer：与网络速度解耦的限速中继。

网络循环把增量文本放入 inbox（无界队列，网络永远不会被限速阻塞），
本循环按配置的字符速率逐个字素簇（grapheme cluster）释放到 outbox。
速率由 wpm 与每词平均字符数推算；wpm <= 0 表示不限速，收到的文本立即整体释放。

队列中的 None 表示上游已结束。
"""

from __future__ import annotations

import asyncio
import unicodedata
from typing import Awaitable, Callable, Iterator, List, Optional

from chat_core.domain.models import StreamState
from chat_core.streaming.state import TurnState


AVG_CHARS_PER_WORD = 4.8
ZWJ = "\u200d"

SleepFn = Callable[[float], Awaitable[None]]


def chars_per_second(wpm: float, avg_chars_per_word: float = AVG_CHARS_PER_WORD) -> Optional[float]:
    """wpm -> 每秒字符数；不限速时返回 None。"""

    if wpm is None or wpm <= 0:
        return None
    return avg_chars_per_word * wpm / 60


def _is_regional_indicator(ch: str) -> bool:
    return 0x1F1E6 <= ord(ch) <= 0x1F1FF


def _extends(cluster: str, ch: str) -> bool:
    """ch 是否应并入前一个字素簇。"""

    cp = ord(ch)
    if cluster.endswith(ZWJ):
        return True
    if cluster == "\r" and ch == "\n":
        return True
    if cp == 0x200D or 0xFE00 <= cp <= 0xFE0F or 0xE0100 <= cp <= 0xE01EF:
        return True
    if 0x1F3FB <= cp <= 0x1F3FF or 0xE0020 <= cp <= 0xE007F:
        return True
    if unicodedata.category(ch) in ("Mn", "Me", "Mc"):
        return True
    if _is_regional_indicator(ch):
        # 国旗由两个区域指示符组成
        return len(cluster) == 1 and _is_regional_indicator(cluster)
    return False


def iter_graphemes(text: str) -> Iterator[str]:
    cluster = ""
    for ch in text:
        if cluster and _extends(cluster, ch):
            cluster += ch
            continue
        if cluster:
            yield cluster
        cluster = ch
    if cluster:
        yield cluster


def split_graphemes(text: str) -> List[str]:
    """按可见字符切分：组合附加符、变体选择符、肤色修饰、ZWJ 序列、国旗等不会被拆开。"""

    return list(iter_graphemes(text))


class PacingBuffer:
    def __init__(
        self,
        inbox: "asyncio.Queue[Optional[str]]",
        outbox: "asyncio.Queue[Optional[str]]",
        state: TurnState,
        *,
        chars_per_second: Optional[float],
        sleep: SleepFn = asyncio.sleep,
    ):
        self._inbox = inbox
        self._outbox = outbox
        self._state = state
        self._interval = 1 / chars_per_second if chars_per_second else None
        self._sleep = sleep
        self._pending = ""
        self.released = 0

    @property
    def interval(self) -> Optional[float]:
        return self._interval

    @property
    def pending(self) -> str:
        """已收到但尚未释放的文本。"""

        return self._pending

    async def run(self) -> None:
        upstream_done = False
        while True:
            if not upstream_done:
                upstream_done = self._collect_nowait()
            piece = self._next_release(upstream_done)
            if piece is None:
                if upstream_done:
                    break
                upstream_done = await self._collect()
                continue
            await self._outbox.put(piece)
            self.released += 1
            if self._interval:
                await self._sleep(self._interval)
        self._pending = ""
        self._state.advance(StreamState.PACING_DONE)
        await self._outbox.put(None)

    def _collect_nowait(self) -> bool:
        # 网络可能已经领先很多，先把已排队的文本全部取出
        while True:
            try:
                item = self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return False
            if item is None:
                return True
            self._pending += item

    async def _collect(self) -> bool:
        item = await self._inbox.get()
        if item is None:
            return True
        self._pending += item
        return False

    def _next_release(self, upstream_done: bool) -> Optional[str]:
        if not self._pending:
            return None
        if self._interval is None:
            if upstream_done:
                piece, self._pending = self._pending, ""
                return piece
            clusters = split_graphemes(self._pending)
            # 缓冲区末尾的字素簇可能被下一段增量延续（组合附加符、国旗后半、ZWJ 等）
            self._pending = clusters.pop()
            return "".join(clusters) or None
        graphemes = iter_graphemes(self._pending)
        cluster = next(graphemes)
        if not upstream_done and next(graphemes, None) is None:
            return None
        self._pending = self._pending[len(cluster):]
        return cluster
