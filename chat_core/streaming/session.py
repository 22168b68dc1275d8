"""StreamSession：一次请求/响应周期。

负责发起流式请求，在连续的网络读取上驱动 FrameDecoder，并以拉取的方式
对外暴露 {is_final, accumulated, delta} 序列：

    session = StreamSession(provider, request)
    await session.open()
    async for result in session:
        ...

每个会话恰好产出一个 is_final=True 的结果。流式过程中的解析错误、
服务端错误帧和网络中断都不会向上抛出，而是转换为带 "[error]" 标记的
最终结果，使下游的 pacing/output 仍能正常排空并 flush；具体异常保存在
session.error 中供控制器提示用户。
"""

from __future__ import annotations

from typing import AsyncIterator, List, Optional

import httpx

from chat_core.domain.exceptions import BusinessError, FrameParseError, ModelError, NetworkError
from chat_core.domain.models import ChatCompletionRequest, ERROR_MARKER, StreamResult
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient, StreamHandle
from chat_core.streaming.decoder import DecodeResult, FrameDecoder


DEFAULT_MAX_IDLE_READS = 50


class StreamSession:
    def __init__(
        self,
        provider: ProviderClient,
        request: ChatCompletionRequest,
        *,
        max_idle_reads: int = DEFAULT_MAX_IDLE_READS,
        variant: Optional[str] = None,
    ):
        self._provider = provider
        self._request = request
        self._max_idle_reads = max(1, max_idle_reads)
        self._decoder = FrameDecoder(variant or getattr(provider, "variant", "openai"))
        self._handle: Optional[StreamHandle] = None
        self._reads: Optional[AsyncIterator[str]] = None
        self._accumulated = ""
        self._final_sent = False
        self.error: Optional[BusinessError] = None

    @property
    def accumulated(self) -> str:
        return self._accumulated

    @property
    def finished(self) -> bool:
        return self._final_sent

    async def open(self) -> None:
        """发起请求。TransportError / ModelError 在此直接抛出，流式尚未开始。"""

        if self._handle is not None:
            return
        self._handle = await self._provider.open_stream(self._request)
        self._reads = self._handle.aiter_text().__aiter__()
        logger.info(
            "Stream opened",
            extra={"extra": {
                "provider": getattr(self._provider, "name", None),
                "model": self._request.model,
                "message_count": len(self._request.messages),
            }},
        )

    async def aclose(self) -> None:
        if self._handle is not None:
            await self._handle.aclose()

    def __aiter__(self) -> "StreamSession":
        return self

    async def __anext__(self) -> StreamResult:
        return await self.next()

    async def next(self) -> StreamResult:
        """拉取下一步结果；最终结果之后再调用会抛出 StopAsyncIteration。"""

        if self._final_sent:
            raise StopAsyncIteration
        if self._handle is None:
            await self.open()
        try:
            decoded = await self._read_frames()
        except (FrameParseError, ModelError) as e:
            return self._fail(e, e.extra.get("deltas") or [])
        except httpx.HTTPError as e:
            return self._fail(NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__), [])

        delta = "".join(decoded.deltas) or None
        if delta:
            self._accumulated += delta
        if decoded.finished:
            self._final_sent = True
            logger.info("Stream finished", extra={"extra": {"chars": len(self._accumulated)}})
        return StreamResult(is_final=decoded.finished, accumulated=self._accumulated, delta=delta)

    async def _read_frames(self) -> DecodeResult:
        # 连接停滞保护：连续若干次读取都没有完整帧时，本轮按零帧返回，
        # 不完整的帧保留在解码器中等待下一次调用
        for _ in range(self._max_idle_reads):
            try:
                chunk = await self._reads.__anext__()
            except StopAsyncIteration:
                return self._decoder.close()
            decoded = self._decoder.feed(chunk)
            if decoded.deltas or decoded.finished:
                return decoded
        logger.debug(
            "No complete frame within read cap",
            extra={"extra": {"max_idle_reads": self._max_idle_reads, "pending": len(self._decoder.pending)}},
        )
        return DecodeResult()

    def _fail(self, error: BusinessError, deltas: List[str]) -> StreamResult:
        partial = "".join(deltas)
        delta = partial + ERROR_MARKER
        self._accumulated += delta
        self._final_sent = True
        self.error = error
        logger.error(
            "Stream failed",
            extra={"extra": {
                "code": error.code,
                "error": error.message,
                "payload": getattr(error, "payload", None),
                "chars": len(self._accumulated),
            }},
        )
        return StreamResult(is_final=True, accumulated=self._accumulated, delta=delta)
