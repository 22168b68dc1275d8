"""会话控制器：跨轮次编排流式流水线并形成 REPL 循环。

一轮的流程：

1. 打开 StreamSession（请求失败在这里直接抛出，本轮不落盘）。
2. 启动三个协作式循环，通过显式队列连接：
   网络读取 --inbox(无界)--> 节奏控制 --outbox(有界)--> 终端输出。
3. 输出循环检测到完成后触发 flush：换行、追加 assistant 消息、落盘、提示错误。
4. REPL 模式下读取下一条输入，追加 user 消息，重置状态后开始下一轮。

三个循环在每轮结束时全部退出，下一轮重新创建。
"""

import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional, TextIO

from chat_core.domain.conversation import ConversationStore
from chat_core.domain.exceptions import BusinessError, FrameParseError, ModelError
from chat_core.domain.models import ChatCompletionRequest, ChatConfig, StreamState
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient
from chat_core.streaming.output import OutputPump, OutputWriter, TerminalWriter
from chat_core.streaming.pacing import PacingBuffer, SleepFn, chars_per_second
from chat_core.streaming.session import StreamSession
from chat_core.streaming.state import TurnState
from chat_core.terminal.input_reader import RawInputReader


REPL_PROMPT = "> "


@dataclass
class TurnOutcome:
    """一轮结束后的结果：完整文本（出错时带 [error] 标记）与错误。"""

    text: str
    error: Optional[BusinessError] = None


class SessionController:
    def __init__(
        self,
        provider: ProviderClient,
        store: ConversationStore,
        config: ChatConfig,
        *,
        writer: Optional[OutputWriter] = None,
        err_stream: Optional[TextIO] = None,
        input_reader: Optional[RawInputReader] = None,
        turn_label: Optional[str] = None,
        merge: bool = True,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._provider = provider
        self._store = store
        self._config = config
        self._writer = writer or TerminalWriter()
        self._err = err_stream or sys.stderr
        self._input_reader = input_reader
        self._turn_label = turn_label or store.new_turn_label()
        self._merge = merge
        self._sleep = sleep
        self.state = TurnState()
        self.turns = 0
        self.last_error: Optional[BusinessError] = None

    @property
    def turn_label(self) -> str:
        return self._turn_label

    async def run(self, request: ChatCompletionRequest, *, prompt_first: bool = False) -> ChatCompletionRequest:
        """执行一轮或多轮（REPL）对话，返回最终的会话。"""

        if prompt_first and not await self._next_user_message(request):
            return request
        while True:
            await self.run_turn(request)
            if not self._config.repl:
                break
            if not await self._next_user_message(request):
                break
        return request

    async def run_turn(self, request: ChatCompletionRequest) -> TurnOutcome:
        self.state.reset()
        log_ctx: Dict[str, Any] = {
            "turn_label": self._turn_label,
            "turn": self.turns,
            "provider": getattr(self._provider, "name", None),
            "model": request.model,
        }
        session = StreamSession(
            self._provider,
            request,
            max_idle_reads=self._config.max_idle_reads,
        )
        try:
            await session.open()
        except BusinessError as e:
            await session.aclose()
            self._log_error("Request failed before streaming", log_ctx, e)
            self._report(e)
            raise

        inbox: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        outbox: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=self._config.output_queue_size)
        pacer = PacingBuffer(
            inbox,
            outbox,
            self.state,
            chars_per_second=chars_per_second(self._config.wpm, self._config.avg_chars_per_word),
            sleep=self._sleep,
        )

        async def flush() -> None:
            await self._flush(request, session, log_ctx)

        pump = OutputPump(outbox, self.state, self._writer, on_complete=flush)
        tasks = [
            asyncio.ensure_future(self._ingest(session, inbox)),
            asyncio.ensure_future(pacer.run()),
            asyncio.ensure_future(pump.run()),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await session.aclose()

        self.turns += 1
        logger.info(
            "Turn completed",
            extra={"extra": {**log_ctx, "chars": len(session.accumulated), "released": pacer.released}},
        )
        self.last_error = session.error
        return TurnOutcome(text=session.accumulated, error=session.error)

    async def _ingest(self, session: StreamSession, inbox: "asyncio.Queue[Optional[str]]") -> None:
        try:
            async for result in session:
                if result.delta:
                    inbox.put_nowait(result.delta)
                if result.is_final:
                    break
        finally:
            if self.state.is_(StreamState.AWAITING):
                self.state.advance(StreamState.NETWORK_DONE)
            inbox.put_nowait(None)

    async def _flush(self, request: ChatCompletionRequest, session: StreamSession, log_ctx: Dict[str, Any]) -> None:
        self._writer.write("\n")
        request.append("assistant", session.accumulated)
        try:
            self._store.save(request, self._turn_label, merge=self._merge)
        except BusinessError as e:
            self._log_error("Failed to save conversation", log_ctx, e)
            self._report(e)
        if session.error is not None:
            self._report(session.error)

    async def _next_user_message(self, request: ChatCompletionRequest) -> bool:
        if self._input_reader is None:
            return False
        loop = asyncio.get_running_loop()
        line = await loop.run_in_executor(None, self._input_reader.read_line, REPL_PROMPT)
        if not line.strip():
            return False
        request.append("user", line)
        # 之后的保存都针对同一个会话文件，由 merge 去重
        self._merge = True
        return True

    def _report(self, error: BusinessError) -> None:
        if isinstance(error, ModelError):
            text = f"[error] {error.code}: {error.message}"
            if error.hint:
                text += f"\n{error.hint}"
            elif error.payload and error.payload != error.message:
                text += f"\n{error.payload}"
        elif isinstance(error, FrameParseError):
            text = f"[error] Failed to parse message:\n{error.payload}"
        else:
            text = f"[error] {error.message}"
        self._err.write(text + "\n")
        self._err.flush()

    @staticmethod
    def _log_error(message: str, log_ctx: Dict[str, Any], error: BusinessError) -> None:
        payload = dict(log_ctx)
        payload.update({"code": error.code, "error": error.message})
        logger.error(message, extra={"extra": payload})
