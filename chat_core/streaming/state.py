"""单轮流水线的显式状态机。

AWAITING -> NETWORK_DONE -> PACING_DONE -> PRINTED，PRINTED 之后由控制器
reset() 回到 AWAITING 开始下一轮。三个循环各自只推进属于自己的那一步：

- 网络循环：AWAITING -> NETWORK_DONE（正常结束、[DONE]、出错都一样）
- 节奏循环：NETWORK_DONE -> PACING_DONE（缓冲区已排空）
- 输出循环：PACING_DONE -> PRINTED（flush 完成）
"""

from __future__ import annotations

from chat_core.domain.exceptions import InvalidTransitionError
from chat_core.domain.models import StreamState
from chat_core.infrastructure.logging.logger import logger


_NEXT = {
    StreamState.AWAITING: StreamState.NETWORK_DONE,
    StreamState.NETWORK_DONE: StreamState.PACING_DONE,
    StreamState.PACING_DONE: StreamState.PRINTED,
}


class TurnState:
    def __init__(self) -> None:
        self._state = StreamState.AWAITING

    @property
    def state(self) -> StreamState:
        return self._state

    def is_(self, state: StreamState) -> bool:
        return self._state is state

    def advance(self, to: StreamState) -> None:
        if _NEXT.get(self._state) is not to:
            raise InvalidTransitionError(
                code="INVALID_TRANSITION",
                message=f"Cannot move from {self._state.value} to {to.value}",
            )
        logger.debug("Turn state changed", extra={"extra": {"from": self._state.value, "to": to.value}})
        self._state = to

    def reset(self) -> None:
        self._state = StreamState.AWAITING

    def __repr__(self) -> str:
        return f"TurnState({self._state.value})"
