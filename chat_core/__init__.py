"""Chat Core 顶层包。

该包提供终端流式聊天客户端的核心实现，
包括配置加载、领域模型、Provider 适配、流式帧解码、
输出节奏控制、REPL 输入与会话历史存储等能力。
"""

from chat_core.agents.session_controller import SessionController
from chat_core.streaming.session import StreamSession

__all__ = ["SessionController", "StreamSession"]
