"""统一的对话与流式结果数据模型。

本模块定义了客户端内部在 Provider、流水线与存储之间共享的标准数据结构：

- Message: 一条对话消息（system/user/assistant）。
- ChatCompletionRequest: 一次会话的完整请求，也是落盘的会话格式。
- StreamResult: 流式会话每一步向上层暴露的 {is_final, accumulated, delta}。
- StreamState: 单轮流水线所处的阶段。
- ChatConfig: 构造会话时显式传入的运行配置。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 OpenAI / Anthropic 的 role 字段对应）
Role = Literal["system", "user", "assistant"]

ROLES = ("system", "user", "assistant")

# 流中断时追加到已累计文本末尾的可见标记
ERROR_MARKER = "[error]"


@dataclass
class Message:
    """一条对话消息。"""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = data.get("role") or "user"
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(role=role, content=data.get("content") or "")


@dataclass
class ChatCompletionRequest:
    """一次完整的聊天请求，同时也是会话历史的落盘结构。

    SessionController 在一次运行期间独占该对象，只在一轮结束后追加
    assistant 消息，或在 REPL 中追加新的 user 消息。
    """

    model: str
    messages: List[Message] = field(default_factory=list)
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None
    user: Optional[str] = None

    def append(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self.messages.append(message)
        return message

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
        }
        for key in ("temperature", "top_p", "max_tokens", "stop", "user"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatCompletionRequest":
        return cls(
            model=data.get("model") or "",
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            max_tokens=data.get("max_tokens"),
            stop=data.get("stop"),
            user=data.get("user"),
        )


@dataclass
class StreamResult:
    """StreamSession.next() 的单步结果。

    - is_final: 本轮是否已结束（每个会话恰好产出一次 True）。
    - accumulated: 截至目前的完整文本。
    - delta: 本步新增文本；没有新内容时为 None。
    """

    is_final: bool
    accumulated: str
    delta: Optional[str] = None


class StreamState(str, Enum):
    """单轮流水线阶段：等待网络 → 网络结束 → 节奏缓冲排空 → 已打印。"""

    AWAITING = "awaiting"
    NETWORK_DONE = "network_done"
    PACING_DONE = "pacing_done"
    PRINTED = "printed"


@dataclass
class ChatConfig:
    """一次运行所需的显式配置。

    Attributes:
        provider: Provider 名称（openai / anthropic）。
        model: 具体模型 ID。
        wpm: 输出速度，<=0 表示不限速。
        avg_chars_per_word: 由 wpm 推算字符速率时使用的常量。
        repl: 每轮结束后是否继续读取下一条用户输入。
        idle_submit_timeout: REPL 输入的空闲提交窗口（秒）。
        max_idle_reads: 单次解码允许的无帧读取次数上限。
        output_queue_size: pacing -> output 队列容量。
    """

    provider: str
    model: str
    wpm: int = 800
    avg_chars_per_word: float = 4.8
    repl: bool = False
    idle_submit_timeout: float = 0.25
    max_idle_reads: int = 50
    output_queue_size: int = 64

    def __post_init__(self) -> None:
        if self.max_idle_reads < 1:
            self.max_idle_reads = 1
        if self.output_queue_size < 1:
            self.output_queue_size = 1
