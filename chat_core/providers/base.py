"""Provider 抽象接口。

流水线不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAIClient）。
- 负责：构造请求头与请求体，发起流式请求，并返回一个可逐段读取文本的
  StreamHandle。帧的切分与解析由 streaming.decoder 负责，不在这里做。

这样新增厂商时只需要实现请求构造，再在 registry 中指定解码变体。
"""

from typing import AsyncIterator, Protocol

from chat_core.domain.models import ChatCompletionRequest


class StreamHandle(Protocol):
    """已建立的流式响应。"""

    def aiter_text(self) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - variant: 流式响应对应的解码变体名称。
    - open_stream(req): 发起流式请求；状态码异常时在返回前抛出 TransportError/ModelError。
    """

    name: str
    variant: str

    async def open_stream(self, req: ChatCompletionRequest) -> StreamHandle:
        ...
