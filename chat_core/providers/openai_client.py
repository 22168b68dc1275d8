"""OpenAI Provider 适配器。

本模块负责：

1. 接收统一的 ChatCompletionRequest。
2. 将其转换为 chat/completions 的流式请求（stream=true）。
3. 构造 Bearer 认证头并发起请求。

响应体是 "data: {...}\\n\\n" 形式的事件流，由 FrameDecoder 的 openai 变体解析。
兼容 OpenAI 协议的其他服务只需修改 openai_base_url。
"""

from typing import Any, Dict

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatCompletionRequest
from chat_core.providers.http_stream import HttpStream, open_http_stream
from chat_core.providers.registry import OPENAI_CONFIG


class OpenAIClient:
    """OpenAI 提供方客户端实现。"""

    name = "openai"
    variant = OPENAI_CONFIG.variant

    def __init__(self, cfg=settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    async def open_stream(self, req: ChatCompletionRequest) -> HttpStream:
        """发起一次流式对话调用。"""

        if not getattr(self._settings, "openai_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return await open_http_stream(
            f"{base.rstrip('/')}{OPENAI_CONFIG.endpoint}",
            self._build_payload(req),
            self._headers(),
            timeout=self._settings.http_timeout,
            provider=self.name,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def _build_payload(self, req: ChatCompletionRequest) -> Dict[str, Any]:
        """ChatCompletionRequest 本身就是 OpenAI 的请求格式，只需打开 stream。"""

        payload = req.to_dict()
        payload["stream"] = True
        return payload
