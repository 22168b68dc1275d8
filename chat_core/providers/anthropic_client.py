"""Anthropic Provider 适配器。

与 OpenAI 的差异：
- 认证使用 x-api-key 与 anthropic-version 请求头。
- system 消息不放在 messages 中，而是合并为顶层 system 字段。
- max_tokens 为必填项。
- 事件流带有 "event:" 行，增量位于 content_block_delta 事件中。
"""

from typing import Any, Dict, List

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatCompletionRequest
from chat_core.providers.http_stream import HttpStream, open_http_stream
from chat_core.providers.registry import ANTHROPIC_CONFIG


class AnthropicClient:
    """Anthropic 提供方客户端实现。"""

    name = "anthropic"
    variant = ANTHROPIC_CONFIG.variant

    def __init__(self, cfg=settings):
        self._settings = cfg

    async def open_stream(self, req: ChatCompletionRequest) -> HttpStream:
        if not getattr(self._settings, "anthropic_api_key", None):
            raise ValidationError(code="MISSING_API_KEY", message="ANTHROPIC_API_KEY not set")
        base = getattr(self._settings, "anthropic_base_url", None) or ANTHROPIC_CONFIG.base_url
        return await open_http_stream(
            f"{base.rstrip('/')}{ANTHROPIC_CONFIG.endpoint}",
            self._build_payload(req),
            self._headers(),
            timeout=self._settings.http_timeout,
            provider=self.name,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._settings.anthropic_api_key,
            "anthropic-version": getattr(self._settings, "anthropic_version", "2023-06-01"),
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def _build_payload(self, req: ChatCompletionRequest) -> Dict[str, Any]:
        system_parts: List[str] = []
        messages: List[Dict[str, str]] = []
        for m in req.messages:
            if m.role == "system":
                system_parts.append(m.content)
                continue
            # 相邻同角色消息需要合并，否则接口会拒绝
            if messages and messages[-1]["role"] == m.role:
                messages[-1]["content"] += "\n\n" + m.content
            else:
                messages.append({"role": m.role, "content": m.content})
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": messages,
            "max_tokens": req.max_tokens or getattr(self._settings, "anthropic_max_tokens", 4096),
            "stream": True,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.top_p is not None:
            payload["top_p"] = req.top_p
        if req.stop:
            payload["stop_sequences"] = list(req.stop)
        return payload
