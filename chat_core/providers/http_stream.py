"""基于 httpx.AsyncClient 的流式 POST 请求。

各厂商客户端只负责 URL、请求头与请求体，这里统一处理：
连接错误、限流、非 2xx 状态码（优先解析结构化 error 对象），
以及响应与客户端的释放。
"""

import json
from typing import Any, AsyncIterator, Dict

import httpx

from chat_core.domain.exceptions import ApiError, ModelError, NetworkError, RateLimitError
from chat_core.infrastructure.logging.logger import logger


class HttpStream:
    """已建立的流式响应，实现 providers.base.StreamHandle。"""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    def aiter_text(self) -> AsyncIterator[str]:
        # aiter_text 内部使用增量解码器，多字节字符不会在两次读取之间被拆开
        return self._response.aiter_text()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


async def open_http_stream(
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    *,
    timeout: float,
    provider: str,
) -> HttpStream:
    """发起流式 POST 请求并检查状态码。

    Raises:
        NetworkError: DNS 失败、连接超时等。
        RateLimitError: 返回 429。
        ModelError: 返回非 2xx 且响应体是结构化 error 对象。
        ApiError: 其他非 2xx 响应。
    """

    logger.debug("Request to provider", extra={"extra": {"provider": provider, "url": url, "payload": payload}})
    client = httpx.AsyncClient(timeout=timeout, trust_env=False)
    try:
        request = client.build_request("POST", url, json=payload, headers=headers)
        response = await client.send(request, stream=True)
    except httpx.RequestError as e:
        await client.aclose()
        raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=provider)

    if response.status_code < 400:
        return HttpStream(client, response)

    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    finally:
        await response.aclose()
        await client.aclose()
    logger.warning(
        "Provider returned error status",
        extra={"extra": {"provider": provider, "status": response.status_code, "body": body}},
    )
    if response.status_code == 429:
        raise RateLimitError(code="RATE_LIMIT", message=f"{provider} rate limit", http_status=429, body=body)
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        data = None
    model_error = ModelError.from_payload(data, body, http_status=response.status_code)
    if model_error is not None:
        raise model_error
    raise ApiError(code="API_ERROR", message=body or f"HTTP {response.status_code}", http_status=response.status_code)
