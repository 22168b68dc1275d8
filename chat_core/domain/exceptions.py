"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 CLI 层做统一捕获与用户提示。

分类：
- TransportError: 请求未能开始或返回非 2xx，流式开始前即终止。
- ModelError: 服务端返回的结构化错误（如未知模型），本轮终止。
- FrameParseError: 帧载荷不是合法 JSON，携带原始载荷便于排查。
"""

from typing import Any, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、payload 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class TransportError(BusinessError):
    """请求失败或返回非成功状态码，流式开始前即终止。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """第三方 API 返回非 2xx/429 且无结构化错误体时抛出。"""


class RateLimitError(TransportError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class InvalidTransitionError(BusinessError):
    """流水线状态机收到了不合法的状态迁移。"""


# 已知错误码对应的处理建议
_MODEL_ERROR_HINTS = {
    "model_not_found": "The configured model does not exist or you do not have access to it. "
    "Pick another one with --model or set default_model in config.yaml.",
    "invalid_api_key": "The API key was rejected. Check OPENAI_API_KEY / ANTHROPIC_API_KEY.",
    "authentication_error": "The API key was rejected. Check OPENAI_API_KEY / ANTHROPIC_API_KEY.",
    "context_length_exceeded": "The conversation is too long for this model. "
    "Start a new one or drop messages with --slice.",
    "insufficient_quota": "The account has run out of quota.",
    "overloaded_error": "The service is overloaded, try again in a moment.",
}


class ModelError(BusinessError):
    """服务端在响应中返回的结构化错误对象。"""

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 502,
        payload: Optional[str] = None,
        **extra,
    ):
        super().__init__(code=code, message=message, http_status=http_status, **extra)
        self.payload = payload

    @property
    def hint(self) -> Optional[str]:
        """已知错误码返回处理建议，未知错误码返回 None。"""

        return _MODEL_ERROR_HINTS.get(self.code)

    @classmethod
    def from_payload(cls, data: Any, raw: str, http_status: int = 502) -> Optional["ModelError"]:
        """从响应 JSON 中提取 error 对象，没有 error 对象时返回 None。

        兼容两种形态：
        - {"error": {"message": ..., "type": ..., "code": ...}}
        - {"type": "error", "error": {"type": ..., "message": ...}}
        """

        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if not error:
            return None
        if not isinstance(error, dict):
            return cls(code="model_error", message=str(error), http_status=http_status, payload=raw)
        code = error.get("code") or error.get("type") or "model_error"
        message = error.get("message") or raw
        return cls(code=str(code), message=str(message), http_status=http_status, payload=raw)


class FrameParseError(BusinessError):
    """流式帧载荷解析失败。"""

    def __init__(self, payload: str, message: str = "Failed to parse stream frame"):
        super().__init__(code="FRAME_PARSE_ERROR", message=f"{message}: {payload!r}", http_status=502)
        self.payload = payload
