"""Provider 配置。

每个 Provider 记录默认的 API 基础 URL、流式端点以及其流式响应使用的
解码变体（variant）。解码变体是一个封闭集合，由 FrameDecoder 按名称选择：

- "openai": choices[0].delta.content + finish_reason。
- "anthropic": content_block_delta + message_stop 事件。
"""

from dataclasses import dataclass
from typing import Literal, Mapping


DecoderVariantName = Literal["openai", "anthropic"]


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    endpoint: str
    variant: DecoderVariantName
    default_model: str


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    endpoint="/chat/completions",
    variant="openai",
    default_model="gpt-4",
)

ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url="https://api.anthropic.com/v1",
    endpoint="/messages",
    variant="anthropic",
    default_model="claude-3-5-sonnet-latest",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "anthropic": ANTHROPIC_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
