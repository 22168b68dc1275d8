"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

优先级：构造参数 > 环境变量 > .env > config.yaml。运行期组件不直接读取
这里的全局 settings，而是由 CLI 组装成 ChatConfig 后显式传入。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_STORAGE_ROOT = "~/.gpt"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    storage_root = os.getenv("STORAGE_ROOT", DEFAULT_STORAGE_ROOT)
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(storage_root).expanduser() / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """命令行客户端的全部可配置项。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 名称，例如 openai、anthropic",
    )
    default_model: str = Field(default="gpt-4", description="默认模型 ID")
    fast_model: str = Field(default="gpt-3.5-turbo", description="--fast 时使用的模型 ID")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API 基础URL",
    )
    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1",
        description="Anthropic API 基础URL",
    )
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")
    anthropic_max_tokens: int = Field(default=4096, ge=1, description="Anthropic 必填的 max_tokens 默认值")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=DEFAULT_STORAGE_ROOT, description="会话历史存储根目录")
    log_dir: str = Field(default=f"{DEFAULT_STORAGE_ROOT}/logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    debug: bool = Field(default=False, description="记录请求/响应等调试日志")

    # ---- 输出节奏与交互 ----
    wpm: int = Field(default=800, description="输出速度（每分钟单词数），<=0 表示不限速")
    avg_chars_per_word: float = Field(default=4.8, gt=0, description="每个单词的平均字符数")
    system_prompt: Optional[str] = Field(default=None, description="新会话默认附带的 system prompt")
    idle_submit_timeout: float = Field(
        default=0.25,
        ge=0.0,
        description="REPL 输入在换行后多长时间没有新字节即视为提交（秒）",
    )
    max_idle_reads: int = Field(
        default=50,
        ge=1,
        description="单次解码最多读取多少次网络数据仍未得到完整帧即放弃本轮",
    )
    output_queue_size: int = Field(default=64, ge=1, description="pacing -> output 队列容量")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "anthropic_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_root).expanduser()

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir).expanduser()


settings = Settings()
