"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("VENICE_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
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
    """配置设置（使用 Pydantic）。"""

    # ---- Venice API ----
    venice_api_key: Optional[str] = Field(default=None, description="Venice API 密钥")
    venice_base_url: str = Field(
        default="https://api.venice.ai/api/v1",
        description="Venice API 基础URL",
    )
    default_model: str = Field(
        default="chat",
        description="逻辑模型名，由 registry 映射为具体模型；未登记的名称原样透传",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="对话请求超时时间（秒）")
    image_timeout: float = Field(default=120.0, ge=1.0, description="图片请求超时时间（秒）")

    # ---- 重试 / 退避 ----
    retry_max_attempts: int = Field(default=3, ge=1, le=10, description="单次调用最大尝试次数")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="退避基准时长（秒）")
    retry_max_delay: float = Field(default=30.0, ge=0.0, description="指数退避上限（秒）")
    retry_server_errors: bool = Field(default=False, description="是否把 5xx 当作瞬时错误重试")
    rate_limit_low_water_requests: int = Field(
        default=5,
        ge=0,
        description="剩余请求数低于该值时输出告警",
    )
    rate_limit_low_water_tokens: int = Field(
        default=1000,
        ge=0,
        description="剩余 token 数低于该值时输出告警",
    )

    # ---- 会话 ----
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("venice_api_key")
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


settings = Settings()
