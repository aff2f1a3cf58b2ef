"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
环境变量统一使用 ``TOOLCALL_`` 前缀，例如 ``TOOLCALL_INVOKE_TIMEOUT=10``。
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
    explicit = os.getenv("TOOLCALL_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class ToolcallSettings(BaseSettings):
    """工具调用中枢的配置项。"""

    # ---- 调用相关 ----
    invoke_timeout: Optional[float] = Field(
        default=30.0,
        ge=0.0,
        description="单次工具调用超时时间（秒），0 或空表示不限制",
    )
    max_workers: int = Field(default=8, ge=1, le=64, description="并行调用的最大线程数")
    parallel_calls: bool = Field(default=True, description="同一轮内的多个工具调用是否并行执行")
    strict_arguments: bool = Field(
        default=True,
        description="参数解码是否使用严格模式（不做 \"5\" -> 5 之类的隐式转换）",
    )

    # ---- 日志 / 追踪 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_to_file: bool = Field(default=True, description="是否写入日志文件，否则输出到 stderr")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    trace_dir: Optional[str] = Field(default=None, description="调用追踪文件目录，为空则不记录")

    model_config = SettingsConfigDict(
        env_prefix="TOOLCALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("invoke_timeout")
    @classmethod
    def normalize_timeout(cls, v: Optional[float]) -> Optional[float]:
        if not v:
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return level

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


settings = ToolcallSettings()
