"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from desk_bridge.domain.models import normalize_provider


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("DESK_BRIDGE_CONFIG_FILE")
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

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="copilot",
        description="默认后端名称：copilot、claude 或 opencode，非法值回落到 copilot",
    )
    copilot_model: str = Field(default="gpt-4", description="Copilot 会话使用的模型")
    copilot_streaming: bool = Field(default=True, description="Copilot 会话是否开启流式")
    request_timeout: float = Field(
        default=300.0,
        gt=0,
        description="单次请求（SDK 应答或子进程退出）的等待上限（秒）",
    )

    # 对话窗口：只截取最近 N 条消息拼进提示词
    primary_history_window: int = Field(default=10, ge=0, le=100, description="Copilot 路径的历史条数上限")
    cli_history_window: int = Field(default=6, ge=0, le=100, description="外部 CLI 路径的历史条数上限")

    # 外部 CLI 可执行文件，默认从 PATH 查找
    claude_command: str = Field(default="claude", description="claude CLI 可执行文件")
    opencode_command: str = Field(default="opencode", description="opencode CLI 可执行文件")

    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别，DEBUG 时会记录完整提示词与应答")
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

    @field_validator("default_provider")
    @classmethod
    def normalize_default_provider(cls, v: str) -> str:
        return normalize_provider(v)

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
