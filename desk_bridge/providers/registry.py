"""后端（Provider）配置。

本模块集中描述每个后端的调用约定：

- copilot：SDK 长连接，按请求创建会话，配置项是模型与是否流式。
- claude / opencode：一次性 CLI 子进程，配置项是可执行文件与参数约定
  （claude 使用 "-p <prompt>"，opencode 使用 "run <prompt>"）。

可执行文件名可以被配置覆盖，参数约定固定在这里。"""

from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class SessionProviderConfig:
    """SDK 会话型后端的配置。"""

    name: str
    display_name: str
    model: str
    streaming: bool = True

    def session_options(self, model: Optional[str] = None, streaming: Optional[bool] = None) -> dict:
        return {
            "model": model or self.model,
            "streaming": self.streaming if streaming is None else streaming,
        }


@dataclass(frozen=True)
class CliProviderConfig:
    """一次性 CLI 后端的配置。

    prompt_args 是放在提示词前面的固定参数，提示词作为最后一个独立参数传入，
    不经过 shell 解析。
    """

    name: str
    executable: str
    prompt_args: Tuple[str, ...]
    settings_key: str

    def build_argv(self, prompt: str, executable: Optional[str] = None) -> List[str]:
        return [executable or self.executable, *self.prompt_args, prompt]


COPILOT_CONFIG = SessionProviderConfig(
    name="copilot",
    display_name="GitHub Copilot",
    model="gpt-4",
    streaming=True,
)

CLAUDE_CONFIG = CliProviderConfig(
    name="claude",
    executable="claude",
    prompt_args=("-p",),
    settings_key="claude_command",
)

OPENCODE_CONFIG = CliProviderConfig(
    name="opencode",
    executable="opencode",
    prompt_args=("run",),
    settings_key="opencode_command",
)


CLI_REGISTRY: Mapping[str, CliProviderConfig] = {
    "claude": CLAUDE_CONFIG,
    "opencode": OPENCODE_CONFIG,
}


def get_cli_config(name: str) -> CliProviderConfig:
    """根据名称获取 CliProviderConfig，名称不区分大小写。"""

    key = (name or "").strip().lower()
    for k, cfg in CLI_REGISTRY.items():
        if k == key:
            return cfg
    raise KeyError(f"Unknown CLI provider: {name!r}")


def resolve_executable(cfg: CliProviderConfig, settings) -> str:
    """优先使用配置里覆盖的可执行文件，空值时回落到默认名。"""

    override = getattr(settings, cfg.settings_key, None)
    if isinstance(override, str) and override.strip():
        return override.strip()
    return cfg.executable
