"""后端（Provider）集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护各后端的调用约定 (registry)。
- 提供具体实现：copilot_client（SDK 长连接）与 cli_client（一次性子进程）。
"""

from typing import Optional

from desk_bridge.config.settings import settings
from desk_bridge.domain.models import normalize_provider
from desk_bridge.providers.base import ProviderClient, SessionFactory
from desk_bridge.providers.cli_client import CliClient
from desk_bridge.providers.copilot_client import CopilotSdkClient


def create_provider(
    name: Optional[str] = None,
    cfg=None,
    copilot_client: Optional[SessionFactory] = None,
) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 default_provider。

    copilot_client 只在创建 copilot 后端时使用，便于注入 SDK 客户端。
    """

    cfg = cfg if cfg is not None else settings
    provider_name = normalize_provider(name or getattr(cfg, "default_provider", "copilot"))
    if provider_name == "copilot":
        return CopilotSdkClient(cfg, client=copilot_client)
    return CliClient(provider_name, cfg)


__all__ = ["ProviderClient", "CliClient", "CopilotSdkClient", "create_provider", "normalize_provider"]
