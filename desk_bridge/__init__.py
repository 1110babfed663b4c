"""desk_bridge 顶层包。

该包把桌面助手 UI 与可替换的聊天后端连接起来：GitHub Copilot SDK
长连接会话，或 claude / opencode 等一次性 CLI 子进程。包括配置加载、
领域模型、提示词组合、后端适配与请求调度。
"""

from desk_bridge.api.service import AssistantService, get_default_service, run_desktop_chat
from desk_bridge.domain.models import ChatMessage, normalize_provider

__all__ = ["AssistantService", "ChatMessage", "get_default_service", "normalize_provider", "run_desktop_chat"]
