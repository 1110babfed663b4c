"""对外 API 服务模块。

AssistantService 是桌面 UI 调用的唯一入口：按配置选择后端、组合提示词、
调用后端并返回文本。除了构造本身，任何请求路径都不会向调用方抛出异常。

另外提供简化的模块级函数供脚本调用。
"""

import asyncio
from typing import Dict, Optional, Sequence

from desk_bridge.config.settings import settings
from desk_bridge.domain.models import ChatMessage, PromptRequest, normalize_provider
from desk_bridge.infrastructure.logging.logger import logger
from desk_bridge.providers import create_provider
from desk_bridge.providers.base import ProviderClient, SessionFactory
from desk_bridge.providers.copilot_client import CopilotSdkClient


class AssistantService:
    """桌面助手与各后端之间的请求调度器。

    - copilot 后端在整个服务生命周期内只持有一个 SDK 客户端；
    - claude / opencode 每次请求启动一个子进程，客户端对象按名称缓存。
    """

    def __init__(self, cfg=settings, copilot_client: Optional[SessionFactory] = None):
        self._settings = cfg
        self._copilot = create_provider("copilot", cfg, copilot_client=copilot_client)
        self._cli_clients: Dict[str, ProviderClient] = {}
        self._provider = normalize_provider(getattr(cfg, "default_provider", None))

    @property
    def provider(self) -> str:
        return self._provider

    def set_cli_command(self, cli_command: Optional[str]) -> None:
        """切换后端，非法值回落到 copilot。"""

        normalized = normalize_provider(cli_command)
        if normalized != self._provider:
            logger.info(
                "service.provider.changed",
                extra={"extra": {"from": self._provider, "to": normalized, "raw": cli_command}},
            )
        self._provider = normalized

    def _current_client(self) -> ProviderClient:
        if self._provider == CopilotSdkClient.name:
            return self._copilot
        client = self._cli_clients.get(self._provider)
        if client is None:
            client = create_provider(self._provider, self._settings)
            self._cli_clients[self._provider] = client
        return client

    async def get_response(
        self,
        prompt: str,
        context: Optional[str] = None,
        image_base64: Optional[str] = None,
        recent_messages: Optional[Sequence[ChatMessage]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """执行一次问答。

        Args:
            prompt: 用户问题
            context: 当前窗口/环境描述（可选）
            image_base64: base64 编码的 JPEG 截图（可选，仅 copilot 使用）
            recent_messages: 最近的对话历史（可选，只读）
            cancel_event: 调用方的取消信号（可选）

        Returns:
            后端应答文本，或描述失败原因的文本
        """
        req = PromptRequest.build(prompt, context, image_base64, recent_messages)
        client = self._current_client()
        logger.info(
            "service.request",
            extra={"extra": {
                "provider": client.name,
                "has_context": bool(context),
                "has_image": bool(image_base64),
                "history": len(req.recent_messages),
            }},
        )
        try:
            return await client.get_response(req, cancel_event=cancel_event)
        except Exception as e:
            logger.error(f"Request failed: {e}", extra={"extra": {
                "provider": client.name,
                "error_type": type(e).__name__,
            }})
            return f"Error: {e}"

    async def check_authentication(self) -> bool:
        """检查当前后端是否就绪；外部 CLI 视为始终就绪。"""

        return await self._current_client().is_ready()

    async def aclose(self) -> None:
        """释放会话并停止 SDK 长连接；未启动或重复调用都是安全的。"""

        await self._copilot.aclose()

    async def __aenter__(self) -> "AssistantService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


_service: Optional[AssistantService] = None


def get_default_service() -> AssistantService:
    """获取默认的 AssistantService 实例（单例）。"""
    global _service
    if _service is None:
        _service = AssistantService(settings)
    return _service


def run_desktop_chat(
    prompt: str,
    context: Optional[str] = None,
    image_base64: Optional[str] = None,
    recent_messages: Optional[Sequence[ChatMessage]] = None,
    provider: Optional[str] = None,
) -> str:
    """同步执行一次问答，结束后关闭 SDK 连接。

    供脚本或命令行使用；在已有事件循环中请直接使用 AssistantService。
    """

    async def _run() -> str:
        async with AssistantService(settings) as service:
            if provider is not None:
                service.set_cli_command(provider)
            return await service.get_response(prompt, context, image_base64, recent_messages)

    return asyncio.run(_run())
