"""Provider 抽象接口。

调度层 AssistantService 不直接依赖 Copilot SDK 或具体 CLI，而是依赖此协议：

- 每个后端实现一个 ProviderClient（CopilotSdkClient / CliClient）。
- 负责：把 PromptRequest 组合成提示词、调用后端、把结果或失败都转成文本。

SessionHandle 描述 SDK 会话对象需要具备的能力，测试时可以用假对象替换。
"""

import asyncio
from typing import Any, Optional, Protocol

from desk_bridge.domain.models import PromptRequest


class SessionHandle(Protocol):
    """单次请求内使用的 SDK 会话。"""

    async def send_and_wait(self, prompt: str, *, timeout: float = 60.0) -> Any:
        ...

    async def disconnect(self) -> None:
        ...


class SessionFactory(Protocol):
    """SDK 客户端：负责长连接的启动/停止与会话创建。"""

    async def start(self) -> None:
        ...

    async def stop(self) -> Any:
        ...

    async def create_session(self, **options: Any) -> SessionHandle:
        ...


class ProviderClient(Protocol):
    """后端客户端协议。

    实现者需要提供：
    - name: 后端名称，用于日志与提示文本。
    - get_response(req): 执行一次请求，始终返回文本，不向调用方抛出异常。
    - is_ready(): 检查后端是否可用，不抛异常。
    - aclose(): 释放资源，可重复调用。
    """

    name: str

    async def get_response(
        self,
        req: PromptRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        ...

    async def is_ready(self) -> bool:
        ...

    async def aclose(self) -> None:
        ...
