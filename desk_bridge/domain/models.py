"""统一的请求与结果数据模型。

本模块定义了调度层与各后端之间共享的标准数据结构：

- ChatMessage: 调用方提供的一条历史消息（user/assistant）。
- PromptRequest: 一次调用的全部输入（问题、上下文、截图、最近历史）。
- BackendReply: 从 SDK 响应事件中提取的统一结果。

所有数据都只在单次调用内有效，不做持久化。
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional, Sequence, Tuple, get_args


# 调用方历史消息的角色
Role = Literal["user", "assistant"]

# 可选后端：copilot 为主后端（SDK 长连接），claude/opencode 为一次性 CLI 子进程
ProviderName = Literal["copilot", "claude", "opencode"]

SUPPORTED_PROVIDERS: Tuple[str, ...] = get_args(ProviderName)
DEFAULT_PROVIDER = "copilot"


def normalize_provider(value: Optional[str]) -> str:
    """把自由文本的后端设置规范化为受支持的名称。

    去除首尾空白并转小写；空值或未知名称一律回落到 copilot。
    """

    normalized = (value or "").strip().lower()
    if normalized in SUPPORTED_PROVIDERS:
        return normalized
    return DEFAULT_PROVIDER


@dataclass(frozen=True)
class ChatMessage:
    """一条历史消息，只读。

    - role: "user" 或 "assistant"，其他值在拼接提示词时按 assistant 处理。
    - content: 纯文本内容。
    """

    role: Role
    content: str

    @property
    def speaker(self) -> str:
        return "User" if self.role == "user" else "Assistant"


@dataclass(frozen=True)
class PromptRequest:
    """一次调用的输入。

    recent_messages 在构造时被复制为 tuple，调用方之后修改原列表不会影响本次请求。
    """

    prompt: str
    context: Optional[str] = None
    image_base64: Optional[str] = None
    recent_messages: Tuple[ChatMessage, ...] = ()

    @classmethod
    def build(
        cls,
        prompt: str,
        context: Optional[str] = None,
        image_base64: Optional[str] = None,
        recent_messages: Optional[Sequence[ChatMessage]] = None,
    ) -> "PromptRequest":
        return cls(
            prompt=prompt,
            context=context,
            image_base64=image_base64,
            recent_messages=tuple(recent_messages or ()),
        )


@dataclass(frozen=True)
class BackendReply:
    """后端应答的统一结果：content 为 None 表示应答里没有文本。"""

    content: Optional[str] = None

    @classmethod
    def from_event(cls, event: Any) -> "BackendReply":
        """从 SDK 的响应事件中取出 event.data.content。

        SDK 事件对象的形状随版本变化，这里只在 content 确实是字符串时才认为有内容。
        """

        data = getattr(event, "data", None)
        content = getattr(data, "content", None)
        if isinstance(content, str):
            return cls(content=content)
        return cls()
