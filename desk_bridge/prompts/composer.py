"""组合提示词（composite prompt）构造。

把问题、环境上下文、最近对话与截图合并成发给后端的一段文本：

- Copilot 路径：上下文带桌面标记时套用桌面助手模板，否则使用工作目录模板；
  有截图时以 Markdown Data URI 附在末尾，供视觉模型读取。
- 外部 CLI 路径：只使用简单的 Context/Question 模板，并在前面加上最近对话。
"""

from typing import Optional, Sequence

from desk_bridge.domain.models import ChatMessage
from desk_bridge.prompts import load_system_prompt


DESKTOP_MARKERS = ("[Active Focus]", "[Open Folders]")


def has_desktop_markers(context: Optional[str]) -> bool:
    """上下文是否来自桌面环境采集（包含可识别的段落标记）。"""

    if not context:
        return False
    return any(marker in context for marker in DESKTOP_MARKERS)


def recent_window(messages: Optional[Sequence[ChatMessage]], limit: int) -> list[ChatMessage]:
    """取最近 limit 条消息，保持原顺序，不修改输入。"""

    if not messages or limit <= 0:
        return []
    return list(messages[-limit:])


def format_history_lines(messages: Sequence[ChatMessage]) -> list[str]:
    return [f"{m.speaker}: {m.content}" for m in messages]


def image_reference(image_base64: str) -> str:
    return f"\n\n![User Screenshot](data:image/jpeg;base64,{image_base64})"


def compose_desktop_prompt(
    prompt: str,
    context: str,
    recent_messages: Optional[Sequence[ChatMessage]] = None,
    history_window: int = 10,
) -> str:
    """桌面助手模板：固定行为规则 + 最近对话 + 当前上下文 + 当前问题。"""

    history = ""
    relevant = recent_window(recent_messages, history_window)
    if relevant:
        lines = "".join(f"{line}\n" for line in format_history_lines(relevant))
        history = f"RECENT CONVERSATION:\n{lines}\n"
    template = load_system_prompt("desktop_assistant")
    return template.format(history=history, context=context, question=prompt)


def compose_copilot_prompt(
    prompt: str,
    context: Optional[str] = None,
    recent_messages: Optional[Sequence[ChatMessage]] = None,
    image_base64: Optional[str] = None,
    history_window: int = 10,
) -> str:
    """主后端的组合提示词。

    没有上下文时历史也不会拼入，与桌面 UI 的行为一致。
    """

    full_prompt = prompt
    if context:
        if has_desktop_markers(context):
            full_prompt = compose_desktop_prompt(prompt, context, recent_messages, history_window)
        else:
            full_prompt = f"Working directory: {context}\n\n{prompt}"
    if image_base64:
        full_prompt += image_reference(image_base64)
    return full_prompt


def compose_cli_prompt(
    prompt: str,
    context: Optional[str] = None,
    recent_messages: Optional[Sequence[ChatMessage]] = None,
    history_window: int = 6,
) -> str:
    """外部 CLI 的组合提示词，不区分上下文是否带桌面标记。"""

    full_prompt = prompt
    if context and context.strip():
        full_prompt = f"Context:\n{context}\n\nQuestion:\n{prompt}"
    relevant = recent_window(recent_messages, history_window)
    if relevant:
        history = "\n".join(format_history_lines(relevant))
        full_prompt = f"Recent conversation:\n{history}\n\n{full_prompt}"
    return full_prompt
