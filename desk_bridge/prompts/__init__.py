"""系统提示词加载工具。

提示词模板按语言(locale) 存放在 prompts/<locale> 目录，
目前只有桌面助手场景使用的 desktop_assistant_system.md。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(name: str = "desktop_assistant", locale: str = "en") -> str:
    """根据模板名和语言加载系统提示词文本。

    文件末尾的换行会被去掉，模板中的 {history}/{context}/{question}
    占位符由 composer 负责填充。
    """

    fname = PROMPTS_DIR / locale / f"{name}_system.md"
    return fname.read_text(encoding="utf-8").rstrip("\n")
