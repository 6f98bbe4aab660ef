"""提示词加载工具。

提示词以 Markdown 文本形式放在本目录下，按名称读取，
例如 load_prompt("holiday_card_edit") 读取 holiday_card_edit.md。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_prompt(name: str) -> str:
    """根据名称加载提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()
