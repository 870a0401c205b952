# -*- coding: utf-8 -*-
"""
输出格式化模块
为Kanary命令行提供样式化输出与日志配置。
包含：
- 用于分类不同输出类型的OutputType枚举
- 基于rich的PrettyOutput类
- setup_logging：将标准logging接入rich
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text
from rich.theme import Theme


class OutputType(Enum):
    """
    输出类型枚举，用于分类和样式化不同类型的消息。

    属性：
        INFO: 系统提示
        PROGRESS: 发布进度
        RESULT: 命令结果
        SUCCESS: 成功信息
        WARNING: 警告信息
        ERROR: 错误信息
        DEBUG: 调试信息
    """

    INFO = "INFO"
    PROGRESS = "PROGRESS"
    RESULT = "RESULT"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    DEBUG = "DEBUG"


custom_theme = Theme(
    {
        "INFO": "yellow",
        "PROGRESS": "white",
        "RESULT": "blue",
        "SUCCESS": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "DEBUG": "blue",
    }
)
console = Console(theme=custom_theme)


class PrettyOutput:
    """使用rich库格式化和显示输出"""

    _ICONS = {
        OutputType.INFO: "ℹ️",
        OutputType.PROGRESS: "⏳",
        OutputType.RESULT: "✨",
        OutputType.SUCCESS: "✅",
        OutputType.WARNING: "⚠️",
        OutputType.ERROR: "❌",
        OutputType.DEBUG: "🔍",
    }

    @staticmethod
    def _format(output_type: OutputType, timestamp: bool = True) -> str:
        icon = PrettyOutput._ICONS.get(output_type, "")
        formatted = f"{icon}  "
        if timestamp:
            formatted += f"[{datetime.now().strftime('%H:%M:%S')}][{output_type.value}]"
        return formatted

    @staticmethod
    def print(
        text: str,
        output_type: OutputType,
        timestamp: bool = True,
        target: Optional[Console] = None,
    ) -> None:
        """打印带图标和时间戳的单行消息"""
        out = target or console
        header = Text(PrettyOutput._format(output_type, timestamp), style=output_type.value)
        out.print(header, Text(text, style=output_type.value))


def setup_logging(level: str = "INFO") -> None:
    """将根日志记录器接入rich控制台"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
