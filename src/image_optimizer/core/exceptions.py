"""项目内使用的自定义异常定义。"""

from __future__ import annotations

from typing import Optional


class ImageOptimizationError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageOptimizationError):
    """配置不合法时抛出。"""


class UnsupportedFormatError(InvalidConfigurationError):
    """输入文件扩展名不受支持。"""


class ImageLoadingError(ImageOptimizationError):
    """图片解码失败。"""


class ToolNotFound(ImageOptimizationError):
    """外部压缩程序无法启动（环境问题，整批任务中止）。"""

    def __init__(self, tool: str, hint: Optional[str] = None) -> None:
        self.tool = tool
        self.hint = hint
        message = f"找不到外部程序: {tool}"
        if hint:
            message = f"{message}。{hint}"
        super().__init__(message)


class ToolExecutionFailed(ImageOptimizationError):
    """外部程序对当前图片执行失败。"""

    def __init__(self, tool: str, exit_code: Optional[int], output: str = "") -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"{tool} 执行失败，退出码: {exit_code}。{output.strip()}")


class ToolTimedOut(ToolExecutionFailed):
    """外部程序超过单进程时限被强制结束。"""

    def __init__(self, tool: str, timeout: float, output: str = "") -> None:
        self.tool = tool
        self.exit_code = None
        self.output = output
        self.timeout = timeout
        ImageOptimizationError.__init__(self, f"{tool} 超过 {timeout:g} 秒未结束，已强制终止。{output.strip()}")


class ProcessingAborted(ImageOptimizationError):
    """任务所在批次已被取消时抛出。"""


class BatchTimeout(ImageOptimizationError, TimeoutError):
    """整批优化超过截止时间。"""
