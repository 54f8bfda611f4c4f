"""批次进度的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

RUNNING = "running"
DONE = "done"


@dataclass(slots=True)
class ProgressUpdate:
    """每结束一个工作单元推送一次；``found`` 与 ``saved_bytes`` 是截至当前的累计值。"""

    total: int
    completed: int
    label: Optional[str] = None
    found: int = 0
    saved_bytes: int = 0
    status: str = RUNNING

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    def describe(self) -> str:
        if self.status == DONE:
            return f"完成：{self.found} 个更小的结果，节省 {self.saved_bytes} 字节"
        return f"{self.label or '优化图片'}（已节省 {self.saved_bytes} 字节）"
