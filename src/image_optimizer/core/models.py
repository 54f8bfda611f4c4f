"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class ImageFormat(str, Enum):
    """支持优化的图片格式。"""

    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"

    @classmethod
    def from_path(cls, path: Path) -> Optional["ImageFormat"]:
        """按扩展名（忽略大小写）判断格式，不支持时返回 None。"""

        return EXTENSION_FORMATS.get(path.suffix.lower())


EXTENSION_FORMATS = {
    ".png": ImageFormat.PNG,
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".jpe": ImageFormat.JPEG,
    ".gif": ImageFormat.GIF,
}


class ConversionPolicy(str, Enum):
    """格式转换策略。"""

    NONE = "none"
    ALL = "all"
    IE6_SAFE = "ie6safe"

    @property
    def enabled(self) -> bool:
        return self is not ConversionPolicy.NONE

    @classmethod
    def parse(cls, value: str) -> "ConversionPolicy":
        """解析命令行或配置中的策略名称。"""

        normalized = value.strip().lower().replace("_", "").replace("-", "")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"未知的格式转换策略: {value}")


@dataclass(slots=True)
class WorkItem:
    """单个工作单元：一张图片 + 一个优化目标。"""

    source_path: Path
    scratch_dir: Path
    image_format: ImageFormat
    policy: ConversionPolicy
    wants_format_conversion: bool = False

    @property
    def scratch_path(self) -> Path:
        """工作副本路径，仅由该工作单元读写。"""

        return self.scratch_dir / self.source_path.name

    @property
    def label(self) -> str:
        goal = "webp" if self.wants_format_conversion else self.image_format.value
        return f"{self.source_path.name} [{goal}]"


@dataclass(slots=True, frozen=True)
class OptimizationResult:
    """一次成功优化的结果，创建后不可变。"""

    original_file: Path
    original_size: int
    optimized_file: Path
    optimized_size: int
    file_type_changed: bool = False
    is_browser_specific: bool = False
    failed_automated_test: bool = False

    def __post_init__(self) -> None:
        if self.optimized_size >= self.original_size:
            raise ValueError(
                f"优化结果必须小于原图: {self.optimized_size} >= {self.original_size} ({self.original_file})"
            )

    @property
    def saved_bytes(self) -> int:
        return self.original_size - self.optimized_size

    def __str__(self) -> str:
        flags = []
        if self.file_type_changed:
            flags.append("type-changed")
        if self.is_browser_specific:
            flags.append("browser-specific")
        if self.failed_automated_test:
            flags.append("needs-review")
        suffix = f" ({', '.join(flags)})" if flags else ""
        return (
            f"{self.original_file} -> {self.optimized_file}: "
            f"{self.original_size} -> {self.optimized_size} bytes{suffix}"
        )
