"""优化服务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_optimizer.core.exceptions import InvalidConfigurationError

DEFAULT_PROCESS_TIMEOUT = 60.0


@dataclass(slots=True)
class OptimizerConfig:
    """单个优化服务实例的配置集合。"""

    binaries_dir: Optional[Path] = None
    work_dir: Optional[Path] = None
    timeout_seconds: int = 0  # <= 0 表示不限制整批耗时
    process_timeout_seconds: float = DEFAULT_PROCESS_TIMEOUT
    max_workers: Optional[int] = None

    def validate(self) -> None:
        """检查配置是否合法，不合法时抛出 InvalidConfigurationError。"""

        if self.binaries_dir is not None and not self.binaries_dir.is_dir():
            raise InvalidConfigurationError(f"外部程序目录不存在或不是目录: {self.binaries_dir}")
        if self.work_dir is not None and self.work_dir.exists() and not self.work_dir.is_dir():
            raise InvalidConfigurationError(f"工作目录不是目录: {self.work_dir}")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigurationError("并发线程数必须大于 0")
        if self.process_timeout_seconds <= 0:
            raise InvalidConfigurationError("单进程超时时间必须大于 0")
