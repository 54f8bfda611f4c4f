"""日志配置。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"

# 调试模式下这些库会逐块打印图片解码细节
NOISY_LOGGERS = ("PIL",)


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """初始化日志；工作单元运行在线程池中，格式里带线程名以区分不同图片。"""

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
