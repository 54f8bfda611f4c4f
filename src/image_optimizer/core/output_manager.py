"""优化结果的落盘与冲突处理模块。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)


class ResultPlacer:
    """把胜出的文件复制到结果目录，目录结构镜像原图的绝对路径。

    结果目录只追加不覆盖：目标已存在时放弃写入并返回 None，
    并发写同一目标时先创建者胜出。
    """

    def __init__(self, results_dir: Path) -> None:
        self.results_dir = results_dir.resolve()

    def destination_for(self, original: Path, winning: Path, file_type_changed: bool) -> Path:
        """计算结果文件路径；格式改变时扩展名取胜出文件的扩展名。"""

        absolute = original.resolve()
        mirrored = self.results_dir / absolute.relative_to(absolute.anchor)
        if file_type_changed:
            return mirrored.with_suffix(winning.suffix)
        return mirrored

    def place(self, original: Path, winning: Path, file_type_changed: bool) -> Optional[Path]:
        """复制胜出文件，目标冲突时返回 None。"""

        destination = self.destination_for(original, winning, file_type_changed)

        if file_type_changed:
            sibling = original.resolve().with_suffix(winning.suffix)
            if sibling.exists():
                LOGGER.info("格式改变后的文件已存在于原目录，放弃结果：%s -> %s", original, sibling)
                return None

        if destination.exists():
            LOGGER.warning("结果文件已存在，放弃写入：%s (原图 %s)", destination, original)
            return None

        destination.parent.mkdir(parents=True, exist_ok=True)
        with winning.open("rb") as src:
            try:
                # "xb" 保证只有第一个写入者能创建目标文件
                dst = destination.open("xb")
            except FileExistsError:
                LOGGER.warning("结果文件被其他任务抢先写入：%s", destination)
                return None
            try:
                with dst:
                    shutil.copyfileobj(src, dst)
            except Exception:
                # 不能留下残缺文件，否则之后的运行都会因目标已存在而放弃
                destination.unlink(missing_ok=True)
                raise
        return destination
