"""文件扫描与内容校验逻辑。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional, Sequence

from image_optimizer.core.exceptions import InvalidConfigurationError
from image_optimizer.core.models import EXTENSION_FORMATS, ImageFormat

LOGGER = logging.getLogger(__name__)

MAGIC_NUMBERS = (
    (b"\x89PNG\r\n\x1a\n", ImageFormat.PNG),
    (b"GIF87a", ImageFormat.GIF),
    (b"GIF89a", ImageFormat.GIF),
    (b"\xff\xd8\xff", ImageFormat.JPEG),
)


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历路径下的所有文件。"""

    if path.is_file():
        yield path
        return

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in iterator:
        if candidate.is_file():
            yield candidate


def sniff_format(path: Path) -> Optional[ImageFormat]:
    """根据文件头判断真实格式。"""

    with path.open("rb") as handle:
        header = handle.read(8)
    for magic, image_format in MAGIC_NUMBERS:
        if header.startswith(magic):
            return image_format
    return None


def collect_image_files(paths: Sequence[Path], recursive: bool = True) -> list[Path]:
    """展开输入路径，返回去重、排序后的待优化图片列表。"""

    collected: set[Path] = set()

    for root in paths:
        if not root.exists():
            raise InvalidConfigurationError(f"输入路径不存在: {root}")

        for candidate in _iter_candidate_files(root.resolve(), recursive):
            if candidate in collected:
                continue

            expected = EXTENSION_FORMATS.get(candidate.suffix.lower())
            if expected is None:
                continue

            actual = sniff_format(candidate)
            if actual is not expected:
                if candidate.stat().st_size > 0:
                    LOGGER.warning("文件内容与扩展名不符，跳过：%s (识别为 %s)", candidate, actual)
                continue

            collected.add(candidate)

    LOGGER.info("发现 %d 个候选图片文件", len(collected))
    return sorted(collected, key=lambda x: str(x).lower())
