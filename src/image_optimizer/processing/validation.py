"""像素级视觉等价校验。

结果只作为人工复核的提示，不阻塞优化流程。
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from image_optimizer.processing.image_loader import load_rgba_pixels

LOGGER = logging.getLogger(__name__)


def pixels_equal(first: np.ndarray, second: np.ndarray) -> bool:
    """逐像素比较两组 RGBA 像素。

    两个像素 ARGB 值相同，或两者 alpha 都为 0（完全透明时颜色无意义），即视为相同。
    """

    if first.shape != second.shape:
        LOGGER.debug("图片尺寸不同：%s vs %s", first.shape, second.shape)
        return False

    different = np.any(first != second, axis=-1)
    both_transparent = (first[..., 3] == 0) & (second[..., 3] == 0)
    mismatched = different & ~both_transparent
    if mismatched.any():
        row, col = np.argwhere(mismatched)[0]
        LOGGER.debug("像素 (%d, %d) 不同", col, row)
        return False
    return True


def visually_equal(first: Path, second: Path) -> bool:
    """判断两张图片在视觉上是否完全一致，解码失败时抛出 ImageLoadingError。"""

    if first is None or second is None:
        raise ValueError("待比较的文件不能为空")

    LOGGER.debug("开始比较 %s 与 %s", first, second)
    if first.resolve() == second.resolve():
        return True

    answer = pixels_equal(load_rgba_pixels(first), load_rgba_pixels(second))
    if not answer:
        LOGGER.info("%s 与 %s 不是逐像素一致的图片，需要人工比对", first, second)
    return answer
