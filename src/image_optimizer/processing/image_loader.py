"""基于 Pillow 的图片解码与探测工具。"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from image_optimizer.core.exceptions import ImageLoadingError

LOGGER = logging.getLogger(__name__)


def load_rgba_pixels(path: Path) -> np.ndarray:
    """解码图片为 (高, 宽, 4) 的 RGBA uint8 数组。

    多帧图片只取第一帧。
    """

    try:
        with Image.open(path) as img:
            img.load()
            return np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError, EOFError, SyntaxError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise ImageLoadingError(f"无法加载图像: {path}") from exc


def is_animated_gif(path: Path) -> bool:
    """判断图片是否包含多帧。"""

    try:
        with Image.open(path) as img:
            return getattr(img, "n_frames", 1) > 1
    except (UnidentifiedImageError, OSError, EOFError, SyntaxError) as exc:
        raise ImageLoadingError(f"无法读取图像帧信息: {path}") from exc


def contains_alpha_transparency(path: Path) -> bool:
    """只要有一个像素不是完全不透明即返回 True。"""

    pixels = load_rgba_pixels(path)
    answer = bool((pixels[..., 3] != 255).any())
    LOGGER.debug("%s %s透明像素", path, "包含" if answer else "不包含")
    return answer


def reencode_as_png(source: Path, destination: Path) -> Path:
    """在进程内把图片重新编码为 PNG。"""

    with Image.open(source) as img:
        img.load()
        if img.mode not in {"1", "L", "LA", "P", "RGB", "RGBA"}:
            img = img.convert("RGBA")
        img.save(destination, format="PNG")
    return destination
