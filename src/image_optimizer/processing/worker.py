"""并发处理的工作单元。

每个工作单元在私有的临时目录里复制原图并执行对应格式的流水线，
结束时（无论成功与否）删除该目录。原图只读，不会被修改。
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from image_optimizer.core.exceptions import ImageLoadingError, ProcessingAborted, ToolExecutionFailed, ToolNotFound
from image_optimizer.core.models import ConversionPolicy, ImageFormat, OptimizationResult, WorkItem
from image_optimizer.core.output_manager import ResultPlacer
from image_optimizer.processing.image_loader import contains_alpha_transparency, is_animated_gif, reencode_as_png
from image_optimizer.processing.policy import should_convert
from image_optimizer.processing.stages import (
    CWEBP_STAGE,
    GIF2WEBP_STAGE,
    GIF_PIPELINE,
    JPEG_PIPELINE,
    PNG_PIPELINE,
    StageContext,
    convert_with_imagemagick,
    run_stages,
)
from image_optimizer.processing.validation import visually_equal

LOGGER = logging.getLogger(__name__)

ERROR_MESSAGE = (
    "%s %s 出错，跳过该图片：%s。通常是原图格式不受支持或已损坏（或者根本不是图片），继续处理其余图片。"
)


@dataclass(slots=True)
class WorkContext:
    """同一批次的工作单元共享的对象。"""

    stages: StageContext
    placer: ResultPlacer


def run_work_item(item: WorkItem, context: WorkContext) -> Optional[OptimizationResult]:
    """在工作线程中执行完整的处理流程，没有更小的结果时返回 None。"""

    handler = _select_handler(item)
    try:
        item.scratch_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(item.source_path, item.scratch_path)
        return handler(item, context)
    except (ToolNotFound, ProcessingAborted):
        raise
    except Exception as exc:  # noqa: BLE001
        action = "转换为 WEBP" if item.wants_format_conversion else f"优化 {item.image_format.name}"
        LOGGER.warning(ERROR_MESSAGE, action, item.source_path, exc)
        return None
    finally:
        remove_scratch(item.scratch_dir)


def _select_handler(item: WorkItem) -> Callable[[WorkItem, WorkContext], Optional[OptimizationResult]]:
    if item.wants_format_conversion:
        return _convert_to_webp
    return HANDLERS[item.image_format]


def _optimize_png(item: WorkItem, context: WorkContext) -> Optional[OptimizationResult]:
    optimized = run_stages(PNG_PIPELINE, item.scratch_path, item.scratch_dir / "png", context.stages)
    if not _is_smaller(optimized, item.source_path):
        return None
    failed = not visually_equal(item.source_path, optimized)
    return _publish(item, context, optimized, failed_automated_test=failed)


def _optimize_jpeg(item: WorkItem, context: WorkContext) -> Optional[OptimizationResult]:
    optimized = run_stages(JPEG_PIPELINE, item.scratch_path, item.scratch_dir / "jpeg", context.stages)
    if not _is_smaller(optimized, item.source_path):
        return None
    failed = not visually_equal(item.source_path, optimized)
    return _publish(item, context, optimized, failed_automated_test=failed)


def _optimize_gif(item: WorkItem, context: WorkContext) -> Optional[OptimizationResult]:
    optimized = run_stages(GIF_PIPELINE, item.scratch_path, item.scratch_dir / "gif", context.stages)
    file_type_changed = False

    if _conversion_enabled(item, optimized):
        png_candidate = pick_smaller_candidate(
            _png_branch(optimized, item.scratch_dir / "branch-a", context),
            _png_branch(item.scratch_path, item.scratch_dir / "branch-b", context),
        )
        if png_candidate is not None and png_candidate.stat().st_size < optimized.stat().st_size:
            optimized = png_candidate
            file_type_changed = True

    if not _is_smaller(optimized, item.source_path):
        return None

    if file_type_changed:
        failed = False
    else:
        try:
            failed = not visually_equal(item.source_path, optimized)
        except ImageLoadingError:
            LOGGER.debug("优化后的图片已损坏，无法读取：%s", item.source_path, exc_info=True)
            return None

    return _publish(item, context, optimized, file_type_changed=file_type_changed, failed_automated_test=failed)


def _convert_to_webp(item: WorkItem, context: WorkContext) -> Optional[OptimizationResult]:
    is_gif = item.image_format is ImageFormat.GIF
    if is_gif and is_animated_gif(item.scratch_path):
        LOGGER.debug("动图不转换为 WEBP：%s", item.source_path)
        return None

    stage = GIF2WEBP_STAGE if is_gif else CWEBP_STAGE
    converted = run_stages((stage,), item.scratch_path, item.scratch_dir / "webp", context.stages)
    if converted.suffix.lower() != ".webp" or not _is_smaller(converted, item.source_path):
        return None
    return _publish(item, context, converted, file_type_changed=True, browser_specific=True)


def _conversion_enabled(item: WorkItem, optimized: Path) -> bool:
    if not item.policy.enabled:
        return False
    try:
        animated = is_animated_gif(optimized)
        needs_alpha = item.policy is ConversionPolicy.IE6_SAFE and not animated
        has_alpha = needs_alpha and contains_alpha_transparency(optimized)
    except Exception:  # noqa: BLE001
        LOGGER.debug("图片可能已损坏，不尝试格式转换：%s", item.source_path, exc_info=True)
        return False
    return should_convert(item.policy, animated, has_alpha)


def _png_branch(source: Path, branch_dir: Path, context: WorkContext) -> Optional[Path]:
    """把图片转为 PNG 后执行完整的 PNG 流水线。"""

    branch_dir.mkdir(parents=True, exist_ok=True)
    png_path = branch_dir / (source.stem + ".png")
    try:
        reencode_as_png(source, png_path)
    except Exception:  # noqa: BLE001
        LOGGER.debug("Pillow 无法把 %s 转为 PNG，改用 ImageMagick", source, exc_info=True)
        png_path.unlink(missing_ok=True)
        try:
            convert_with_imagemagick(context.stages, source, png_path)
        except ToolExecutionFailed as exc:
            LOGGER.debug("ImageMagick 转换 %s 失败：%s", source, exc)
            return None
    return run_stages(PNG_PIPELINE, png_path, branch_dir / "png", context.stages)


def pick_smaller_candidate(branch_a: Optional[Path], branch_b: Optional[Path]) -> Optional[Path]:
    """两个转换分支中取较小者，大小相同时取 B。"""

    if branch_a is None:
        return branch_b
    if branch_b is None:
        return branch_a
    if branch_a.stat().st_size < branch_b.stat().st_size:
        return branch_a
    return branch_b


def _is_smaller(candidate: Path, original: Path) -> bool:
    return candidate.stat().st_size < original.stat().st_size


def _publish(
    item: WorkItem,
    context: WorkContext,
    optimized: Path,
    *,
    file_type_changed: bool = False,
    failed_automated_test: bool = False,
    browser_specific: bool = False,
) -> Optional[OptimizationResult]:
    final_file = context.placer.place(item.source_path, optimized, file_type_changed)
    if final_file is None:
        return None

    return OptimizationResult(
        original_file=item.source_path,
        original_size=item.source_path.stat().st_size,
        optimized_file=final_file,
        optimized_size=final_file.stat().st_size,
        file_type_changed=file_type_changed,
        is_browser_specific=browser_specific,
        failed_automated_test=failed_automated_test,
    )


def remove_scratch(scratch_dir: Path) -> None:
    try:
        shutil.rmtree(scratch_dir)
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("删除临时目录失败：%s (%s)", scratch_dir, exc)


HANDLERS: dict[ImageFormat, Callable[[WorkItem, WorkContext], Optional[OptimizationResult]]] = {
    ImageFormat.PNG: _optimize_png,
    ImageFormat.JPEG: _optimize_jpeg,
    ImageFormat.GIF: _optimize_gif,
}
