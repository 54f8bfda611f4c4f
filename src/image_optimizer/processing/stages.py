"""各格式的压缩阶段描述与通用执行器。

流水线只是 Stage 的有序元组，由 run_stages 统一执行：
每个阶段在独立子目录里产出候选文件，只有不比当前文件大时才被采用。
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from image_optimizer.core.exceptions import ProcessingAborted, ToolExecutionFailed, ToolNotFound
from image_optimizer.processing import tools
from image_optimizer.processing.tools import Tool, ToolOutcome, ToolRunner

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StageContext:
    """阶段执行所需的共享对象：程序调用器与批次取消信号。"""

    runner: ToolRunner
    cancel_event: threading.Event

    def invoke(self, tool: Tool, args: Sequence[str], **kwargs) -> ToolOutcome:
        return self.runner.invoke(tool, args, cancel_event=self.cancel_event, **kwargs)


StageAction = Callable[[StageContext, Path, Path], Optional[Path]]


@dataclass(frozen=True, slots=True)
class Stage:
    """单个压缩阶段：输入文件 + 输出目录 -> 候选文件（无产出时为 None）。"""

    name: str
    tool: Tool
    action: StageAction


def _copy_into(source: Path, output_dir: Path) -> Path:
    """为原地修改型的程序准备一份副本。"""

    candidate = output_dir / source.name
    shutil.copyfile(source, candidate)
    return candidate


def _advpng(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    candidate = _copy_into(source, output_dir)
    ctx.invoke(tools.ADVPNG, ["-z", "-4", str(candidate)])
    return candidate


def _pngout(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    candidate = _copy_into(source, output_dir)
    # pngout 对长路径报错，因此在文件所在目录内用文件名调用
    outcome = ctx.invoke(tools.PNGOUT, [candidate.name, candidate.name, "-y"], cwd=output_dir)
    if outcome.benign:
        return None
    return candidate


def _optipng(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    candidate = _copy_into(source, output_dir)
    ctx.invoke(tools.OPTIPNG, ["-o7", "-zm1-9", str(candidate)])
    return candidate


def _pngquant(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    candidate = _copy_into(source, output_dir)
    outcome = ctx.invoke(
        tools.PNGQUANT,
        ["--quality=100-100", "-s1", "--ext", ".png2", "--force", "--", candidate.name],
        cwd=output_dir,
    )
    if outcome.benign:
        # 99: 达不到质量下限，不产出文件
        return None

    if candidate.suffix.lower() == ".png":
        produced = candidate.with_suffix(".png2")
    else:
        produced = candidate.with_name(candidate.name + ".png2")
    if not produced.exists():
        return None
    produced.replace(candidate)
    return candidate


def _jpegtran(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    produced = output_dir / (source.name + ".tmp")
    ctx.invoke(tools.JPEGTRAN, ["-copy", "none", "-optimize", "-outfile", str(produced), str(source)])
    if not produced.exists():
        return None
    return produced.replace(output_dir / source.name)


def _jfifremove(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    if os.name == "nt":
        return None
    produced = output_dir / (source.name + ".tmp2")
    ctx.invoke(tools.JFIFREMOVE, [], stdin_path=source, stdout_path=produced)
    return produced.replace(output_dir / source.name)


def _gifsicle(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    produced = output_dir / (source.name + ".tmp")
    ctx.invoke(tools.GIFSICLE, ["-O3", str(source), "-o", str(produced)])
    # 退出码 1 且没有输出文件：没有更小的结果
    if not produced.exists():
        return None
    return produced.replace(output_dir / source.name)


def _cwebp(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    produced = output_dir / (source.stem + ".webp")
    ctx.invoke(tools.CWEBP, [str(source), "-lossless", "-m", "6", "-o", str(produced)])
    return produced if produced.exists() else None


def _gif2webp(ctx: StageContext, source: Path, output_dir: Path) -> Optional[Path]:
    produced = output_dir / (source.stem + ".webp")
    ctx.invoke(tools.GIF2WEBP, [str(source), "-m", "6", "-o", str(produced)])
    return produced if produced.exists() else None


ADVPNG_STAGE = Stage("advpng", tools.ADVPNG, _advpng)
PNGOUT_STAGE = Stage("pngout", tools.PNGOUT, _pngout)
OPTIPNG_STAGE = Stage("optipng", tools.OPTIPNG, _optipng)
PNGQUANT_STAGE = Stage("pngquant", tools.PNGQUANT, _pngquant)
JPEGTRAN_STAGE = Stage("jpegtran", tools.JPEGTRAN, _jpegtran)
JFIFREMOVE_STAGE = Stage("jfifremove", tools.JFIFREMOVE, _jfifremove)
GIFSICLE_STAGE = Stage("gifsicle", tools.GIFSICLE, _gifsicle)
CWEBP_STAGE = Stage("cwebp", tools.CWEBP, _cwebp)
GIF2WEBP_STAGE = Stage("gif2webp", tools.GIF2WEBP, _gif2webp)

# 第二遍：量化之后再次打包常能得到更小的文件
PNG_PIPELINE = (
    ADVPNG_STAGE,
    PNGOUT_STAGE,
    OPTIPNG_STAGE,
    PNGQUANT_STAGE,
    ADVPNG_STAGE,
    OPTIPNG_STAGE,
    PNGQUANT_STAGE,
)
JPEG_PIPELINE = (JPEGTRAN_STAGE, JFIFREMOVE_STAGE)
GIF_PIPELINE = (GIFSICLE_STAGE,)


def run_stages(stages: Sequence[Stage], source: Path, work_dir: Path, ctx: StageContext) -> Path:
    """依次执行各阶段，返回最终采用的文件（可能就是 source 本身）。

    缺少程序或批次取消会直接抛出；单个阶段对当前图片失败时记录日志并跳过，保留上一阶段的结果。
    """

    current = source
    for index, stage in enumerate(stages, start=1):
        output_dir = work_dir / f"{index:02d}-{stage.name}"
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            produced = stage.action(ctx, current, output_dir)
        except (ToolNotFound, ProcessingAborted):
            raise
        except (ToolExecutionFailed, OSError) as exc:
            LOGGER.warning("阶段 %s 处理 %s 失败，跳过该阶段：%s", stage.name, source.name, exc)
            continue

        if produced is None or not produced.exists():
            continue

        produced_size = produced.stat().st_size
        current_size = current.stat().st_size
        if 0 < produced_size <= current_size:
            LOGGER.debug("阶段 %s: %d -> %d 字节", stage.name, current_size, produced_size)
            current = produced
    return current


def convert_with_imagemagick(ctx: StageContext, source: Path, destination: Path) -> Path:
    """调用 ImageMagick 转换格式，用于 Pillow 无法解码的图片。"""

    ctx.invoke(tools.CONVERT, [str(source), str(destination)])
    if not destination.exists():
        raise ToolExecutionFailed(tools.CONVERT.name, 0, f"未生成输出文件 {destination}")
    return destination
