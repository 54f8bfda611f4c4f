"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_optimizer.core.config import DEFAULT_PROCESS_TIMEOUT, OptimizerConfig
from image_optimizer.core.exceptions import BatchTimeout, InvalidConfigurationError, ToolNotFound
from image_optimizer.core.models import ConversionPolicy
from image_optimizer.core.progress import ProgressUpdate
from image_optimizer.core.report import write_csv_report
from image_optimizer.core.scanner import collect_image_files
from image_optimizer.processing.pipeline import ImageOptimizationService
from image_optimizer.utils.logging import setup_logging

app = typer.Typer(help="批量无损压缩 PNG / JPEG / GIF 图片。")


def _parse_policy(value: str) -> ConversionPolicy:
    try:
        return ConversionPolicy.parse(value)
    except ValueError as exc:
        raise typer.BadParameter("转换策略必须是 none、all 或 ie6safe") from exc


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("优化图片", total=update.total)
        progress.update(task_id, completed=update.completed, description=escape(update.describe()))

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="图片文件或目录，可指定多个"),
    conversion: str = typer.Option("all", "--conversion", "-c", help="格式转换策略 none/all/ie6safe"),
    webp: bool = typer.Option(False, "--webp/--no-webp", help="同时生成 WebP 版本"),
    timeout: int = typer.Option(0, "--timeout", help="整批超时秒数，0 表示不限制"),
    process_timeout: float = typer.Option(
        DEFAULT_PROCESS_TIMEOUT, "--process-timeout", help="单个外部程序的超时秒数"
    ),
    binaries_dir: Optional[Path] = typer.Option(None, "--binaries-dir", "-b", help="压缩程序所在目录，默认从 PATH 查找"),
    work_dir: Optional[Path] = typer.Option(None, "--work-dir", help="临时与结果目录，默认新建临时目录"),
    max_workers: Optional[int] = typer.Option(None, "--workers", "-w", help="并发线程数量，默认等于 CPU 核数"),
    allow_recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描目录"),
    report: Optional[Path] = typer.Option(None, "--report", help="CSV 报告输出路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="同时把日志写入该文件"),
) -> None:
    """执行批量优化。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file.expanduser() if log_file else None)
    policy = _parse_policy(conversion)

    config = OptimizerConfig(
        binaries_dir=binaries_dir.expanduser().resolve() if binaries_dir else None,
        work_dir=work_dir.expanduser().resolve() if work_dir else None,
        timeout_seconds=timeout,
        process_timeout_seconds=process_timeout,
        max_workers=max_workers,
    )

    try:
        files = collect_image_files([p.expanduser() for p in source], recursive=allow_recursive)
        service = ImageOptimizationService(config)
    except InvalidConfigurationError as exc:
        typer.echo(f"参数错误：{exc}", err=True)
        raise typer.Exit(code=2) from exc

    if not files:
        typer.echo("没有找到需要优化的图片。")
        return

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    try:
        with service, progress:
            results = service.optimize_all(
                policy, webp, files, progress_callback=_build_progress_callback(progress)
            )
    except (ToolNotFound, BatchTimeout) as exc:
        typer.echo(f"优化中止：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    for result in results:
        typer.echo(str(result))

    saved = sum(r.saved_bytes for r in results)
    review = sum(1 for r in results if r.failed_automated_test)
    typer.echo(f"优化完成：{len(files)} 张图片，得到 {len(results)} 个更小的结果，共节省 {saved} 字节。")
    if review:
        typer.echo(f"{review} 个结果未通过自动像素比对，请人工检查。")
    if report:
        typer.echo(f"报告文件：{write_csv_report(results, report.expanduser())}")
    typer.echo(f"结果目录：{service.results_directory}")


if __name__ == "__main__":
    app()
