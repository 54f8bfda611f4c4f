"""处理流水线：拆分工作单元、线程池并发执行、按完成顺序收集结果。"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
import weakref
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Callable, Iterable, Optional

from image_optimizer.core.config import OptimizerConfig
from image_optimizer.core.exceptions import BatchTimeout, UnsupportedFormatError
from image_optimizer.core.models import ConversionPolicy, ImageFormat, OptimizationResult, WorkItem
from image_optimizer.core.output_manager import ResultPlacer
from image_optimizer.core.progress import DONE, ProgressUpdate
from image_optimizer.processing.stages import StageContext
from image_optimizer.processing.tools import ToolRunner
from image_optimizer.processing.worker import WorkContext, remove_scratch, run_work_item

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]

_LIVE_SERVICES: "weakref.WeakSet[ImageOptimizationService]" = weakref.WeakSet()


def build_work_items(
    files: Iterable[Path],
    policy: ConversionPolicy,
    include_webp: bool,
    batch_dir: Path,
) -> list[WorkItem]:
    """每个文件一个默认优化单元，需要 WebP 时再加一个转换单元。"""

    items: list[WorkItem] = []
    for index, path in enumerate(files):
        image_format = ImageFormat.from_path(path)
        if image_format is None:
            raise UnsupportedFormatError(f"不支持的文件扩展名: {path}")

        source = path.resolve()
        items.append(WorkItem(source, batch_dir / f"{index}-{image_format.value}", image_format, policy))
        if include_webp:
            items.append(WorkItem(source, batch_dir / f"{index}-webp", image_format, policy, True))
    return items


class ImageOptimizationService:
    """批量图片优化服务。

    线程池在第一次提交任务时创建，数量默认等于 CPU 核数；
    结果写入 ``<work_dir>/final`` 下，目录结构镜像原图的绝对路径。
    关闭服务（包括解释器退出）会立即终止执行中的外部程序，不等待工作单元跑完。
    """

    def __init__(self, config: Optional[OptimizerConfig] = None) -> None:
        self.config = config or OptimizerConfig()
        self.config.validate()

        if self.config.work_dir is not None:
            self.work_dir = self.config.work_dir.resolve()
            self.work_dir.mkdir(parents=True, exist_ok=True)
        else:
            self.work_dir = Path(tempfile.mkdtemp(prefix="image_optimizer_"))

        self.results_directory = self.work_dir / "final"
        self.runner = ToolRunner(self.config.binaries_dir, self.config.process_timeout_seconds)
        self.placer = ResultPlacer(self.results_directory)
        self.max_workers = self.config.max_workers or os.cpu_count() or 1
        self._executor: Optional[ThreadPoolExecutor] = None
        self._active_batches: set[threading.Event] = set()
        self._lock = threading.Lock()
        _LIVE_SERVICES.add(self)

    def __enter__(self) -> "ImageOptimizationService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def optimize_all(
        self,
        policy: ConversionPolicy,
        include_webp: bool,
        files: Optional[Iterable[Path]],
        progress_callback: ProgressCallback = None,
    ) -> list[OptimizationResult]:
        """优化一组图片，返回所有变小了的结果。

        配置了整批超时时，超时会取消所有未完成的工作单元并抛出 BatchTimeout，不返回部分结果。
        """

        unique_files = sorted({Path(f).resolve() for f in files or ()}, key=lambda x: str(x).lower())
        if not unique_files:
            return []

        started = time.monotonic()
        cancel_event = threading.Event()
        context = WorkContext(stages=StageContext(self.runner, cancel_event), placer=self.placer)
        batch_dir = self.work_dir / f"scratch{time.time_ns()}"
        items = build_work_items(unique_files, policy, include_webp, batch_dir)
        total = len(items)

        executor = self._ensure_executor()
        with self._lock:
            self._active_batches.add(cancel_event)
        future_map: dict[Future, WorkItem] = {}
        try:
            for item in items:
                future_map[executor.submit(run_work_item, item, context)] = item
            LOGGER.info("已提交 %d 个工作单元（%d 个文件）", total, len(unique_files))
            results = self._collect(future_map, total, progress_callback)
        except FuturesTimeoutError as exc:
            self._cancel(future_map, cancel_event)
            raise BatchTimeout(f"等待图片优化超时（{self.config.timeout_seconds} 秒）") from exc
        except BaseException:
            self._cancel(future_map, cancel_event)
            raise
        finally:
            with self._lock:
                self._active_batches.discard(cancel_event)
            _remove_when_settled(list(future_map), batch_dir)

        LOGGER.info("图片优化耗时 %.2f 秒", time.monotonic() - started)
        return results

    def _collect(
        self,
        future_map: dict[Future, WorkItem],
        total: int,
        progress_callback: ProgressCallback,
    ) -> list[OptimizationResult]:
        timeout = self.config.timeout_seconds if self.config.timeout_seconds > 0 else None
        results: list[OptimizationResult] = []
        saved = 0
        completed = 0
        for future in as_completed(future_map, timeout=timeout):
            item = future_map[future]
            result = future.result()
            completed += 1
            if result is not None:
                LOGGER.info("%s", result)
                results.append(result)
                saved += result.saved_bytes
            _emit_progress(progress_callback, ProgressUpdate(total, completed, item.label, len(results), saved))
        _emit_progress(progress_callback, ProgressUpdate(total, total, None, len(results), saved, status=DONE))
        return results

    def close(self) -> None:
        """关闭线程池：取消排队中的工作单元，并终止所有执行中的外部程序。"""

        with self._lock:
            executor, self._executor = self._executor, None
            batches = list(self._active_batches)
        for cancel_event in batches:
            cancel_event.set()
        if batches:
            LOGGER.warning("服务关闭，终止 %d 个批次中执行中的外部程序", len(batches))
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
            LOGGER.debug("线程池已关闭")

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="image-optimizer",
                )
            return self._executor

    @staticmethod
    def _cancel(future_map: dict[Future, WorkItem], cancel_event: threading.Event) -> None:
        cancel_event.set()
        cancelled = sum(1 for future in future_map if future.cancel())
        LOGGER.warning("已取消 %d 个排队中的工作单元，正在终止执行中的外部程序", cancelled)


def _remove_when_settled(futures: list[Future], batch_dir: Path) -> None:
    """所有工作单元结束后删除批次临时目录；超时返回时由最后结束的单元负责删除。"""

    pending = [future for future in futures if not future.done()]
    if not pending:
        remove_scratch(batch_dir)
        return

    remaining = len(pending)
    lock = threading.Lock()

    def on_done(_: Future) -> None:
        nonlocal remaining
        with lock:
            remaining -= 1
            last = remaining == 0
        if last:
            remove_scratch(batch_dir)

    for future in pending:
        future.add_done_callback(on_done)


def _emit_progress(callback: ProgressCallback, update: ProgressUpdate) -> None:
    if not callback:
        return
    callback(update)


def _close_live_services() -> None:
    for service in list(_LIVE_SERVICES):
        service.close()


# 线程池在解释器退出时会等待工作线程结束；先关闭服务，执行中的外部程序即被终止。
# threading 按注册的逆序调用退出回调，因此这里会先于线程池的回调执行。
threading._register_atexit(_close_live_services)
