"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from image_optimizer.core.models import OptimizationResult

HEADER = [
    "original_path",
    "optimized_path",
    "original_size",
    "optimized_size",
    "saved_bytes",
    "file_type_changed",
    "browser_specific",
    "failed_automated_test",
]


def write_csv_report(results: Iterable[OptimizationResult], report_path: Path) -> Path:
    """将优化结果写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in results:
            writer.writerow(
                [
                    str(record.original_file),
                    str(record.optimized_file),
                    record.original_size,
                    record.optimized_size,
                    record.saved_bytes,
                    _format_flag(record.file_type_changed),
                    _format_flag(record.is_browser_specific),
                    _format_flag(record.failed_automated_test),
                ]
            )
    return report_path


def _format_flag(value: bool) -> str:
    return "yes" if value else "no"
