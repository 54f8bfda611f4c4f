"""环节六：测试命令行入口。"""

from __future__ import annotations

import csv
from pathlib import Path

from typer.testing import CliRunner

from conftest import make_gif, make_png
from image_optimizer.cli.main import app

runner = CliRunner()


def test_cli_optimizes_directory_and_writes_report(fake_binaries, tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_png(source / "logo.png")
    make_gif(source / "icon.gif")
    report = tmp_path / "report.csv"

    result = runner.invoke(
        app,
        [
            str(source),
            "--conversion",
            "none",
            "--binaries-dir",
            str(fake_binaries.path),
            "--work-dir",
            str(tmp_path / "work"),
            "--report",
            str(report),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "优化完成" in result.output
    with report.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == 2


def test_cli_rejects_unknown_policy(fake_binaries, tmp_path: Path) -> None:
    make_png(tmp_path / "logo.png")

    result = runner.invoke(app, [str(tmp_path / "logo.png"), "--conversion", "lossy"])

    assert result.exit_code != 0


def test_cli_reports_missing_tool(fake_binaries, tmp_path: Path) -> None:
    fake_binaries.remove("advpng")
    source = make_png(tmp_path / "logo.png")

    result = runner.invoke(
        app,
        [str(source), "--binaries-dir", str(fake_binaries.path), "--work-dir", str(tmp_path / "work")],
    )

    assert result.exit_code == 1


def test_cli_missing_input_path(tmp_path: Path) -> None:
    result = runner.invoke(app, [str(tmp_path / "missing")])

    assert result.exit_code == 2


def test_setup_logging_keeps_pillow_quiet_in_debug() -> None:
    import logging

    from image_optimizer.utils.logging import setup_logging

    pil_logger = logging.getLogger("PIL")
    previous = pil_logger.level
    try:
        setup_logging(logging.DEBUG)
        assert pil_logger.level == logging.INFO
    finally:
        pil_logger.setLevel(previous)
