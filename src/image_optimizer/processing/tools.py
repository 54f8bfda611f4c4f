"""外部压缩程序的调用适配层。

每个程序使用固定的参数模板启动，stderr 合并进 stdout 供诊断。
等待子进程时按固定间隔轮询，以便响应单进程超时和批次取消，
两种情况下都会强制结束子进程。
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Optional, Sequence

from image_optimizer.core.config import DEFAULT_PROCESS_TIMEOUT
from image_optimizer.core.exceptions import (
    ProcessingAborted,
    ToolExecutionFailed,
    ToolNotFound,
    ToolTimedOut,
)

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127
POLL_INTERVAL = 0.1

MISSING_LIBRARY_HINT = '多半是系统缺少该程序依赖的共享库，Ubuntu 上可执行 "sudo apt-get install libjpeg62:i386"'


@dataclass(frozen=True, slots=True)
class Tool:
    """外部程序描述：名称、表示“无更小输出”的非零退出码、缺失时的提示。"""

    name: str
    benign_exit_codes: frozenset[int] = field(default_factory=frozenset)
    hint: str = MISSING_LIBRARY_HINT


ADVPNG = Tool("advpng")
PNGOUT = Tool("pngout", frozenset({2}))
OPTIPNG = Tool("optipng")
PNGQUANT = Tool("pngquant", frozenset({99}))
JPEGTRAN = Tool("jpegtran")
JFIFREMOVE = Tool("jfifremove")
GIFSICLE = Tool("gifsicle", frozenset({1}))
CWEBP = Tool("cwebp")
GIF2WEBP = Tool("gif2webp")
CONVERT = Tool("convert", hint='多半是系统未安装 ImageMagick，Ubuntu 上可执行 "sudo apt-get install imagemagick"')


@dataclass(slots=True)
class ToolOutcome:
    """一次成功（或良性失败）调用的结果。"""

    tool: Tool
    exit_code: int
    output: str

    @property
    def benign(self) -> bool:
        """退出码非零但属于该程序约定的“没有产出更小文件”。"""

        return self.exit_code != 0


class ToolRunner:
    """负责定位并执行外部程序。"""

    def __init__(self, binaries_dir: Optional[Path] = None, process_timeout: float = DEFAULT_PROCESS_TIMEOUT) -> None:
        self.binaries_dir = binaries_dir.resolve() if binaries_dir is not None else None
        self.process_timeout = process_timeout

    def resolve(self, tool: Tool) -> str:
        """返回程序的可执行路径；未指定目录时从 PATH 查找。"""

        executable = tool.name + (".exe" if os.name == "nt" else "")
        if self.binaries_dir is not None:
            return str(self.binaries_dir / executable)
        return shutil.which(executable) or executable

    def invoke(
        self,
        tool: Tool,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        stdin_path: Optional[Path] = None,
        stdout_path: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ToolOutcome:
        """执行外部程序并解释退出码。

        给定 stdout_path 时程序的标准输出写入该文件，此时只捕获 stderr。
        """

        if cancel_event is not None and cancel_event.is_set():
            raise ProcessingAborted(f"批次已取消，不再启动 {tool.name}")

        command = [self.resolve(tool), *args]
        LOGGER.debug("执行外部程序：%s", " ".join(command))

        stdin_handle: Optional[IO[bytes]] = None
        stdout_handle: Optional[IO[bytes]] = None
        try:
            if stdin_path is not None:
                stdin_handle = stdin_path.open("rb")
            if stdout_path is not None:
                stdout_handle = stdout_path.open("wb")

            try:
                process = subprocess.Popen(
                    command,
                    cwd=str(cwd) if cwd is not None else None,
                    stdin=stdin_handle if stdin_handle is not None else subprocess.DEVNULL,
                    stdout=stdout_handle if stdout_handle is not None else subprocess.PIPE,
                    stderr=subprocess.PIPE if stdout_handle is not None else subprocess.STDOUT,
                )
            except (FileNotFoundError, PermissionError) as exc:
                raise ToolNotFound(tool.name, str(exc)) from exc

            exit_code, output = self._wait(process, tool, cancel_event)
        finally:
            for handle in (stdin_handle, stdout_handle):
                if handle is not None:
                    handle.close()

        if exit_code == COMMAND_NOT_FOUND:
            raise ToolNotFound(tool.name, f"{tool.hint}。退出码 {exit_code}: {output.strip()}")
        if exit_code != 0 and exit_code not in tool.benign_exit_codes:
            raise ToolExecutionFailed(tool.name, exit_code, output)
        if exit_code != 0:
            LOGGER.debug("%s 返回良性退出码 %d", tool.name, exit_code)
        return ToolOutcome(tool=tool, exit_code=exit_code, output=output)

    def _wait(
        self,
        process: subprocess.Popen,
        tool: Tool,
        cancel_event: Optional[threading.Event],
    ) -> tuple[int, str]:
        deadline = time.monotonic() + self.process_timeout
        while True:
            try:
                stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._kill(process)
                    raise ProcessingAborted(f"批次已取消，终止 {tool.name}") from None
                if time.monotonic() >= deadline:
                    output = self._kill(process)
                    raise ToolTimedOut(tool.name, self.process_timeout, output) from None
        return process.returncode, _decode(stdout if stdout is not None else stderr)

    @staticmethod
    def _kill(process: subprocess.Popen) -> str:
        process.kill()
        stdout, stderr = process.communicate()
        return _decode(stdout if stdout is not None else stderr)


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")
