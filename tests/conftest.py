"""测试公共夹具：用 Python 脚本模拟外部压缩程序，测试环境无需安装真实工具。"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest
from PIL import Image

PADDING = b"\x00" * 2048

# 直接复制，不做任何压缩
NOOP = "sys.exit(0)\n"

# 去掉文件末尾补齐的 0 字节（JPEG 以 FFD9 结尾，GIF 以 3B 结尾，像素不变）
STRIP_PADDING = """
def strip(src, dst):
    with open(src, "rb") as handle:
        data = handle.read().rstrip(b"\\x00")
    with open(dst, "wb") as handle:
        handle.write(data)
"""

FAKE_TOOLS = {
    "advpng": NOOP,
    "pngout": "sys.exit(2)\n",
    "optipng": """
from PIL import Image
path = sys.argv[-1]
try:
    with Image.open(path) as img:
        img.load()
        copy = img.copy()
except Exception as exc:
    print("optipng: cannot read", path, exc)
    sys.exit(1)
copy.save(path, format="PNG", optimize=True)
""",
    "pngquant": "sys.exit(99)\n",
    "jpegtran": STRIP_PADDING
    + """
args = sys.argv[1:]
strip(args[-1], args[args.index("-outfile") + 1])
""",
    "jfifremove": """
sys.stdout.buffer.write(sys.stdin.buffer.read())
""",
    "gifsicle": STRIP_PADDING
    + """
args = sys.argv[1:]
strip(args[1], args[args.index("-o") + 1])
""",
    "cwebp": """
from PIL import Image
args = sys.argv[1:]
with Image.open(args[0]) as img:
    img.save(args[args.index("-o") + 1], format="WEBP", lossless=True)
""",
    "gif2webp": """
from PIL import Image
args = sys.argv[1:]
with Image.open(args[0]) as img:
    img.save(args[args.index("-o") + 1], format="WEBP", lossless=True)
""",
    "convert": """
from PIL import Image
with Image.open(sys.argv[1]) as img:
    img.save(sys.argv[2])
""",
}


class FakeBinaries:
    """临时的外部程序目录，可在单个测试里替换某个程序的行为。"""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.mkdir(parents=True, exist_ok=True)
        for name, body in FAKE_TOOLS.items():
            self.install(name, body)

    def install(self, name: str, body: str) -> Path:
        script = self.path / name
        script.write_text(f"#!{sys.executable}\nimport sys\n{body}", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    def remove(self, name: str) -> None:
        (self.path / name).unlink()


@pytest.fixture
def fake_binaries(tmp_path: Path) -> FakeBinaries:
    if os.name == "nt":
        pytest.skip("模拟程序依赖 shebang，仅支持类 Unix 系统")
    return FakeBinaries(tmp_path / "bin")


def make_png(path: Path, size: tuple[int, int] = (64, 64), color: str = "blue") -> Path:
    """生成未压缩的 PNG，模拟 optipng 可以让它明显变小。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="PNG", compress_level=0)
    return path


def make_jpeg(path: Path, size: tuple[int, int] = (64, 64), color: str = "red") -> Path:
    """生成末尾带补齐字节的 JPEG，模拟 jpegtran 会去掉这些字节。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="JPEG", quality=90)
    with path.open("ab") as handle:
        handle.write(PADDING)
    return path


def make_gif(path: Path, size: tuple[int, int] = (64, 64), transparent: bool = False, frames: int = 1) -> Path:
    """生成末尾带补齐字节的 GIF。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    images = []
    for index in range(frames):
        img = Image.new("P", size, index + 1)
        img.putpalette([0, 0, 0, 255, 0, 0, 0, 255, 0, 0, 0, 255] + [0, 0, 0] * 252)
        img.putpixel((0, 0), 0)
        images.append(img)

    params = {"format": "GIF"}
    if transparent:
        params["transparency"] = 0
    if frames > 1:
        params.update(save_all=True, append_images=images[1:], duration=100, loop=0)
    images[0].save(path, **params)
    with path.open("ab") as handle:
        handle.write(PADDING)
    return path
