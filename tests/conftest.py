"""测试配置文件。

提供测试所需的fixtures和配置，测试图片全部在内存中合成。
"""

import random
import tempfile
from dataclasses import replace
from functools import lru_cache
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image, ImageDraw, ImageFilter

from py_image_squeeze.config import AppConfig, ProcessingDefaults, reset_config


def _photo_like_image(size: tuple[int, int] = (320, 240)) -> Image.Image:
    """渐变 + 固定种子噪声 + 轻微模糊，压缩特性接近真实照片"""
    return _photo_base(size).copy()


@lru_cache(maxsize=4)
def _photo_base(size: tuple[int, int]) -> Image.Image:
    width, height = size
    rng = random.Random(20240601)

    def channel(base: int) -> int:
        return max(0, min(255, base + int(rng.gauss(0, 18))))

    img = Image.new("RGB", size)
    img.putdata(
        [
            (
                channel((x * 255) // width),
                channel((y * 255) // height),
                channel(((x + y) * 255) // (width + height)),
            )
            for y in range(height)
            for x in range(width)
        ]
    )
    draw = ImageDraw.Draw(img)
    for i in range(6):
        x, y = (i * 53) % width, (i * 31) % height
        draw.ellipse(
            [x, y, x + 60, y + 45], fill=(i * 40 % 256, 255 - i * 30, i * 25 % 256)
        )
    return img.filter(ImageFilter.GaussianBlur(0.8))


def encode(img: Image.Image, pillow_format: str, **params) -> bytes:
    """把图片编码为指定格式的字节"""
    buffer = BytesIO()
    img.save(buffer, format=pillow_format, **params)
    return buffer.getvalue()


@pytest.fixture
def temp_dir():
    """临时目录fixture"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def photo_image() -> Image.Image:
    return _photo_like_image()


@pytest.fixture
def png_bytes(photo_image: Image.Image) -> bytes:
    """真彩色 PNG"""
    return encode(photo_image, "PNG")


@pytest.fixture
def jpeg_bytes(photo_image: Image.Image) -> bytes:
    return encode(photo_image, "JPEG", quality=95)


@pytest.fixture
def rgba_image() -> Image.Image:
    """半透明圆形叠加的 RGBA 图片"""
    img = Image.new("RGBA", (200, 200), color=(0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    for i in range(8):
        x, y = i * 20, i * 20
        draw.ellipse(
            [x, y, x + 60, y + 60],
            fill=(255 - i * 25, 100 + i * 15, i * 30, 120 + i * 15),
        )
    return img


@pytest.fixture
def rgba_png_bytes(rgba_image: Image.Image) -> bytes:
    return encode(rgba_image, "PNG")


@pytest.fixture
def image_tree(temp_dir: Path, photo_image: Image.Image) -> Path:
    """包含子目录、非图片文件与排除目录的输入树"""
    root = temp_dir / "input"
    (root / "nested").mkdir(parents=True)
    (root / "node_modules").mkdir()

    photo_image.save(root / "a.png", "PNG")
    photo_image.save(root / "b.jpg", "JPEG", quality=95)
    photo_image.save(root / "nested" / "c.png", "PNG")
    photo_image.save(root / "node_modules" / "skip.png", "PNG")
    (root / "notes.txt").write_text("not an image", encoding="utf-8")
    return root


@pytest.fixture
def app_config() -> AppConfig:
    """小并发的测试配置"""
    return AppConfig(
        processing=ProcessingDefaults(MAX_WORKERS=2, QUEUE_SIZE=2, FETCH_TIMEOUT=5.0)
    )


@pytest.fixture
def rooted_config(app_config: AppConfig, temp_dir: Path) -> AppConfig:
    """API 可访问 temp_dir 下本地路径的配置"""
    return replace(
        app_config,
        processing=replace(app_config.processing, ALLOWED_ROOT=temp_dir.resolve()),
    )


@pytest.fixture(autouse=True)
def _reset_process_config():
    """每个测试前后清空进程级配置缓存"""
    reset_config()
    yield
    reset_config()
