"""图像处理相关常量定义。

格式名、MIME 类型、扩展名与质量预设表集中在这里，避免在各模块中硬编码。
"""

from typing import Final, NamedTuple

from .compression_config import CompressionPreset, DetectedFormat, OutputFormat


class PresetProfile(NamedTuple):
    """单个压缩预设的参数档位"""

    min_quality: int
    max_quality: int
    run_secondary_optimizer: bool
    allow_lossy_secondary_pass: bool


class ImageFormats:
    """输出格式的 MIME 类型与扩展名管理"""

    MIME_TYPES: Final[dict[OutputFormat, str]] = {
        OutputFormat.PNG: "image/png",
        OutputFormat.JPEG: "image/jpeg",
        OutputFormat.WEBP: "image/webp",
        OutputFormat.AVIF: "image/avif",
        OutputFormat.TIFF: "image/tiff",
        OutputFormat.BMP: "image/bmp",
        OutputFormat.ICO: "image/x-icon",
    }

    PREFERRED_EXTENSIONS: Final[dict[OutputFormat, str]] = {
        OutputFormat.PNG: ".png",
        OutputFormat.JPEG: ".jpg",  # 而不是 .jpeg
        OutputFormat.WEBP: ".webp",
        OutputFormat.AVIF: ".avif",
        OutputFormat.TIFF: ".tiff",  # 而不是 .tif
        OutputFormat.BMP: ".bmp",
        OutputFormat.ICO: ".ico",
    }

    # 目录扫描时接受的扩展名，真实格式仍以字节签名为准
    SUPPORTED_EXTENSIONS: Final[frozenset[str]] = frozenset(
        {
            ".png",
            ".jpg",
            ".jpeg",
            ".webp",
            ".avif",
            ".tif",
            ".tiff",
            ".bmp",
            ".ico",
            ".heic",
            ".heif",
        }
    )

    # 检测格式在 Pillow 中注册的插件名
    PILLOW_NAMES: Final[dict[DetectedFormat, str]] = {
        DetectedFormat.PNG: "PNG",
        DetectedFormat.JPEG: "JPEG",
        DetectedFormat.WEBP: "WEBP",
        DetectedFormat.AVIF: "AVIF",
        DetectedFormat.TIFF: "TIFF",
        DetectedFormat.BMP: "BMP",
        DetectedFormat.ICO: "ICO",
        DetectedFormat.HEIC: "HEIF",
    }

    @classmethod
    def get_mime_type(cls, output_format: OutputFormat) -> str:
        """获取输出格式的 MIME 类型"""
        return cls.MIME_TYPES.get(output_format, "application/octet-stream")

    @classmethod
    def get_extension(cls, output_format: OutputFormat) -> str:
        """获取输出格式的首选扩展名"""
        return cls.PREFERRED_EXTENSIONS.get(output_format, f".{output_format.value}")


class QualityDefaults:
    """质量预设表与取值范围"""

    PRESETS: Final[dict[CompressionPreset, PresetProfile]] = {
        CompressionPreset.LOW: PresetProfile(70, 90, True, False),
        CompressionPreset.MID: PresetProfile(50, 80, True, True),
        CompressionPreset.MAX: PresetProfile(20, 60, True, True),
    }

    DEFAULT_PRESET: Final[CompressionPreset] = CompressionPreset.MID

    MIN_QUALITY: Final[int] = 0
    MAX_QUALITY: Final[int] = 100

    # max_quality 不超过该值时视为激进压缩，PNG 调色板减半
    AGGRESSIVE_MAX_QUALITY: Final[int] = 60
    PNG_PALETTE_COLORS: Final[int] = 256
    PNG_AGGRESSIVE_PALETTE_COLORS: Final[int] = 128

    # oxipng 预设级别 (0-6)
    OXIPNG_LEVEL: Final[int] = 6


class ProcessingDefaults:
    """处理相关默认值"""

    # 默认排除目录
    EXCLUDE_DIRS: Final[list[str]] = [
        "__pycache__",
        ".git",
        ".svn",
        "node_modules",
    ]

    # 输出文件名前缀
    OUTPUT_PREFIX: Final[str] = "c_"

    # 远程下载每次读取的块大小
    FETCH_CHUNK_SIZE: Final[int] = 64 * 1024

    # ICO 最大边长
    ICO_MAX_DIMENSION: Final[int] = 256


def get_mime_type(output_format: OutputFormat) -> str:
    """获取格式的MIME类型"""
    return ImageFormats.get_mime_type(output_format)


def get_extension(output_format: OutputFormat) -> str:
    """获取格式的首选扩展名"""
    return ImageFormats.get_extension(output_format)
