"""本地图片压缩与格式转换库。

基于 Pillow、pillow-heif 与 oxipng 的压缩编排：输入解析、格式识别、
质量预设映射与并发批处理。
"""

__version__ = "0.1.0"
__description__ = "本地图片压缩与格式转换，提供 HTTP API、CLI 与 MCP 工具"

# 核心功能导出
from .compressor import ImageCompressor
from .models import (
    BatchResult,
    CompressionJob,
    CompressionPreset,
    CompressionSettings,
    ErrorKind,
    JobFailure,
    JobSuccess,
    OutputFormat,
)


__all__ = [
    "BatchResult",
    "CompressionJob",
    "CompressionPreset",
    "CompressionSettings",
    "ErrorKind",
    "ImageCompressor",
    "JobFailure",
    "JobSuccess",
    "OutputFormat",
    "get_version",
]


def get_version() -> str:
    """获取版本号。"""
    return __version__
