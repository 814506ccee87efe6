"""数据模型包。

定义图片压缩相关的数据结构和模型。
"""

from .compression_config import (
    CompressionJob,
    CompressionPreset,
    CompressionSettings,
    DetectedFormat,
    EncodeOptions,
    OutputFormat,
    QualityRange,
    parse_quality_range,
)
from .compression_result import (
    BatchResult,
    ErrorKind,
    JobFailure,
    JobResult,
    JobState,
    JobSuccess,
)
from .constants import (
    ImageFormats,
    PresetProfile,
    ProcessingDefaults,
    QualityDefaults,
    get_extension,
    get_mime_type,
)
from .image_source import (
    ImageSource,
    InlineBytesSource,
    LocalPathSource,
    RemoteUrlSource,
    ResolvedInput,
)


__all__ = [
    # 核心模型
    "BatchResult",
    "CompressionJob",
    "CompressionPreset",
    "CompressionSettings",
    "DetectedFormat",
    "EncodeOptions",
    "ErrorKind",
    # 输入来源
    "ImageFormats",
    "ImageSource",
    "InlineBytesSource",
    "JobFailure",
    "JobResult",
    "JobState",
    "JobSuccess",
    "LocalPathSource",
    "OutputFormat",
    "PresetProfile",
    "ProcessingDefaults",
    "QualityDefaults",
    "QualityRange",
    "RemoteUrlSource",
    "ResolvedInput",
    # 工具函数
    "get_extension",
    "get_mime_type",
    "parse_quality_range",
]
