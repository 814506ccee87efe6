"""核心模块包。

单个压缩任务的流水线：输入解析、格式识别、预设映射、编解码与执行。
"""

from .codecs import ImageCodec, decode_image, get_codec
from .compression_engine import JobExecutor, process_job
from .formats import FormatClassifier, FormatProcessor, detect_format
from .optimizer import PngOptimizer
from .presets import QualityPresetMapper, resolve_target_format
from .resolver import InputResolver


__all__ = [
    "FormatClassifier",
    "FormatProcessor",
    "ImageCodec",
    "InputResolver",
    "JobExecutor",
    "PngOptimizer",
    "QualityPresetMapper",
    "decode_image",
    "detect_format",
    "get_codec",
    "process_job",
    "resolve_target_format",
]
