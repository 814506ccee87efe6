"""压缩配置模型。

定义格式枚举、质量预设、请求侧压缩设置与编码参数。
"""

import re
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .image_source import ImageSource


class DetectedFormat(str, Enum):
    """根据字节签名识别出的源格式"""

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"
    TIFF = "tiff"
    BMP = "bmp"
    ICO = "ico"
    HEIC = "heic"  # 只读格式
    UNKNOWN = "unknown"


class OutputFormat(str, Enum):
    """输出格式，ORIGINAL 在派发时解析为具体格式"""

    ORIGINAL = "original"
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"
    TIFF = "tiff"
    BMP = "bmp"
    ICO = "ico"


class CompressionPreset(str, Enum):
    """压缩等级预设"""

    LOW = "low"
    MID = "mid"
    MAX = "max"


_RANGE_PATTERN = re.compile(r"^\s*(\d{1,3})\s*-\s*(\d{1,3})\s*$")


def parse_quality_range(text: str) -> tuple[int, int]:
    """解析 "min-max" 形式的质量范围字符串

    只负责语法解析，取值范围由预设映射器校验。

    Raises:
        ValidationError: 字符串不是 "min-max" 形式
    """
    from ..exceptions import ValidationError

    match = _RANGE_PATTERN.match(text or "")
    if match is None:
        raise ValidationError(f"质量范围格式应为 min-max，得到: {text!r}")
    return int(match.group(1)), int(match.group(2))


class QualityRange(BaseModel):
    """质量范围 (min, max)，满足 0 <= min <= max <= 100"""

    model_config = ConfigDict(frozen=True)

    min_quality: int = Field(ge=0, le=100, description="最低质量")
    max_quality: int = Field(ge=0, le=100, description="最高质量")

    @model_validator(mode="after")
    def validate_order(self) -> "QualityRange":
        if self.min_quality > self.max_quality:
            raise ValueError(
                f"最低质量不能大于最高质量: {self.min_quality} > {self.max_quality}"
            )
        return self

    @classmethod
    def parse(cls, text: str) -> "QualityRange":
        """从 "min-max" 字符串构建"""
        min_quality, max_quality = parse_quality_range(text)
        return cls(min_quality=min_quality, max_quality=max_quality)

    @property
    def midpoint(self) -> int:
        """单一质量值编码器使用的中点质量"""
        return (self.min_quality + self.max_quality) // 2

    def as_tuple(self) -> tuple[int, int]:
        return self.min_quality, self.max_quality

    def __str__(self) -> str:
        return f"{self.min_quality}-{self.max_quality}"


class CompressionSettings(BaseModel):
    """请求侧的压缩设置

    quality_override 保留原始输入，不在此处校验；None 的布尔开关表示沿用预设默认值。
    """

    model_config = ConfigDict(frozen=True)

    preset: CompressionPreset = Field(CompressionPreset.MID, description="压缩等级")
    quality_override: tuple[int, int] | None = Field(
        None, description="显式质量范围，优先于预设"
    )
    output_format: OutputFormat = Field(OutputFormat.ORIGINAL, description="输出格式")
    run_secondary_optimizer: bool | None = Field(None, description="PNG 二次无损优化")
    allow_lossy_secondary_pass: bool | None = Field(
        None, description="PNG 调色板量化（有损）"
    )


class EncodeOptions(BaseModel):
    """映射后的编码参数，format 一定是具体格式"""

    model_config = ConfigDict(frozen=True)

    format: OutputFormat = Field(description="目标格式")
    quality_range: QualityRange = Field(description="质量范围")
    run_secondary_optimizer: bool = Field(True, description="PNG 二次无损优化")
    allow_lossy_secondary_pass: bool = Field(True, description="PNG 调色板量化")

    @model_validator(mode="after")
    def validate_concrete_format(self) -> "EncodeOptions":
        if self.format == OutputFormat.ORIGINAL:
            raise ValueError("编码参数的目标格式必须是具体格式")
        return self

    @property
    def quality(self) -> int:
        return self.quality_range.midpoint


class CompressionJob(BaseModel):
    """单个压缩任务"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="任务 ID")
    source: ImageSource = Field(description="输入来源")
    settings: CompressionSettings = Field(
        default_factory=CompressionSettings, description="压缩设置"
    )
