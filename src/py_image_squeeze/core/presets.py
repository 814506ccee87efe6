"""质量预设映射模块。

把请求侧的压缩设置与识别出的源格式映射为具体的编码参数。
"""

from ..exceptions import InvalidRangeError, UnsupportedFormatError
from ..models.compression_config import (
    CompressionSettings,
    DetectedFormat,
    EncodeOptions,
    OutputFormat,
    QualityRange,
)
from ..models.constants import QualityDefaults
from ..utils.logging_helpers import get_logger


logger = get_logger()


# 源格式到 ORIGINAL 输出格式的映射，HEIC 只读，落到 JPEG
_ORIGINAL_TARGETS: dict[DetectedFormat, OutputFormat] = {
    DetectedFormat.PNG: OutputFormat.PNG,
    DetectedFormat.JPEG: OutputFormat.JPEG,
    DetectedFormat.WEBP: OutputFormat.WEBP,
    DetectedFormat.AVIF: OutputFormat.AVIF,
    DetectedFormat.TIFF: OutputFormat.TIFF,
    DetectedFormat.BMP: OutputFormat.BMP,
    DetectedFormat.ICO: OutputFormat.ICO,
    DetectedFormat.HEIC: OutputFormat.JPEG,
}


def resolve_target_format(
    requested: OutputFormat, detected: DetectedFormat
) -> OutputFormat:
    """解析目标格式

    Raises:
        UnsupportedFormatError: 源格式无法识别
    """
    if detected == DetectedFormat.UNKNOWN:
        raise UnsupportedFormatError("无法识别的图片格式")
    if requested != OutputFormat.ORIGINAL:
        return requested
    return _ORIGINAL_TARGETS[detected]


def validate_quality_range(bounds: tuple[int, int]) -> QualityRange:
    """校验显式质量范围

    Raises:
        InvalidRangeError: min > max 或取值越界
    """
    min_quality, max_quality = bounds
    for value in (min_quality, max_quality):
        if not QualityDefaults.MIN_QUALITY <= value <= QualityDefaults.MAX_QUALITY:
            raise InvalidRangeError(
                f"质量必须在 {QualityDefaults.MIN_QUALITY}-"
                f"{QualityDefaults.MAX_QUALITY} 之间，得到: {min_quality}-{max_quality}"
            )
    if min_quality > max_quality:
        raise InvalidRangeError(
            f"最低质量不能大于最高质量: {min_quality}-{max_quality}"
        )
    return QualityRange(min_quality=min_quality, max_quality=max_quality)


class QualityPresetMapper:
    """预设到编码参数的映射器，纯函数，无状态"""

    def map(
        self,
        settings: CompressionSettings,
        detected: DetectedFormat,
        default_override: QualityRange | None = None,
    ) -> EncodeOptions:
        """映射压缩设置

        Args:
            settings: 请求侧压缩设置
            detected: 识别出的源格式
            default_override: 进程级默认质量范围，任务未显式指定时使用

        Raises:
            UnsupportedFormatError: 源格式无法识别
            InvalidRangeError: 显式质量范围无效
        """
        target = resolve_target_format(settings.output_format, detected)
        profile = QualityDefaults.PRESETS[settings.preset]

        if settings.quality_override is not None:
            quality_range = validate_quality_range(settings.quality_override)
        elif default_override is not None:
            quality_range = default_override
        else:
            quality_range = QualityRange(
                min_quality=profile.min_quality, max_quality=profile.max_quality
            )

        run_optimizer = (
            profile.run_secondary_optimizer
            if settings.run_secondary_optimizer is None
            else settings.run_secondary_optimizer
        )
        allow_lossy = (
            profile.allow_lossy_secondary_pass
            if settings.allow_lossy_secondary_pass is None
            else settings.allow_lossy_secondary_pass
        )

        options = EncodeOptions(
            format=target,
            quality_range=quality_range,
            run_secondary_optimizer=run_optimizer,
            allow_lossy_secondary_pass=allow_lossy,
        )
        logger.debug(
            f"预设映射: {settings.preset.value} {detected.value} → "
            f"{target.value} ({quality_range})"
        )
        return options
