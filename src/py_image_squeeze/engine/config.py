"""任务构建器模块。

把 API/CLI/MCP 传入的原始参数（字符串、路径、字节）转换为 CompressionJob，
集成参数验证；验证失败抛出 ValidationError，属于批次建立前的错误。
"""

from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError as CustomValidationError
from ..models.compression_config import (
    CompressionJob,
    CompressionPreset,
    CompressionSettings,
    OutputFormat,
    parse_quality_range,
)
from ..models.image_source import (
    ImageSource,
    InlineBytesSource,
    LocalPathSource,
    RemoteUrlSource,
)
from ..utils.logging_helpers import get_logger


logger = get_logger()

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}

# 输出格式别名
_FORMAT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


class JobBuilder:
    """压缩任务构建器

    提供统一的任务构建接口和参数验证。
    """

    @staticmethod
    def parse_bool(value: bool | str | None, field: str) -> bool | None:
        """解析布尔参数，None 或空字符串表示未指定"""
        if value is None or isinstance(value, bool):
            return value
        normalized = value.strip().lower()
        if not normalized:
            return None
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        raise CustomValidationError(f"{field} 必须是布尔值，得到: {value!r}", field)

    @staticmethod
    def parse_preset(value: str | CompressionPreset | None) -> CompressionPreset:
        if value is None or value == "":
            return CompressionPreset.MID
        if isinstance(value, CompressionPreset):
            return value
        try:
            return CompressionPreset(str(value).strip().lower())
        except ValueError as e:
            choices = ", ".join(p.value for p in CompressionPreset)
            raise CustomValidationError(
                f"compression_lvl 必须是 {choices} 之一，得到: {value!r}",
                "compression_lvl",
            ) from e

    @staticmethod
    def parse_output_format(
        value: str | OutputFormat | None,
        default: OutputFormat = OutputFormat.ORIGINAL,
    ) -> OutputFormat:
        if value is None or value == "":
            return default
        if isinstance(value, OutputFormat):
            return value
        normalized = str(value).strip().lower()
        normalized = _FORMAT_ALIASES.get(normalized, normalized)
        try:
            return OutputFormat(normalized)
        except ValueError as e:
            choices = ", ".join(f.value for f in OutputFormat)
            raise CustomValidationError(
                f"output_format 必须是 {choices} 之一，得到: {value!r}",
                "output_format",
            ) from e

    def build_settings(
        self,
        compression_lvl: str | CompressionPreset | None = None,
        output_format: str | OutputFormat | None = None,
        png_quality: str | None = None,
        oxipng: bool | str | None = None,
        png_lossy: bool | str | None = None,
        default_format: OutputFormat = OutputFormat.ORIGINAL,
    ) -> CompressionSettings:
        """构建压缩设置

        Args:
            compression_lvl: 压缩等级 low/mid/max
            output_format: 输出格式
            png_quality: "min-max" 形式的质量范围
            oxipng: 是否运行 PNG 无损优化
            png_lossy: 是否允许 PNG 调色板量化
            default_format: 未指定输出格式时的默认值

        Raises:
            CustomValidationError: 参数验证失败
        """
        quality_override = None
        if png_quality is not None and png_quality.strip():
            try:
                quality_override = parse_quality_range(png_quality)
            except CustomValidationError as e:
                raise CustomValidationError(e.message, "png_quality") from e

        try:
            return CompressionSettings(
                preset=self.parse_preset(compression_lvl),
                quality_override=quality_override,
                output_format=self.parse_output_format(output_format, default_format),
                run_secondary_optimizer=self.parse_bool(oxipng, "oxipng"),
                allow_lossy_secondary_pass=self.parse_bool(png_lossy, "png_lossy"),
            )
        except PydanticValidationError as e:
            raise CustomValidationError(self._format_validation_error(e)) from e

    def build(
        self, source: ImageSource, settings: CompressionSettings | None = None
    ) -> CompressionJob:
        """构建单个任务"""
        try:
            return CompressionJob(
                source=source, settings=settings or CompressionSettings()
            )
        except PydanticValidationError as e:
            raise CustomValidationError(self._format_validation_error(e)) from e

    def from_path(
        self, path: str | Path, settings: CompressionSettings | None = None
    ) -> CompressionJob:
        return self.build(LocalPathSource(path=Path(path)), settings)

    def from_url(
        self, url: str, settings: CompressionSettings | None = None
    ) -> CompressionJob:
        return self.build(RemoteUrlSource(url=url.strip()), settings)

    def from_bytes(
        self,
        data: bytes,
        filename: str | None = None,
        settings: CompressionSettings | None = None,
    ) -> CompressionJob:
        return self.build(InlineBytesSource(data=data, filename=filename), settings)

    def build_many(
        self, sources: list[ImageSource], settings: CompressionSettings
    ) -> list[CompressionJob]:
        """同一设置下批量构建任务，顺序与 sources 一致"""
        jobs = [self.build(source, settings) for source in sources]
        logger.debug(f"构建了 {len(jobs)} 个压缩任务")
        return jobs

    def _format_validation_error(self, error: PydanticValidationError) -> str:
        """格式化验证错误"""
        messages = []
        for err in error.errors():
            field = ".".join(str(loc) for loc in err["loc"])
            msg = err["msg"]
            if field:
                messages.append(f"{field}: {msg}")
            else:
                messages.append(msg)
        return "; ".join(messages)
