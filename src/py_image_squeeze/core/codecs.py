"""编解码器模块。

每种输出格式一个编码器类，解码统一走 Pillow 并限定为识别出的格式。
"""

from io import BytesIO
from typing import Any, ClassVar, assert_never

from PIL import Image, ImageOps

from ..exceptions import (
    CodecDecodeError,
    CodecEncodeError,
    UnsupportedFormatError,
    handle_codec_errors,
)
from ..models.compression_config import DetectedFormat, EncodeOptions, OutputFormat
from ..models.constants import ImageFormats, ProcessingDefaults
from ..utils.logging_helpers import get_logger
from .formats import get_format_processor
from .optimizer import PngOptimizer


logger = get_logger()


@handle_codec_errors(CodecDecodeError, "图片解码")
def decode_image(data: bytes, detected: DetectedFormat) -> Image.Image:
    """解码原始字节

    Args:
        data: 原始字节
        detected: 识别出的格式，解码器只尝试该格式

    Returns:
        Image.Image: 已加载并按 EXIF 方向校正的图片
    """
    if detected == DetectedFormat.UNKNOWN:
        raise UnsupportedFormatError("无法识别的图片格式")

    pillow_name = ImageFormats.PILLOW_NAMES[detected]
    with Image.open(BytesIO(data), formats=[pillow_name]) as img:
        img.load()
        # exif_transpose 总是返回新图片，不依赖已关闭的源
        return ImageOps.exif_transpose(img)


class ImageCodec:
    """编码器基类"""

    output_format: ClassVar[OutputFormat]
    pillow_format: ClassVar[str]

    def encode(self, img: Image.Image, options: EncodeOptions) -> bytes:
        """按编码参数编码图片"""
        prepared = get_format_processor().prepare_for_format(img, self.output_format)
        return self._save(prepared, self.save_params(options))

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        return {}

    @handle_codec_errors(CodecEncodeError, "图片编码")
    def _save(self, img: Image.Image, params: dict[str, Any]) -> bytes:
        buffer = BytesIO()
        img.save(buffer, format=self.pillow_format, **params)
        return buffer.getvalue()


class PngCodec(ImageCodec):
    """PNG: 可选调色板量化，之后可选 oxipng 无损重压缩"""

    output_format = OutputFormat.PNG
    pillow_format = "PNG"

    def __init__(self, optimizer: PngOptimizer | None = None) -> None:
        self.optimizer = optimizer or PngOptimizer()

    def encode(self, img: Image.Image, options: EncodeOptions) -> bytes:
        prepared = get_format_processor().prepare_for_format(img, self.output_format)
        if options.allow_lossy_secondary_pass:
            prepared = self.optimizer.quantize(prepared, options.quality_range)

        data = self._save(prepared, self.save_params(options))

        # 无损优化必须在量化之后
        if options.run_secondary_optimizer:
            data = self.optimizer.optimize(data)
        return data

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        # oxipng 会重新压缩，跳过 Pillow 的耗时 optimize
        return {"optimize": not options.run_secondary_optimizer}


class JpegCodec(ImageCodec):
    output_format = OutputFormat.JPEG
    pillow_format = "JPEG"

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        quality = options.quality
        return {
            "quality": quality,
            "optimize": True,
            "progressive": True,
            # 高质量时只做水平色度子采样
            "subsampling": "4:2:2" if quality >= 85 else "4:2:0",
        }


class WebpCodec(ImageCodec):
    output_format = OutputFormat.WEBP
    pillow_format = "WEBP"

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        quality = options.quality
        params: dict[str, Any] = {"quality": quality, "method": 6}

        # 透明通道质量随主质量提高，高质量时无损
        if quality >= 85:
            params["alpha_quality"] = 100
        elif quality >= 70:
            params["alpha_quality"] = min(100, quality + 10)
        else:
            params["alpha_quality"] = quality
        return params


class AvifCodec(ImageCodec):
    output_format = OutputFormat.AVIF
    pillow_format = "AVIF"

    def encode(self, img: Image.Image, options: EncodeOptions) -> bytes:
        if not get_format_processor().avif_supported:
            raise CodecEncodeError("当前 Pillow 未启用 AVIF 编码支持")
        return super().encode(img, options)

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        return {"quality": options.quality, "speed": 6}


class TiffCodec(ImageCodec):
    """TIFF: 无损 LZW"""

    output_format = OutputFormat.TIFF
    pillow_format = "TIFF"

    def save_params(self, options: EncodeOptions) -> dict[str, Any]:
        return {"compression": "tiff_lzw"}


class BmpCodec(ImageCodec):
    output_format = OutputFormat.BMP
    pillow_format = "BMP"


class IcoCodec(ImageCodec):
    """ICO: 边长缩放到 256 以内，只写一个尺寸"""

    output_format = OutputFormat.ICO
    pillow_format = "ICO"

    def encode(self, img: Image.Image, options: EncodeOptions) -> bytes:
        limit = ProcessingDefaults.ICO_MAX_DIMENSION
        if img.width > limit or img.height > limit:
            img = img.copy()
            img.thumbnail((limit, limit), Image.Resampling.LANCZOS)
            logger.debug(f"ICO 缩放到 {img.size}")
        return super().encode(img, options)

    def _save(self, img: Image.Image, params: dict[str, Any]) -> bytes:
        return super()._save(img, {**params, "sizes": [img.size]})


def get_codec(fmt: OutputFormat) -> ImageCodec:
    """获取输出格式对应的编码器

    Raises:
        UnsupportedFormatError: 格式为 ORIGINAL（必须先解析为具体格式）
    """
    match fmt:
        case OutputFormat.PNG:
            return PngCodec()
        case OutputFormat.JPEG:
            return JpegCodec()
        case OutputFormat.WEBP:
            return WebpCodec()
        case OutputFormat.AVIF:
            return AvifCodec()
        case OutputFormat.TIFF:
            return TiffCodec()
        case OutputFormat.BMP:
            return BmpCodec()
        case OutputFormat.ICO:
            return IcoCodec()
        case OutputFormat.ORIGINAL:
            raise UnsupportedFormatError("输出格式 original 必须先解析为具体格式")
        case _:
            assert_never(fmt)
