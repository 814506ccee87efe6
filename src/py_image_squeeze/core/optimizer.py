"""PNG 二次优化器。

有损阶段为调色板量化，无损阶段交给 oxipng 重新压缩 PNG 数据流。
"""

import oxipng
from PIL import Image, features

from ..exceptions import CodecEncodeError, handle_codec_errors
from ..models.compression_config import QualityRange
from ..models.constants import QualityDefaults
from ..utils.logging_helpers import get_logger


logger = get_logger()


class PngOptimizer:
    """PNG 量化与无损重压缩"""

    def __init__(self, level: int = QualityDefaults.OXIPNG_LEVEL) -> None:
        self.level = level
        # 编译时带 libimagequant 的 Pillow 量化效果明显更好
        self.quantize_method = (
            Image.Quantize.LIBIMAGEQUANT
            if features.check_feature("libimagequant")
            else Image.Quantize.FASTOCTREE
        )
        logger.debug(f"PNG 量化方法: {self.quantize_method.name}")

    @staticmethod
    def palette_size(quality_range: QualityRange) -> int:
        """根据质量范围确定调色板颜色数"""
        if quality_range.max_quality <= QualityDefaults.AGGRESSIVE_MAX_QUALITY:
            return QualityDefaults.PNG_AGGRESSIVE_PALETTE_COLORS
        return QualityDefaults.PNG_PALETTE_COLORS

    @handle_codec_errors(CodecEncodeError, "PNG 调色板量化")
    def quantize(self, img: Image.Image, quality_range: QualityRange) -> Image.Image:
        """调色板量化（有损）

        Args:
            img: 已准备好模式的图片
            quality_range: 质量范围，决定调色板大小

        Returns:
            Image.Image: P 模式图片
        """
        if img.mode == "P":
            return img

        colors = self.palette_size(quality_range)
        method = self.quantize_method
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        if img.mode == "RGBA" and method == Image.Quantize.MEDIANCUT:
            method = Image.Quantize.FASTOCTREE

        logger.debug(f"PNG 量化到 {colors} 色 ({method.name})")
        return img.quantize(
            colors=colors, method=method, dither=Image.Dither.FLOYDSTEINBERG
        )

    @handle_codec_errors(CodecEncodeError, "oxipng 优化")
    def optimize(self, data: bytes) -> bytes:
        """无损重压缩 PNG 数据

        结果永远不会比输入大。
        """
        optimized = oxipng.optimize_from_memory(
            data, level=self.level, strip=oxipng.StripChunks.safe()
        )
        if len(optimized) >= len(data):
            logger.debug("oxipng 未能进一步减小体积，保留输入")
            return data

        logger.debug(f"oxipng: {len(data)} → {len(optimized)} 字节")
        return optimized
