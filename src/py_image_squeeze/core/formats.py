"""格式识别与格式处理器模块。

根据字节签名识别源格式（扩展名只作参考），并为目标格式准备图片色彩模式。
"""

from io import BytesIO
from pathlib import Path

import pillow_heif
from PIL import Image

from ..models.compression_config import DetectedFormat, OutputFormat
from ..utils.logging_helpers import get_logger


# HEIC/HEIF 通过 pillow-heif 插件解码
pillow_heif.register_heif_opener()

logger = get_logger()


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"
TIFF_SIGNATURES = (b"II*\x00", b"MM\x00*")

AVIF_BRANDS = frozenset({b"avif", b"avis"})
HEIC_BRANDS = frozenset(
    {
        b"heic",
        b"heix",
        b"hevc",
        b"hevx",
        b"heim",
        b"heis",
        b"hevm",
        b"hevs",
        b"mif1",
        b"msf1",
    }
)

# BMP 文件头后 DIB 头的合法长度
BMP_DIB_HEADER_SIZES = frozenset({12, 40, 52, 56, 64, 108, 124})

# 扩展名到格式的提示映射，仅用于日志
_EXTENSION_HINTS: dict[str, DetectedFormat] = {
    ".png": DetectedFormat.PNG,
    ".jpg": DetectedFormat.JPEG,
    ".jpeg": DetectedFormat.JPEG,
    ".webp": DetectedFormat.WEBP,
    ".avif": DetectedFormat.AVIF,
    ".tif": DetectedFormat.TIFF,
    ".tiff": DetectedFormat.TIFF,
    ".bmp": DetectedFormat.BMP,
    ".ico": DetectedFormat.ICO,
    ".heic": DetectedFormat.HEIC,
    ".heif": DetectedFormat.HEIC,
}


def _iso_brands(data: bytes) -> set[bytes]:
    """读取 ISOBMFF ftyp 盒中的主品牌和兼容品牌"""
    if len(data) < 12 or data[4:8] != b"ftyp":
        return set()

    box_size = int.from_bytes(data[0:4], "big")
    # box_size 为 0 表示延伸到文件末尾
    end = len(data) if box_size == 0 else min(box_size, len(data))
    brands = {data[8:12]}
    # 跳过 minor_version，之后每 4 字节一个兼容品牌
    for offset in range(16, end - 3, 4):
        brands.add(data[offset : offset + 4])
    return brands


def _is_bmp(data: bytes) -> bool:
    if len(data) < 18 or data[:2] != b"BM":
        return False
    dib_size = int.from_bytes(data[14:18], "little")
    return dib_size in BMP_DIB_HEADER_SIZES


def _is_ico(data: bytes) -> bool:
    if len(data) < 6:
        return False
    reserved = int.from_bytes(data[0:2], "little")
    image_type = int.from_bytes(data[2:4], "little")
    count = int.from_bytes(data[4:6], "little")
    return reserved == 0 and image_type == 1 and count > 0


def detect_format(data: bytes) -> DetectedFormat:
    """根据字节签名识别图片格式

    Args:
        data: 原始字节

    Returns:
        DetectedFormat: 识别结果，无法识别时为 UNKNOWN
    """
    if data.startswith(PNG_SIGNATURE):
        return DetectedFormat.PNG
    if data.startswith(JPEG_SIGNATURE):
        return DetectedFormat.JPEG
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return DetectedFormat.WEBP
    if data[:4] in TIFF_SIGNATURES:
        return DetectedFormat.TIFF

    if brands := _iso_brands(data):
        # AVIF 文件通常也带 mif1 兼容品牌，先判断 AVIF
        if brands & AVIF_BRANDS:
            return DetectedFormat.AVIF
        if brands & HEIC_BRANDS:
            return DetectedFormat.HEIC
        return DetectedFormat.UNKNOWN

    if _is_bmp(data):
        return DetectedFormat.BMP
    if _is_ico(data):
        return DetectedFormat.ICO
    return DetectedFormat.UNKNOWN


class FormatClassifier:
    """格式识别器，字节签名优先，文件名仅用于诊断日志"""

    def classify(self, data: bytes, filename_hint: str | None = None) -> DetectedFormat:
        detected = detect_format(data)

        if filename_hint:
            hinted = _EXTENSION_HINTS.get(Path(filename_hint).suffix.lower())
            if hinted is not None and hinted != detected:
                logger.debug(
                    f"扩展名与实际格式不一致: {filename_hint} "
                    f"(扩展名 {hinted.value}, 实际 {detected.value})"
                )

        return detected


class FormatProcessor:
    """格式处理器 - 检测编码器可用性并为目标格式准备色彩模式"""

    def __init__(self) -> None:
        """初始化格式处理器"""
        # 动态获取支持的格式
        self.supported_formats = {
            fmt.upper() for fmt in Image.registered_extensions().values() if fmt
        }

        self.avif_supported = self._check_format_support("AVIF")
        self.heif_supported = self._check_format_support("HEIF")

        logger.debug(f"支持的格式: {sorted(self.supported_formats)}")
        if self.avif_supported:
            logger.debug("✅ AVIF 格式支持已启用")
        if self.heif_supported:
            logger.debug("✅ HEIF 格式支持已启用")

    def _check_format_support(self, format_name: str) -> bool:
        """检查特定格式是否能完整编解码"""
        try:
            if format_name.upper() not in self.supported_formats:
                return False

            # 尝试编码一张小图并重新打开
            test_img = Image.new("RGB", (1, 1), color="red")
            buffer = BytesIO()
            test_img.save(buffer, format=format_name)
            buffer.seek(0)
            with Image.open(buffer) as reopened:
                reopened.load()
            return True
        except Exception as e:
            logger.debug(f"格式 {format_name} 不支持: {e}")
            return False

    def capabilities(self) -> dict[str, bool]:
        """各输出格式的编码器可用性"""
        return {
            fmt.value: (self.avif_supported if fmt == OutputFormat.AVIF else True)
            for fmt in OutputFormat
            if fmt != OutputFormat.ORIGINAL
        } | {"heic_decode": self.heif_supported}

    def prepare_for_format(
        self, img: Image.Image, target_format: OutputFormat
    ) -> Image.Image:
        """为目标格式准备图片

        Args:
            img: PIL图片对象
            target_format: 目标格式

        Returns:
            Image.Image: 处理后的图片对象
        """
        match target_format:
            case OutputFormat.JPEG | OutputFormat.BMP:
                return self._prepare_opaque(img)
            case OutputFormat.PNG:
                return self._prepare_for_png(img)
            case OutputFormat.WEBP | OutputFormat.AVIF | OutputFormat.ICO:
                return self._prepare_rgb_or_rgba(img)
            case OutputFormat.TIFF:
                return self._prepare_for_tiff(img)
            case _:
                return img

    def _prepare_opaque(self, img: Image.Image) -> Image.Image:
        """JPEG/BMP 不支持透明度，按边缘平均色合成背景"""
        if img.mode == "P":
            if "transparency" not in img.info:
                return img.convert("RGB")
            img = img.convert("RGBA")

        if img.mode in ("RGBA", "LA", "PA"):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, self._get_background_color(img))
            background.paste(img, mask=img.split()[-1])
            return background

        if img.mode != "RGB":
            # CMYK、L、1、I;16 等模式统一转 RGB
            return img.convert("RGB")

        return img

    def _get_background_color(self, img: Image.Image) -> tuple[int, int, int]:
        """根据不透明的边缘像素选择背景色，默认白色"""
        edge_pixels = self._sample_edge_pixels(img)
        if len(edge_pixels) < 3:
            return (255, 255, 255)
        count = len(edge_pixels)
        return (
            sum(p[0] for p in edge_pixels) // count,
            sum(p[1] for p in edge_pixels) // count,
            sum(p[2] for p in edge_pixels) // count,
        )

    def _sample_edge_pixels(self, img: Image.Image) -> list[tuple[int, int, int]]:
        """采样 RGBA 图像四条边上的不透明像素"""
        width, height = img.size
        sample_step = max(1, min(width, height) // 10)
        coords = [(x, y) for x in range(0, width, sample_step) for y in (0, height - 1)]
        coords += [
            (x, y) for y in range(0, height, sample_step) for x in (0, width - 1)
        ]

        edge_pixels: list[tuple[int, int, int]] = []
        for xy in coords:
            pixel = img.getpixel(xy)
            if isinstance(pixel, tuple) and len(pixel) >= 4 and pixel[3] > 128:
                edge_pixels.append((int(pixel[0]), int(pixel[1]), int(pixel[2])))
        return edge_pixels

    def _prepare_for_png(self, img: Image.Image) -> Image.Image:
        """PNG 支持多数模式，只处理 CMYK 和带透明色的调色板"""
        if img.mode == "P":
            if "transparency" in img.info:
                return img.convert("RGBA")
            return img.convert("RGB")
        if img.mode == "CMYK":
            return img.convert("RGB")
        return img

    def _prepare_rgb_or_rgba(self, img: Image.Image) -> Image.Image:
        """WebP/AVIF/ICO 只接受 RGB 或 RGBA"""
        if img.mode in ("RGB", "RGBA"):
            return img
        if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
            return img.convert("RGBA")
        return img.convert("RGB")

    def _prepare_for_tiff(self, img: Image.Image) -> Image.Image:
        if img.mode == "PA" or (img.mode == "P" and "transparency" in img.info):
            return img.convert("RGBA")
        if img.mode == "P":
            return img.convert("RGB")
        return img


_format_processor: FormatProcessor | None = None


def get_format_processor() -> FormatProcessor:
    """获取进程内共享的格式处理器（延迟创建）"""
    global _format_processor
    if _format_processor is None:
        _format_processor = FormatProcessor()
    return _format_processor
