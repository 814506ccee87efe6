"""编解码器与单任务执行器测试。"""

from dataclasses import replace
from io import BytesIO

import pytest
from PIL import Image

from py_image_squeeze.core import (
    JobExecutor,
    PngOptimizer,
    decode_image,
    get_codec,
    process_job,
)
from py_image_squeeze.core.codecs import JpegCodec, PngCodec, WebpCodec
from py_image_squeeze.core.formats import detect_format, get_format_processor
from py_image_squeeze.engine import JobBuilder
from py_image_squeeze.exceptions import CodecDecodeError, UnsupportedFormatError
from py_image_squeeze.models import (
    CompressionPreset,
    CompressionSettings,
    DetectedFormat,
    EncodeOptions,
    ErrorKind,
    JobFailure,
    JobSuccess,
    OutputFormat,
    QualityRange,
)
from tests.conftest import encode


def _options(
    fmt: OutputFormat, low: int = 50, high: int = 80, **kwargs
) -> EncodeOptions:
    return EncodeOptions(
        format=fmt,
        quality_range=QualityRange(min_quality=low, max_quality=high),
        **kwargs,
    )


def _open(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


@pytest.fixture
def executor(app_config):
    return JobExecutor(app_config)


@pytest.fixture
def builder():
    return JobBuilder()


class TestDecode:
    """解码测试"""

    def test_exif_orientation_applied(self):
        """EXIF 方向 6 的图片解码后宽高互换"""
        img = Image.new("RGB", (40, 20), "green")
        exif = Image.Exif()
        exif[0x0112] = 6
        data = encode(img, "JPEG", exif=exif.tobytes())

        decoded = decode_image(data, DetectedFormat.JPEG)
        assert decoded.size == (20, 40)

    def test_truncated_png(self):
        data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
        with pytest.raises(CodecDecodeError):
            decode_image(data, DetectedFormat.PNG)

    def test_unknown_format(self):
        with pytest.raises(UnsupportedFormatError):
            decode_image(b"garbage", DetectedFormat.UNKNOWN)


class TestCodecs:
    """各格式编码器测试"""

    def test_get_codec_rejects_original(self):
        with pytest.raises(UnsupportedFormatError):
            get_codec(OutputFormat.ORIGINAL)

    @pytest.mark.parametrize(
        ("fmt", "expected"),
        [
            (OutputFormat.PNG, DetectedFormat.PNG),
            (OutputFormat.JPEG, DetectedFormat.JPEG),
            (OutputFormat.WEBP, DetectedFormat.WEBP),
            (OutputFormat.TIFF, DetectedFormat.TIFF),
            (OutputFormat.BMP, DetectedFormat.BMP),
            (OutputFormat.ICO, DetectedFormat.ICO),
        ],
    )
    def test_output_format(self, photo_image, fmt, expected):
        """编码结果的字节签名与目标格式一致"""
        data = get_codec(fmt).encode(photo_image, _options(fmt))
        assert detect_format(data) == expected

    def test_jpeg_subsampling_by_quality(self):
        codec = JpegCodec()
        high = codec.save_params(_options(OutputFormat.JPEG, 80, 100))
        low = codec.save_params(_options(OutputFormat.JPEG, 50, 80))
        assert high["subsampling"] == "4:2:2"
        assert low["subsampling"] == "4:2:0"

    def test_webp_alpha_quality_tiers(self):
        codec = WebpCodec()
        high = codec.save_params(_options(OutputFormat.WEBP, 90, 100))
        low = codec.save_params(_options(OutputFormat.WEBP, 20, 60))
        assert high["alpha_quality"] == 100
        assert low["alpha_quality"] == 40

    def test_rgba_to_jpeg(self, rgba_image):
        fmt = OutputFormat.JPEG
        data = get_codec(fmt).encode(rgba_image, _options(fmt))
        assert _open(data).mode == "RGB"

    def test_rgba_to_webp_keeps_alpha(self, rgba_image):
        fmt = OutputFormat.WEBP
        data = get_codec(fmt).encode(rgba_image, _options(fmt))
        assert _open(data).mode == "RGBA"

    def test_ico_is_downscaled(self, photo_image):
        fmt = OutputFormat.ICO
        data = get_codec(fmt).encode(photo_image, _options(fmt))
        assert max(_open(data).size) <= 256

    def test_png_lossless_round_trip(self, photo_image):
        """不量化时像素完全一致"""
        options = _options(
            OutputFormat.PNG, 100, 100, allow_lossy_secondary_pass=False
        )
        data = get_codec(OutputFormat.PNG).encode(photo_image, options)
        assert _open(data).convert("RGB").tobytes() == photo_image.tobytes()

    def test_png_lossy_uses_palette(self, photo_image):
        options = _options(
            OutputFormat.PNG,
            run_secondary_optimizer=False,
            allow_lossy_secondary_pass=True,
        )
        data = get_codec(OutputFormat.PNG).encode(photo_image, options)
        assert _open(data).mode == "P"

    def test_png_quantizes_before_oxipng(self, photo_image):
        """量化先于 oxipng 无损优化执行"""
        calls = []

        class RecordingOptimizer(PngOptimizer):
            def quantize(self, img, quality_range):
                calls.append("quantize")
                return super().quantize(img, quality_range)

            def optimize(self, data):
                calls.append("optimize")
                return super().optimize(data)

        options = _options(
            OutputFormat.PNG,
            run_secondary_optimizer=True,
            allow_lossy_secondary_pass=True,
        )
        data = PngCodec(RecordingOptimizer()).encode(photo_image, options)

        assert calls == ["quantize", "optimize"]
        assert detect_format(data) == DetectedFormat.PNG

    @pytest.mark.skipif(
        not get_format_processor().avif_supported, reason="当前 Pillow 不支持 AVIF"
    )
    def test_avif_output(self, photo_image):
        fmt = OutputFormat.AVIF
        data = get_codec(fmt).encode(photo_image, _options(fmt))
        assert data[4:8] == b"ftyp"


class TestPngOptimizer:
    """PNG 二次优化测试"""

    def test_palette_size(self):
        mid = QualityRange(min_quality=50, max_quality=80)
        aggressive = QualityRange(min_quality=20, max_quality=60)
        assert PngOptimizer.palette_size(mid) == 256
        assert PngOptimizer.palette_size(aggressive) == 128

    def test_quantize_limits_colors(self, photo_image):
        optimizer = PngOptimizer()
        quantized = optimizer.quantize(
            photo_image, QualityRange(min_quality=20, max_quality=60)
        )
        assert quantized.mode == "P"
        assert len(quantized.getcolors(maxcolors=256)) <= 128

    def test_optimize_never_grows(self, png_bytes):
        optimizer = PngOptimizer()
        once = optimizer.optimize(png_bytes)
        twice = optimizer.optimize(once)
        assert len(once) <= len(png_bytes)
        assert len(twice) <= len(once)

    def test_optimize_is_lossless(self, png_bytes, photo_image):
        optimized = PngOptimizer().optimize(png_bytes)
        assert _open(optimized).convert("RGB").tobytes() == photo_image.tobytes()


class TestJobExecutor:
    """单任务执行器测试"""

    def test_png_to_webp(self, executor, builder, png_bytes):
        settings = builder.build_settings(output_format="webp")
        job = builder.from_bytes(png_bytes, "photo.png", settings)
        result = executor.execute(job)

        assert isinstance(result, JobSuccess)
        assert result.output_format == OutputFormat.WEBP
        assert result.detected_format == DetectedFormat.PNG
        assert result.original_size == len(png_bytes)
        assert result.compressed_size == len(result.output_bytes)
        assert result.compressed_size < result.original_size
        assert result.mime_type == "image/webp"

    def test_png_original_never_grows(self, executor, builder, png_bytes):
        result = executor.execute(builder.from_bytes(png_bytes, "photo.png"))
        assert isinstance(result, JobSuccess)
        assert result.output_format == OutputFormat.PNG
        assert result.compressed_size <= result.original_size

    def test_jpeg_recompressed(self, executor, builder, jpeg_bytes):
        result = executor.execute(builder.from_bytes(jpeg_bytes, "photo.jpg"))
        assert isinstance(result, JobSuccess)
        assert result.output_format == OutputFormat.JPEG
        assert result.compressed_size < result.original_size
        assert result.kept_original is False

    def test_larger_same_format_keeps_original(self, executor, builder, photo_image):
        """同格式重新编码变大时返回原始字节"""
        low_quality = encode(photo_image, "JPEG", quality=10)
        settings = CompressionSettings(quality_override=(100, 100))
        job = builder.from_bytes(low_quality, "low.jpg", settings)
        result = executor.execute(job)

        assert isinstance(result, JobSuccess)
        assert result.kept_original is True
        assert result.output_bytes == low_quality

    def test_extension_mismatch_uses_content(self, executor, builder, png_bytes):
        result = executor.execute(builder.from_bytes(png_bytes, "really-a-png.jpg"))
        assert isinstance(result, JobSuccess)
        assert result.detected_format == DetectedFormat.PNG
        assert result.output_format == OutputFormat.PNG

    def test_heic_to_jpeg(self, executor, builder, photo_image):
        try:
            heic = encode(photo_image, "HEIF", quality=90)
        except Exception as e:
            pytest.skip(f"pillow-heif 编码器不可用: {e}")

        result = executor.execute(builder.from_bytes(heic, "photo.heic"))
        assert isinstance(result, JobSuccess)
        assert result.detected_format == DetectedFormat.HEIC
        assert result.output_format == OutputFormat.JPEG
        assert result.output_bytes.startswith(b"\xff\xd8\xff")

    def test_unknown_format(self, executor, builder):
        result = executor.execute(builder.from_bytes(b"not an image at all", "x.png"))
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.UNSUPPORTED_FORMAT

    def test_corrupt_image(self, executor, builder):
        data = b"\xff\xd8\xff\xe0" + b"\x00" * 100
        result = executor.execute(builder.from_bytes(data, "broken.jpg"))
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.CODEC_DECODE_FAILED

    def test_invalid_range(self, executor, builder, png_bytes):
        settings = CompressionSettings(quality_override=(90, 10))
        result = executor.execute(builder.from_bytes(png_bytes, "a.png", settings))
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.INVALID_RANGE

    def test_missing_local_file(self, executor, builder, temp_dir):
        result = executor.execute(builder.from_path(temp_dir / "missing.png"))
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.SOURCE_UNREACHABLE

    def test_too_large(self, app_config, builder, png_bytes):
        config = replace(
            app_config,
            compression=replace(app_config.compression, MAX_FILE_SIZE_MB=0.001),
        )
        result = JobExecutor(config).execute(builder.from_bytes(png_bytes, "a.png"))
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.PAYLOAD_TOO_LARGE

    def test_process_job_function(self, app_config, builder, jpeg_bytes):
        settings = CompressionSettings(
            preset=CompressionPreset.MAX, output_format=OutputFormat.WEBP
        )
        job = builder.from_bytes(jpeg_bytes, "a.jpg", settings)
        result = process_job(job, app_config)
        assert isinstance(result, JobSuccess)
        assert result.quality_range.as_tuple() == (20, 60)
