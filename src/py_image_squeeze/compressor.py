"""图像压缩器接口。

把解析、识别、映射、编解码和批处理组合成简洁的门面，供库调用方与
HTTP/CLI/MCP 三个入口共用。
"""

import threading
from collections.abc import Sequence
from pathlib import Path

import httpx

from .config import AppConfig, get_config
from .core.compression_engine import JobExecutor
from .core.formats import get_format_processor
from .engine.batch import BatchProcessor
from .engine.config import JobBuilder
from .models import (
    BatchResult,
    CompressionJob,
    CompressionPreset,
    CompressionSettings,
    JobResult,
    OutputFormat,
)
from .utils.logging_helpers import get_logger


logger = get_logger()


class ImageCompressor:
    """图像压缩器。

    Args:
        config: 应用配置，默认使用进程级配置
        restrict_to_root: 本地路径是否受 ALLOWED_ROOT 约束
        transport: 可注入的 httpx 传输层（测试用）

    Examples:
        >>> compressor = ImageCompressor()
        >>> result = compressor.compress_file("photo.png", compression_lvl="max")
        >>> print(result.get_summary())
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        restrict_to_root: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config or get_config()
        self.job_builder = JobBuilder()
        self.executor = JobExecutor(
            self.config, restrict_to_root=restrict_to_root, transport=transport
        )
        self.batch_processor = BatchProcessor(
            self.config,
            self.job_builder,
            restrict_to_root=restrict_to_root,
            transport=transport,
        )

        logger.debug("初始化图像压缩器")

    def __enter__(self) -> "ImageCompressor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """释放批处理工作池"""
        self.batch_processor.close()

    def settings(
        self,
        compression_lvl: str | CompressionPreset | None = None,
        output_format: str | OutputFormat | None = None,
        png_quality: str | None = None,
        oxipng: bool | str | None = None,
        png_lossy: bool | str | None = None,
    ) -> CompressionSettings:
        """从原始参数构建压缩设置

        Raises:
            ValidationError: 参数无效
        """
        return self.job_builder.build_settings(
            compression_lvl=compression_lvl,
            output_format=output_format,
            png_quality=png_quality,
            oxipng=oxipng,
            png_lossy=png_lossy,
        )

    def compress_bytes(
        self,
        data: bytes,
        filename: str | None = None,
        settings: CompressionSettings | None = None,
    ) -> JobResult:
        """压缩内存中的图片字节，不写磁盘"""
        return self.executor.execute(
            self.job_builder.from_bytes(data, filename, settings)
        )

    def compress_file(
        self, input_path: str | Path, settings: CompressionSettings | None = None
    ) -> JobResult:
        """压缩单个本地文件，结果只保存在内存中"""
        return self.executor.execute(self.job_builder.from_path(input_path, settings))

    def compress_url(
        self, url: str, settings: CompressionSettings | None = None
    ) -> JobResult:
        """下载并压缩远程图片"""
        return self.executor.execute(self.job_builder.from_url(url, settings))

    def compress_jobs(
        self,
        jobs: Sequence[CompressionJob],
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """并发执行一批任务"""
        return self.batch_processor.run_jobs(jobs, cancel_event)

    def compress_path(
        self,
        input_path: str | Path,
        output_dir: str | Path | None = None,
        settings: CompressionSettings | None = None,
        overwrite: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """压缩文件或目录并写出结果

        Raises:
            ValidationError: 输入路径不存在
        """
        return self.batch_processor.compress_path(
            input_path,
            output_dir=output_dir,
            settings=settings,
            overwrite=overwrite,
            cancel_event=cancel_event,
        )

    @staticmethod
    def capabilities() -> dict[str, bool]:
        """当前环境下各格式的编解码能力"""
        return get_format_processor().capabilities()
