"""压缩任务执行模块。

单个任务的完整流水线：解析输入 → 识别格式 → 映射参数 → 解码 → 编码。
任何异常都在这里转换为 JobFailure，不写磁盘。
"""

import httpx

from ..config import AppConfig
from ..exceptions import ErrorHandler, UnsupportedFormatError
from ..models.compression_config import CompressionJob, DetectedFormat
from ..models.compression_result import JobResult, JobSuccess
from ..utils.logging_helpers import get_logger
from .codecs import decode_image, get_codec
from .formats import FormatClassifier
from .presets import QualityPresetMapper
from .resolver import InputResolver


logger = get_logger()


class JobExecutor:
    """单任务执行器，无共享可变状态，可在多个线程中复用"""

    def __init__(
        self,
        config: AppConfig,
        resolver: InputResolver | None = None,
        *,
        restrict_to_root: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver or InputResolver.from_config(
            config, restrict_to_root=restrict_to_root, transport=transport
        )
        self.classifier = FormatClassifier()
        self.mapper = QualityPresetMapper()

    def execute(self, job: CompressionJob) -> JobResult:
        """执行单个压缩任务

        Args:
            job: 压缩任务

        Returns:
            JobResult: 成功或失败结果，本方法不抛出异常
        """
        try:
            return self._run(job)
        except Exception as e:
            return ErrorHandler.to_failure(e, job)

    def _run(self, job: CompressionJob) -> JobSuccess:
        resolved = self.resolver.resolve(job.source)
        raw = resolved.raw_bytes

        detected = self.classifier.classify(raw, job.source.filename)
        if detected == DetectedFormat.UNKNOWN:
            raise UnsupportedFormatError("无法识别的图片格式", job.source.label)

        options = self.mapper.map(
            job.settings, detected, self.config.compression.DEFAULT_PNG_QUALITY
        )

        img = decode_image(raw, detected)
        try:
            encoded = get_codec(options.format).encode(img, options)
        finally:
            img.close()

        # 同格式重新编码反而变大时保留原始字节
        kept_original = (
            options.format.value == detected.value and len(encoded) > len(raw)
        )
        if kept_original:
            logger.info(
                f"重新编码后体积增大 ({len(raw)} → {len(encoded)})，保留原文件: "
                f"{job.source.label}"
            )
            encoded = raw

        result = JobSuccess(
            job_id=job.id,
            source_label=job.source.label,
            output_bytes=encoded,
            output_format=options.format,
            detected_format=detected,
            quality_range=options.quality_range,
            original_size=resolved.size_bytes,
            compressed_size=len(encoded),
            kept_original=kept_original,
        )
        logger.debug(f"{job.source.label}: {result.get_summary()}")
        return result


def process_job(
    job: CompressionJob, config: AppConfig, restrict_to_root: bool = False
) -> JobResult:
    """处理单个压缩任务

    模块级函数，参数可 pickle，适用于线程池和进程池。
    """
    return JobExecutor(config, restrict_to_root=restrict_to_root).execute(job)
