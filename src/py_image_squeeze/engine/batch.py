"""批量处理器模块。

并发执行一批压缩任务并聚合结果；目录批处理时负责文件发现与结果写出。
"""

import threading
from collections.abc import Callable, Sequence
from functools import partial
from pathlib import Path

import httpx

from ..config import AppConfig
from ..core.compression_engine import JobExecutor, process_job
from ..exceptions import ErrorHandler, ValidationError
from ..models.compression_config import CompressionJob, CompressionSettings
from ..models.compression_result import BatchResult, JobResult, JobSuccess
from ..models.image_source import LocalPathSource
from ..utils import (
    MessageFormatter,
    PathResolver,
    find_image_files,
    is_supported_image,
    replace_with_backup,
    write_output,
)
from ..utils.logging_helpers import get_logger
from .concurrent_executor import ConcurrentExecutor
from .config import JobBuilder


logger = get_logger()


class BatchProcessor:
    """批量图像处理器

    Args:
        config: 应用配置
        job_builder: 任务构建器实例
        restrict_to_root: 本地路径是否受 ALLOWED_ROOT 约束（HTTP API 使用）
        transport: 可注入的 httpx 传输层，仅线程池模式生效
    """

    def __init__(
        self,
        config: AppConfig,
        job_builder: JobBuilder | None = None,
        *,
        restrict_to_root: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.job_builder = job_builder or JobBuilder()
        self.restrict_to_root = restrict_to_root
        self.transport = transport
        self.concurrent_executor = ConcurrentExecutor(
            max_workers=config.processing.MAX_WORKERS,
            queue_size=config.processing.queue_size,
            executor_type=config.processing.EXECUTOR_TYPE,
        )

    def __enter__(self) -> "BatchProcessor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """关闭常驻工作池"""
        self.concurrent_executor.shutdown()

    def _task_function(self) -> Callable[[CompressionJob], JobResult]:
        if self.concurrent_executor.executor_type == "process":
            # 进程池只能传递可 pickle 的模块级函数
            return partial(
                process_job,
                config=self.config,
                restrict_to_root=self.restrict_to_root,
            )
        executor = JobExecutor(
            self.config,
            restrict_to_root=self.restrict_to_root,
            transport=self.transport,
        )
        return executor.execute

    def run_jobs(
        self,
        jobs: Sequence[CompressionJob],
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """并发执行任务

        Args:
            jobs: 任务列表
            cancel_event: 取消信号，设置后不再派发新任务

        Returns:
            BatchResult: 与 jobs 顺序一致的结果
        """
        if not jobs:
            return BatchResult(results=[])

        results = self.concurrent_executor.execute_jobs(
            jobs, self._task_function(), cancel_event
        )
        batch = BatchResult(results=results)
        logger.info(batch.get_summary())
        return batch

    def compress_path(
        self,
        input_path: str | Path,
        output_dir: str | Path | None = None,
        settings: CompressionSettings | None = None,
        overwrite: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """压缩文件或目录并写出结果

        Args:
            input_path: 输入文件或目录
            output_dir: 输出目录，None 表示写到源文件旁边
            settings: 压缩设置
            overwrite: 覆盖原文件（忽略 output_dir）
            cancel_event: 取消信号

        Returns:
            BatchResult: 批量处理结果，成功项带有 output_path

        Raises:
            ValidationError: 输入路径不存在
        """
        input_path = Path(input_path).expanduser()
        if not input_path.exists():
            raise ValidationError(MessageFormatter.file_not_found(input_path), "input")
        input_path = input_path.resolve()

        out_dir = Path(output_dir).expanduser().resolve() if output_dir else None
        if overwrite and out_dir is not None:
            logger.warning("覆盖模式下忽略输出目录")
            out_dir = None

        files, input_root = self._discover(input_path, out_dir)
        if not files:
            logger.warning(f"未找到支持的图片文件: {input_path}")
            return BatchResult(results=[], source_root=input_root)

        settings = settings or CompressionSettings()
        jobs = [self.job_builder.from_path(path, settings) for path in files]
        batch = self.run_jobs(jobs, cancel_event)

        results = [
            self._write_result(job, result, input_root, out_dir, overwrite)
            for job, result in zip(jobs, batch.results, strict=True)
        ]
        return BatchResult(results=results, source_root=input_root)

    def _discover(
        self, input_path: Path, output_dir: Path | None
    ) -> tuple[list[Path], Path | None]:
        """查找待处理文件，返回 (文件列表, 输入根目录)"""
        if input_path.is_file():
            if not is_supported_image(input_path):
                logger.warning(f"跳过不支持的文件: {input_path}")
                return [], None
            return [input_path], None

        # 输出目录在输入目录内时排除，避免重复处理
        exclude_dirs = []
        if output_dir is not None and output_dir.is_relative_to(input_path):
            exclude_dirs.append(output_dir)

        files = list(find_image_files(input_path, exclude_dirs=exclude_dirs))
        logger.info(f"在 {input_path} 中找到 {len(files)} 个图片文件")
        return files, input_path

    def _write_result(
        self,
        job: CompressionJob,
        result: JobResult,
        input_root: Path | None,
        output_dir: Path | None,
        overwrite: bool,
    ) -> JobResult:
        """写出单个成功结果，写入失败时转换为 InternalIO 失败"""
        if not isinstance(result, JobSuccess):
            return result

        if not isinstance(job.source, LocalPathSource):
            raise TypeError(f"只有本地文件任务可以写出结果: {job.source.label}")
        source_path = job.source.path
        target = PathResolver.resolve_output_path(
            source_path,
            result.output_format,
            input_root=input_root,
            output_dir=output_dir,
            overwrite=overwrite,
        )

        try:
            if overwrite and target == source_path:
                replace_with_backup(source_path, result.output_bytes)
            else:
                write_output(target, result.output_bytes)
        except OSError as e:
            return ErrorHandler.to_failure(e, job, "写出文件")

        return result.model_copy(update={"output_path": target})
