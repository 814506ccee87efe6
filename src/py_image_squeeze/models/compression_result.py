"""压缩结果模型。

定义单个任务结果（成功/失败标签联合）与批量结果的数据结构。
"""

from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from humanize import naturalsize
from pydantic import BaseModel, ConfigDict, Field

from .compression_config import DetectedFormat, OutputFormat, QualityRange
from .constants import get_extension, get_mime_type


class ErrorKind(str, Enum):
    """稳定的错误类别，供 API/CLI 机器识别"""

    SOURCE_UNREACHABLE = "SourceUnreachable"
    REMOTE_FETCH_FAILED = "RemoteFetchFailed"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    INVALID_RANGE = "InvalidRange"
    CODEC_DECODE_FAILED = "CodecDecodeFailed"
    CODEC_ENCODE_FAILED = "CodecEncodeFailed"
    INTERNAL_IO = "InternalIO"
    CANCELLED = "Cancelled"


class JobState(str, Enum):
    """任务状态机: PENDING → RUNNING → {SUCCEEDED, FAILED}"""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"  # 批次取消后从未派发


class BaseResult(BaseModel):
    """结果基类，包含通用字段和方法"""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(description="任务 ID")
    source_label: str = Field(description="输入来源描述")

    @staticmethod
    def format_size(size_bytes: int) -> str:
        """格式化文件大小为人类可读格式"""
        return naturalsize(size_bytes, binary=True)


class JobSuccess(BaseResult):
    """单个任务成功结果"""

    status: Literal["succeeded"] = "succeeded"
    output_bytes: bytes = Field(repr=False, description="输出字节")
    output_format: OutputFormat = Field(description="实际输出格式")
    detected_format: DetectedFormat = Field(description="识别出的源格式")
    quality_range: QualityRange | None = Field(None, description="使用的质量范围")
    original_size: int = Field(ge=0, description="原始大小（字节）")
    compressed_size: int = Field(ge=0, description="压缩后大小（字节）")
    kept_original: bool = Field(False, description="重新编码变大，保留了原始字节")
    output_path: Path | None = Field(None, description="写出的文件路径")

    @property
    def success(self) -> bool:
        return True

    @property
    def mime_type(self) -> str:
        return get_mime_type(self.output_format)

    @property
    def extension(self) -> str:
        return get_extension(self.output_format)

    def get_size_saved(self) -> int:
        """节省的字节数"""
        return max(0, self.original_size - self.compressed_size)

    def get_compression_ratio(self) -> float:
        """压缩比例（百分比）"""
        if self.original_size == 0:
            return 0.0
        return (self.get_size_saved() / self.original_size) * 100

    def get_summary(self) -> str:
        """压缩结果摘要"""
        return (
            f"{self.format_size(self.original_size)} → "
            f"{self.format_size(self.compressed_size)} "
            f"({self.get_compression_ratio():.1f}% 压缩)"
        )

    def to_summary_dict(self) -> dict[str, Any]:
        """不含输出字节的可序列化摘要"""
        return {
            "job_id": self.job_id,
            "source": self.source_label,
            "success": True,
            "output_format": self.output_format.value,
            "detected_format": self.detected_format.value,
            "content_type": self.mime_type,
            "quality_range": str(self.quality_range) if self.quality_range else None,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": round(self.get_compression_ratio(), 2),
            "kept_original": self.kept_original,
            "output_path": str(self.output_path) if self.output_path else None,
        }


class JobFailure(BaseResult):
    """单个任务失败结果"""

    status: Literal["failed"] = "failed"
    error_kind: ErrorKind = Field(description="错误类别")
    message: str = Field(description="错误信息")

    @property
    def success(self) -> bool:
        return False

    def get_summary(self) -> str:
        return f"失败 ({self.error_kind.value}): {self.message}"

    def to_summary_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "source": self.source_label,
            "success": False,
            "error_kind": self.error_kind.value,
            "message": self.message,
        }


JobResult = Annotated[JobSuccess | JobFailure, Field(discriminator="status")]


class ResultCollection(BaseModel):
    """结果集合基类，提供通用的统计方法"""

    model_config = ConfigDict(frozen=True)

    results: list[JobResult] = Field(description="结果列表")

    def get_successful_items(self) -> list[JobSuccess]:
        """获取成功的结果项"""
        return [r for r in self.results if isinstance(r, JobSuccess)]

    def get_failed_items(self) -> list[JobFailure]:
        """获取失败的结果项"""
        return [r for r in self.results if isinstance(r, JobFailure)]

    def get_total_count(self) -> int:
        return len(self.results)

    def get_success_count(self) -> int:
        return len(self.get_successful_items())

    def get_failure_count(self) -> int:
        return len(self.get_failed_items())

    def get_success_rate(self) -> float:
        """获取成功率（百分比）"""
        total = self.get_total_count()
        if total == 0:
            return 0.0
        return (self.get_success_count() / total) * 100


class BatchResult(ResultCollection):
    """批量处理结果，顺序与提交顺序一致"""

    source_root: Path | None = Field(None, description="输入目录（目录批处理时）")

    @property
    def all_succeeded(self) -> bool:
        return self.get_failure_count() == 0

    def get_total_original_size(self) -> int:
        """成功项的总原始大小"""
        return sum(r.original_size for r in self.get_successful_items())

    def get_total_compressed_size(self) -> int:
        """成功项的总压缩后大小"""
        return sum(r.compressed_size for r in self.get_successful_items())

    def get_total_size_saved(self) -> int:
        """总节省大小"""
        return sum(r.get_size_saved() for r in self.get_successful_items())

    def get_overall_compression_ratio(self) -> float:
        """整体压缩比例"""
        total_original = self.get_total_original_size()
        if total_original == 0:
            return 0.0
        return (self.get_total_size_saved() / total_original) * 100

    def get_summary(self) -> str:
        """批量处理摘要"""
        total = self.get_total_count()
        successful = self.get_success_count()
        success_rate = self.get_success_rate()
        size_saved = BaseResult.format_size(self.get_total_size_saved())

        return (
            f"处理 {successful}/{total} 个文件 "
            f"(成功率 {success_rate:.1f}%), "
            f"总节省 {size_saved} ({self.get_overall_compression_ratio():.2f}%)"
        )

    def to_summary_dict(self) -> dict[str, Any]:
        return {
            "total": self.get_total_count(),
            "succeeded": self.get_success_count(),
            "failed": self.get_failure_count(),
            "success_rate": round(self.get_success_rate(), 2),
            "total_size_saved": self.get_total_size_saved(),
            "summary": self.get_summary(),
            "results": [r.to_summary_dict() for r in self.results],
        }
