"""图像压缩异常处理模块。

定义统一的异常类和错误处理机制：每个异常类型携带稳定的 error_kind，
任务边界处由 ErrorHandler 统一转换为 JobFailure。
"""

from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, ClassVar, TypeVar

from PIL.Image import DecompressionBombError, UnidentifiedImageError

from .models.compression_result import ErrorKind, JobFailure
from .utils.logging_helpers import get_logger
from .utils.message_formatter import MessageFormatter


if TYPE_CHECKING:
    from .models.compression_config import CompressionJob


logger = get_logger()
T = TypeVar("T")


class CompressionError(Exception):
    """压缩相关错误基类"""

    error_kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL_IO

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.message = message
        self.source = source


class SourceUnreachableError(CompressionError):
    """本地路径不存在、无权限或越界"""

    error_kind = ErrorKind.SOURCE_UNREACHABLE


class RemoteFetchFailedError(CompressionError):
    """远程下载失败（网络、状态码、超时）"""

    error_kind = ErrorKind.REMOTE_FETCH_FAILED


class PayloadTooLargeError(CompressionError):
    """输入超过配置的大小上限"""

    error_kind = ErrorKind.PAYLOAD_TOO_LARGE


class UnsupportedFormatError(CompressionError):
    """不支持的格式错误"""

    error_kind = ErrorKind.UNSUPPORTED_FORMAT


class InvalidRangeError(CompressionError):
    """质量范围无效"""

    error_kind = ErrorKind.INVALID_RANGE


class CodecDecodeError(CompressionError):
    """解码失败"""

    error_kind = ErrorKind.CODEC_DECODE_FAILED


class CodecEncodeError(CompressionError):
    """编码失败"""

    error_kind = ErrorKind.CODEC_ENCODE_FAILED


class InternalIOError(CompressionError):
    """内部 I/O 或未预期错误"""

    error_kind = ErrorKind.INTERNAL_IO


class ValidationError(Exception):
    """参数验证错误 - 批次建立前的请求/参数错误，不属于任何单个任务"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ConfigurationError(ValidationError):
    """启动配置（环境变量）无效"""

    pass


def handle_codec_errors(
    error_class: type[CodecDecodeError] | type[CodecEncodeError],
    operation_name: str,
):
    """编解码调用的统一异常处理装饰器

    Args:
        error_class: 转换成的异常类型
        operation_name: 操作名称，用于日志记录
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except CompressionError:
                raise
            except UnidentifiedImageError as e:
                logger.debug(f"{operation_name} - 无法识别图像: {e}")
                raise error_class(f"无法识别图像数据: {e}") from e
            except DecompressionBombError as e:
                logger.debug(f"{operation_name} - 图像过大: {e}")
                raise error_class(f"图像像素数过大，可能存在安全风险: {e}") from e
            except (OSError, ValueError, SyntaxError) as e:
                logger.debug(f"{operation_name} - 编解码失败: {e}")
                raise error_class(f"{operation_name}失败: {e}") from e
            except Exception as e:
                logger.debug(f"{operation_name} - 未知错误: {e}")
                raise error_class(f"{operation_name}失败: {e}") from e

        return wrapper

    return decorator


class ErrorHandler:
    """统一错误处理器

    任务边界处把任何异常转换为带稳定 error_kind 的 JobFailure。
    """

    @staticmethod
    def _log_error(
        operation: str, label: str, error: Exception, level: str = "error"
    ) -> None:
        """标准化的错误日志记录"""
        log_msg = MessageFormatter.format_error(operation, label, error)
        getattr(logger, level, logger.error)(log_msg)

    @staticmethod
    def create_failure(
        job_id: str, source_label: str, error_kind: ErrorKind, message: str
    ) -> JobFailure:
        """创建标准化的失败结果"""
        return JobFailure(
            job_id=job_id,
            source_label=source_label,
            error_kind=error_kind,
            message=message,
        )

    @staticmethod
    def to_failure(
        error: BaseException, job: "CompressionJob", operation: str = "图像压缩"
    ) -> JobFailure:
        """统一的任务错误处理，match-case 分发到稳定的错误类别"""
        label = job.source.label
        match error:
            case CompressionError() as ce if ce.error_kind == ErrorKind.INTERNAL_IO:
                ErrorHandler._log_error(operation, label, ce, "error")
                return ErrorHandler.create_failure(
                    job.id, label, ce.error_kind, ce.message
                )
            case CompressionError() as ce:
                ErrorHandler._log_error(operation, label, ce, "warning")
                return ErrorHandler.create_failure(
                    job.id, label, ce.error_kind, ce.message
                )
            case PermissionError() as pe:
                ErrorHandler._log_error(f"{operation} - 权限错误", label, pe, "error")
                return ErrorHandler.create_failure(
                    job.id, label, ErrorKind.INTERNAL_IO, str(pe)
                )
            case OSError() as ose:
                ErrorHandler._log_error(f"{operation} - 系统错误", label, ose, "error")
                return ErrorHandler.create_failure(
                    job.id, label, ErrorKind.INTERNAL_IO, str(ose)
                )
            case _:
                ErrorHandler._log_error(operation, label, error, "error")  # type: ignore[arg-type]
                return ErrorHandler.create_failure(
                    job.id, label, ErrorKind.INTERNAL_IO, f"{operation}: {error}"
                )

    @staticmethod
    def cancelled(job: "CompressionJob") -> JobFailure:
        """批次取消后未派发任务的结果"""
        logger.info(f"批次已取消，跳过任务: {job.source.label}")
        return ErrorHandler.create_failure(
            job.id, job.source.label, ErrorKind.CANCELLED, "批次已取消，任务未执行"
        )
